"""
MindScribe Voice — offline voice pipeline for the MindScribe wellness app.

    from mindscribe.voice import VoiceSession
"""

__version__ = "0.3.0"
