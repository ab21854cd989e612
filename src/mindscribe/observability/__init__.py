"""MindScribe observability — structured logging."""
