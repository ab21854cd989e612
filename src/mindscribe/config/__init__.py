"""MindScribe configuration."""
