"""Ebook Store Bot: conversational commerce backend."""
__version__ = "0.1.0"
