"""Intent query answering and caching over an indexed codebase."""

__version__ = "0.1.0"
