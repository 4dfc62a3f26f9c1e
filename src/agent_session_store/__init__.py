"""Read, search and edit the session histories of AI coding agents."""

__version__ = "0.1.0"
