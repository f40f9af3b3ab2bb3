"""Save, sync, tag and share social-media bookmarks."""

__version__ = "0.1.0"
