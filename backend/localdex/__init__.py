"""Personal document search: sync, index and query local and remote sources."""

__version__ = "0.1.0"
