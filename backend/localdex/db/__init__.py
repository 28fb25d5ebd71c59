"""SQLite connection management."""
