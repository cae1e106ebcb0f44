"""Version range parsing and selection."""
