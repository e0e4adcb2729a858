"""External framework bootstrap (fetch + nested build + import)."""
