"""Request controllers; each returns content, status code, and headers."""
