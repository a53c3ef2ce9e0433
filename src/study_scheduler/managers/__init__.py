"""Process-level helpers shared by every component (logging)."""
