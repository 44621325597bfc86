"""Embedded SQLite storage for incremental generation state."""
