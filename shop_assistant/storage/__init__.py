"""
Usage audit log storage.

Append-only SQLite record of provider calls and their cost.
"""
