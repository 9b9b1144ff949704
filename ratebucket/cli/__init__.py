"""Command-line interface for ratebucket."""
