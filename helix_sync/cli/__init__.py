"""Command-line interface for helix-sync."""
