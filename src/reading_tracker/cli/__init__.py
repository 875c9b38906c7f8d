"""Command-line entry points and shared logging helpers."""
