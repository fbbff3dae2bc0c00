"""Core runtime utilities."""
