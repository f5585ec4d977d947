"""Command line maintenance tools."""
