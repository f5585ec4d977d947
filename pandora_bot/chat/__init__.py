"""Discord-facing message handling."""
