"""API key credential boundary."""
