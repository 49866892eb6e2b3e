"""HTTP client for the PhotoSync server."""
