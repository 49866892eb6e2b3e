"""PhotoSync server: dedup index, placement engine and HTTP API."""
