"""Photo upload, dedup and storage."""
