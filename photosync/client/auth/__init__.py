"""Client credential storage."""
