"""PhotoSync client: API client and sync orchestrator."""
