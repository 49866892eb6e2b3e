"""PhotoSync: content-addressed photo backup server and sync client."""

__version__ = "0.1.0"
