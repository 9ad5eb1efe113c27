"""Time source for the engine.

Every time-window decision reads the current instant through ``utcnow`` so
tests can pin the clock with ``monkeypatch.setattr(clock, 'utcnow', ...)``.
"""
from datetime import datetime, timezone

def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
