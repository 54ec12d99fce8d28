"""Wall clock used for every persisted timestamp.

Services call `clock.utcnow()` (module attribute lookup) so tests can pin
time with monkeypatch.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)
