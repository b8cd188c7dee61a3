"""Clock helpers. Every timestamp FundFlow stores is timezone-aware UTC."""
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def seconds_ago(seconds: float, *, now: datetime | None = None) -> datetime:
    """Return the instant ``seconds`` before ``now`` (the current time by default)."""

    return (now or utcnow()) - timedelta(seconds=seconds)


def to_epoch_seconds(value: str) -> int:
    """Parse a webhook timestamp sent as epoch seconds or ISO 8601 (``Z`` suffix allowed).

    Raises ``ValueError`` when ``value`` is neither.
    """

    try:
        return int(float(value))
    except ValueError:
        pass
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


__all__ = ["seconds_ago", "to_epoch_seconds", "utcnow"]
