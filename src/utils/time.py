"""
Clock abstraction and epoch-millisecond helpers.

Venues disagree on how they stamp time: Alpaca sends RFC 3339 strings with
nanosecond precision, Polygon and Finnhub send epoch milliseconds, Kraken and
CoinEx send nothing at all. Canonical ticks always carry epoch milliseconds,
so this module provides the conversions plus an injectable clock for the
venues (and auth headers) that need "now".

Depending on a Clock instead of calling time.time() directly keeps the
normalizers deterministic under test: pass a FrozenClock and every generated
timestamp is known in advance.
"""

from datetime import datetime, timezone
from typing import Protocol, Union

import pandas as pd


class Clock(Protocol):
    """
    Abstract time source protocol.

    **Usage**: Consumers accept a Clock (constructor injection) and call
    clock.now() whenever they need the current time. Production code passes a
    RealClock; tests pass a FrozenClock.
    """

    def now(self) -> datetime:
        """Return the current time (timezone-aware, UTC)."""
        ...


class RealClock:
    """Clock that returns the actual current system time (UTC)."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """
    Clock that always returns a fixed timestamp.

    **Usage**:
        clock = FrozenClock(datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc))
        now_millis(clock)  # 1709303400000, on every call
    """

    def __init__(self, fixed_now: datetime):
        """
        Args:
            fixed_now: The datetime to return on every call to now().
                       Should be timezone-aware (UTC recommended).
        """
        self._fixed_now = fixed_now

    def now(self) -> datetime:
        return self._fixed_now


def get_real_clock() -> Clock:
    """Factory for a RealClock instance."""
    return RealClock()


def now_millis(clock: Clock) -> int:
    """
    Current time of `clock` as integer epoch milliseconds.

    Naive datetimes are interpreted as UTC.
    """
    current = clock.now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return int(current.timestamp() * 1000)


def to_epoch_millis(value: Union[int, float, str, datetime]) -> int:
    """
    Convert a venue timestamp into integer epoch milliseconds.

    **Accepted inputs**:
      - int/float epoch values. Magnitude decides the unit: values above
        1e17 are nanoseconds, above 1e14 microseconds, above 1e11
        milliseconds, anything smaller is seconds.
      - numeric strings (e.g. Bybit's "1709303400123"), same rules.
      - ISO 8601 / RFC 3339 strings ("2024-03-01T14:30:00.123456789Z"),
        parsed with pandas so nanosecond precision survives.
      - datetime objects (naive ones are treated as UTC).

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.

    Example:
        >>> to_epoch_millis("2024-03-01T14:30:00Z")
        1709303400000
        >>> to_epoch_millis(1709303400)
        1709303400000
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot interpret boolean as a timestamp: {value!r}")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Cannot interpret empty string as a timestamp")
        try:
            numeric = float(text)
        except ValueError:
            try:
                ts = pd.Timestamp(text)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Unparseable timestamp: {value!r}") from e
            if ts.tzinfo is None:
                ts = ts.tz_localize("UTC")
            return int(ts.value // 1_000_000)
        return _numeric_to_millis(numeric)

    if isinstance(value, (int, float)):
        return _numeric_to_millis(float(value))

    raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")


def _numeric_to_millis(value: float) -> int:
    magnitude = abs(value)
    if magnitude >= 1e17:
        return int(value // 1_000_000)
    if magnitude >= 1e14:
        return int(value // 1_000)
    if magnitude >= 1e11:
        return int(value)
    return int(value * 1000)


def now_iso(clock: Clock) -> str:
    """Current time of `clock` as an ISO 8601 string in UTC."""
    current = clock.now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(timezone.utc).isoformat()
