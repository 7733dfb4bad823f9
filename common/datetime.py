"""Timestamp conversion for observations and rebalance records.

Everything the monitor and treasuries store is whole unix seconds (the unit
oracle round data carries). HTTP callers may send ISO-8601 instead; all
string parsing goes through :func:`parse_iso8601` so there is one place that
decides how offsets and naive values are read.
"""
from __future__ import annotations

import datetime as _dt
from typing import Union

from dateutil.parser import isoparse

__all__ = ["parse_iso8601", "to_epoch", "from_epoch"]

UTC = _dt.timezone.utc

Timestamp = Union[int, float, str, _dt.datetime]


def parse_iso8601(value: Union[str, _dt.datetime]) -> _dt.datetime:
    """Aware UTC datetime from an ISO-8601 string or datetime; naive means UTC."""
    if isinstance(value, _dt.datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = isoparse(value)
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"invalid ISO-8601 datetime: {value}") from exc
    else:
        raise TypeError(f"parse_iso8601 expects str or datetime, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def to_epoch(value: Timestamp) -> int:
    """Whole unix seconds from an epoch number, digit string, ISO string or datetime."""
    if isinstance(value, bool):
        raise TypeError("to_epoch does not accept bool")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    return int(parse_iso8601(value).timestamp())


def from_epoch(ts: Union[int, float]) -> _dt.datetime:
    return _dt.datetime.fromtimestamp(ts, tz=UTC)
