"""Naive date-time values as stored in the database and exchanged as JSON."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

__all__ = ["FlexTimestamp"]

_EPOCH = datetime(1970, 1, 1)
_PATTERN = re.compile(
    r"(?P<date>\d{4}-\d{2}-\d{2})(?P<sep>[T ])(?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d{1,9}))?"
)


def _parse(text: object, *, separators: str, fraction: bool | None) -> datetime:
    """Parse a date-time; ``fraction`` True requires it, False forbids it, None allows it."""
    if not isinstance(text, str):
        raise TypeError(f"expected a date-time string, got {type(text).__name__}")
    match = _PATTERN.fullmatch(text)
    if match is None or match["sep"] not in separators:
        raise ValueError(f"invalid timestamp {text!r}")
    has_fraction = match["frac"] is not None
    if (fraction is True and not has_fraction) or (fraction is False and has_fraction):
        raise ValueError(f"invalid timestamp {text!r}")
    try:
        value = datetime.strptime(f"{match['date']} {match['time']}", "%Y-%m-%d %H:%M:%S")
    except ValueError as exc:
        raise ValueError(f"invalid timestamp {text!r}: {exc}") from None
    if has_fraction:
        value = value.replace(microsecond=int(match["frac"].ljust(9, "0")[:6]))
    return value


def _fraction(value: datetime) -> str:
    micros = value.microsecond
    if micros == 0:
        return ""
    if micros % 1000 == 0:
        return f".{micros // 1000:03d}"
    return f".{micros:06d}"


@dataclass(frozen=True, order=True)
class FlexTimestamp:
    """A naive (zone-less) point in time."""

    value: datetime

    @classmethod
    def now(cls) -> FlexTimestamp:
        """The current local time."""
        return cls(datetime.now())

    @classmethod
    def from_timestamp(cls, seconds: int) -> FlexTimestamp:
        """The time ``seconds`` after the Unix epoch."""
        try:
            return cls(_EPOCH + timedelta(seconds=int(seconds)))
        except OverflowError as exc:
            raise ValueError(f"timestamp {seconds} out of range") from exc

    def timestamp(self) -> int:
        """Whole seconds since the Unix epoch, rounded down."""
        return calendar.timegm(self.value.timetuple())

    @classmethod
    def parse(cls, text: str) -> FlexTimestamp:
        """Parse ``YYYY-MM-DDTHH:MM:SS.fff``; the fraction is required."""
        return cls(_parse(text, separators="T", fraction=True))

    @classmethod
    def from_json(cls, value: object) -> FlexTimestamp:
        """Parse the JSON form, with or without fractional seconds."""
        return cls(_parse(value, separators="T", fraction=None))

    def to_json(self) -> str:
        """The JSON form, e.g. ``2019-11-01T10:20:30.500``."""
        return self.value.strftime("%Y-%m-%dT%H:%M:%S") + _fraction(self.value)

    def to_sql(self) -> str:
        """The text form stored in the database."""
        return self.value.strftime("%Y-%m-%d %H:%M:%S") + _fraction(self.value)

    @classmethod
    def from_sql(cls, value: object) -> FlexTimestamp:
        """Read a value stored in the database."""
        if isinstance(value, datetime):
            return cls(value.replace(tzinfo=None))
        return cls(_parse(value, separators="T ", fraction=None))

    def __str__(self) -> str:
        return self.to_json()