"""Parsing of RFC 3339 durations such as ``P90D`` or ``PT1H30M``."""

from __future__ import annotations

import enum
import re
from datetime import timedelta

__all__ = ["DurationError", "parse_rfc3339_duration"]


class DurationError(ValueError):
    """Raised when a duration string is malformed or unsupported."""


# Allowed units in the order they must appear; 'M' is months in the date
# part and minutes in the time part.
_UNITS: tuple[tuple[str, float], ...] = (
    ("D", 24.0 * 60.0 * 60.0),
    # Mean length of a month, using 28.25 days for February
    ("M", 30.43 * 24.0 * 60.0 * 60.0),
    # Leap years are ignored
    ("Y", 365.0 * 24.0 * 60.0 * 60.0),
    ("W", 7.0 * 24.0 * 60.0 * 60.0),
    ("H", 60.0 * 60.0),
    ("M", 60.0),
    ("S", 1.0),
    ("W", 7.0 * 24.0 * 60.0 * 60.0),
)
_DATE_UNITS = dict(_UNITS[:4])
_TIME_UNITS = dict(_UNITS[4:])
_UNIT_CHARS = {c for c, _ in _UNITS}
_DIGITS = set("0123456789")
_UPPER = re.compile(r"[A-Z]")


class _Unit(enum.IntEnum):
    EMPTY = 0
    YEAR = 1
    MONTH = 2
    DAY = 3
    TIME = 4
    HOUR = 5
    MINUTE = 6
    SECOND = 7
    WEEK = 8

    @classmethod
    def from_char(cls, c: str, is_time: bool) -> _Unit:
        if c == "M":
            return cls.MINUTE if is_time else cls.MONTH
        return {
            "D": cls.DAY,
            "T": cls.TIME,
            "H": cls.HOUR,
            "S": cls.SECOND,
            "Y": cls.YEAR,
            "W": cls.WEEK,
        }[c]


def parse_rfc3339_duration(value: str) -> timedelta:
    """Parse an RFC 3339 duration; ',' as decimal separator is not supported."""
    if not value.startswith("P"):
        raise DurationError("duration requires 'P' prefix")
    rest = value[1:]

    for c in rest:
        if c == ",":
            raise DurationError(
                f"'{c}' is valid in the RFC-3339 duration format but not supported "
                "by this implementation, use '.' instead"
            )
        if c not in _DIGITS and c not in ".T" and c not in _UNIT_CHARS:
            raise DurationError(f"'{c}' is not valid in the RFC-3339 duration format")

    duration = timedelta()
    last_unit = _Unit.EMPTY
    last_char = "_"
    supplied = 0
    is_time = False

    while rest:
        found = _UPPER.search(rest)
        if found is None:
            raise DurationError("unit not specified")
        index = found.start()
        unit_char = found.group()
        unit = _Unit.from_char(unit_char, is_time)

        if unit <= last_unit:
            raise DurationError(f"unit '{unit_char}' cannot follow '{last_char}'")

        if unit is _Unit.TIME:
            if index != 0:
                raise DurationError(f"unit not specified for value '{rest[:index]}'")
            is_time = True
        else:
            if index == 0:
                raise DurationError(f"value not specified for '{unit_char}'")
            text = rest[:index]
            try:
                amount = float(text)
            except ValueError as err:
                raise DurationError(
                    f"failed to parse value '{text}' for unit '{unit_char}'"
                ) from err

            supplied += 1

            if unit in (_Unit.HOUR, _Unit.MINUTE, _Unit.SECOND) and not is_time:
                raise DurationError(f"'{unit_char}' must be preceded with 'T'")

            seconds = amount * (_TIME_UNITS if is_time else _DATE_UNITS)[unit_char]
            try:
                duration += timedelta(seconds=seconds)
            except OverflowError as err:
                raise DurationError(
                    f"value '{amount}' for '{unit_char}' is out of range"
                ) from err

        last_char = unit_char
        last_unit = unit
        rest = rest[index + 1 :]

    if supplied == 0:
        raise DurationError("must supply at least one time unit")

    return duration