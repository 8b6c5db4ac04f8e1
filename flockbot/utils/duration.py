"""Interval normalization."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from flockbot.errors import ValidationError

_DURATION_FIELDS = {"weeks", "days", "hours", "minutes", "seconds"}


def to_duration(value: Any) -> timedelta:
    """Turn ``value`` into a positive ``timedelta``.

    Accepts a ``timedelta``, a mapping of timedelta fields such as
    ``{"minutes": 30}``, or a number of seconds.
    """
    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, Mapping):
        unknown = set(value) - _DURATION_FIELDS
        if unknown:
            raise ValidationError(
                f"unrecognized duration field(s): {', '.join(sorted(unknown))}"
            )
        try:
            duration = timedelta(**value)
        except TypeError as e:
            raise ValidationError(f"bad duration {dict(value)!r}: {e}") from e
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        duration = timedelta(seconds=value)
    elif value is None:
        raise ValidationError("no interval provided")
    else:
        raise ValidationError(f"unrecognized duration param {value!r}")

    if duration <= timedelta(0):
        raise ValidationError(f"interval must be positive, got {duration}")
    return duration
