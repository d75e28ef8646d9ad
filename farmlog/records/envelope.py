"""Field-change envelopes: a value plus the epoch second it last changed."""

import time
from dataclasses import dataclass
from typing import Any, Callable

from ..errors import MalformedInputError

Clock = Callable[[], int]


def now_stamp() -> int:
    """Current time in whole epoch seconds."""
    return int(time.time())


def coerce_stamp(value: Any) -> int | None:
    """Coerce a stored timestamp to int, or None if never set.

    Numeric strings are accepted because older local databases and the
    server both hand timestamps around as text.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedInputError(f"{value!r} is not a timestamp")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise MalformedInputError(f"{value!r} is not a timestamp")


@dataclass(frozen=True)
class Field:
    """A single field value with the timestamp of its last change."""

    data: Any
    changed: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "changed", coerce_stamp(self.changed))

    def touch(self, data: Any, now: int) -> "Field":
        """Return a new envelope holding ``data``, changed at ``now``.

        The change stamp never moves backwards.
        """
        if self.changed is not None and self.changed > now:
            now = self.changed
        return Field(data=data, changed=now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"data": self.data, "changed": self.changed}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Field":
        """Create from dictionary."""
        if "data" not in data:
            raise MalformedInputError(f"{data!r} is not a field envelope")
        return cls(data=data["data"], changed=data.get("changed"))

    @classmethod
    def coerce(cls, value: Any) -> "Field":
        """Accept an envelope, an envelope dict, or a bare value."""
        if isinstance(value, Field):
            return value
        if isinstance(value, dict) and "data" in value and set(value) <= {"data", "changed"}:
            return cls.from_dict(value)
        return cls(data=value)
