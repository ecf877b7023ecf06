"""UUID values stored as text in the database and in JSON."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

__all__ = ["FlexUuid"]

_PATTERN = re.compile(
    r"[0-9a-fA-F]{32}"
    r"|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


@dataclass(frozen=True)
class FlexUuid:
    """A UUID written in hyphenated lower-case form."""

    value: uuid.UUID

    @classmethod
    def new(cls) -> FlexUuid:
        """A fresh random (version 4) UUID."""
        return cls(uuid.uuid4())

    @classmethod
    def parse(cls, text: str) -> FlexUuid:
        """Parse the hyphenated or the plain 32-digit form."""
        if not isinstance(text, str):
            raise TypeError(f"expected a UUID string, got {type(text).__name__}")
        if _PATTERN.fullmatch(text) is None:
            raise ValueError(f"invalid UUID {text!r}")
        return cls(uuid.UUID(text))

    @classmethod
    def from_uuid(cls, value: uuid.UUID) -> FlexUuid:
        return cls(value)

    def to_uuid(self) -> uuid.UUID:
        return self.value

    @classmethod
    def from_json(cls, value: object) -> FlexUuid:
        return cls.parse(value)  # type: ignore[arg-type]

    def to_json(self) -> str:
        return str(self.value)

    def __str__(self) -> str:
        return str(self.value)