"""
Identifier types for blueprint records.

Every id-bearing record carries a ``RecordId``: a kind prefix, a positive
number and, for spec clauses only, an optional sub-number (``S-004.2``).
Ids order by (kind, number, sub) so a plain ``sorted()`` gives file order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum


class IdKind(StrEnum):
    """Id prefixes, one per id-bearing artifact type."""

    REQUIREMENT = "R"
    CLAUSE = "S"
    CONTRACT = "C"
    TEST_VECTOR = "TV"
    DELIVERY = "DP"


# 001..999 are zero-padded to three digits, 1000+ carry no padding
_NUMBER = r"(?:\d{3}|[1-9]\d{3,})"
_ID_PATTERN = re.compile(rf"^(R|S|C|TV|DP)-({_NUMBER}|NEW)(?:\.([1-9]\d*))?$")

PLACEHOLDER = "NEW"


@dataclass(frozen=True, order=True)
class RecordId:
    """
    A parsed record identifier.

    Attributes:
        kind: Artifact kind prefix
        number: Top-level number (0 only for ``<KIND>-NEW`` placeholders)
        sub: Sub-number for ``S-nnn.m`` clause ids, 0 when absent
    """

    kind: IdKind
    number: int
    sub: int = 0

    def __post_init__(self) -> None:
        if self.sub and self.kind != IdKind.CLAUSE:
            raise ValueError(f"only spec clause ids carry a sub-number: {self.kind}")
        if self.number < 0 or self.sub < 0:
            raise ValueError("id numbers must be non-negative")

    @classmethod
    def parse(cls, text: str, allow_placeholder: bool = False) -> "RecordId":
        """
        Parse an id in canonical form.

        Raises:
            ValueError: If the id is not canonical (``R-1``, ``R-0001``,
                ``R-000`` and ``S-001.0`` are all rejected)
        """
        match = _ID_PATTERN.match(text)
        if not match:
            raise ValueError(f"malformed id '{text}'")
        kind = IdKind(match.group(1))
        raw_number = match.group(2)
        sub = int(match.group(3)) if match.group(3) else 0
        if raw_number == PLACEHOLDER:
            if not allow_placeholder or sub:
                raise ValueError(f"placeholder id not allowed here: '{text}'")
            return cls(kind, 0)
        number = int(raw_number)
        if number == 0:
            raise ValueError(f"id numbers start at 1: '{text}'")
        if sub and kind != IdKind.CLAUSE:
            raise ValueError(f"only spec clause ids carry a sub-number: '{text}'")
        return cls(kind, number, sub)

    @classmethod
    def placeholder(cls, kind: IdKind) -> "RecordId":
        return cls(kind, 0)

    @property
    def is_placeholder(self) -> bool:
        return self.number == 0

    @property
    def parent(self) -> "RecordId":
        """Top-level id for a sub-clause (self for top-level ids)."""
        return RecordId(self.kind, self.number) if self.sub else self

    def with_number(self, number: int) -> "RecordId":
        return RecordId(self.kind, number, self.sub)

    def __str__(self) -> str:
        if self.is_placeholder:
            return f"{self.kind}-{PLACEHOLDER}"
        text = f"{self.kind}-{self.number:03d}"
        if self.sub:
            text += f".{self.sub}"
        return text


def format_id_list(ids: tuple[RecordId, ...] | list[RecordId], sep: str = ",") -> str:
    return sep.join(str(i) for i in ids)
