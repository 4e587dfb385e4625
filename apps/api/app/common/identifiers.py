"""Identifier normalization across historical storage forms.

The same entity id may have been written as canonical hyphenated UUID text
(``5f0c3e1a-6d2b-...``) or as compact hex (``5f0c3e1a6d2b...``) by the legacy
importer, and some legacy rows carry arbitrary non-UUID strings. Business
code compares ``EntityRef.key`` values; queries match against
``storage_forms``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import false
from sqlalchemy.sql.elements import ColumnElement


def parse_uuid(value: Any) -> Optional[UUID]:
    """Return the UUID for value, or None when it is not one."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except (ValueError, TypeError):
        return None


@dataclass(frozen=True)
class EntityRef:
    raw: str
    uuid: Optional[UUID] = None

    @classmethod
    def parse(cls, value: Any) -> "EntityRef":
        if isinstance(value, EntityRef):
            return value
        if value is None:
            return cls(raw="")
        if isinstance(value, UUID):
            return cls(raw=str(value), uuid=value)
        text = str(value).strip()
        return cls(raw=text, uuid=parse_uuid(text) if text else None)

    @property
    def key(self) -> str:
        if self.uuid is not None:
            return str(self.uuid)
        return self.raw

    @property
    def is_blank(self) -> bool:
        return not self.raw

    @property
    def forms(self) -> list[str]:
        if self.is_blank:
            return []
        forms = [self.raw]
        if self.uuid is not None:
            forms.extend([str(self.uuid), self.uuid.hex])
        return list(dict.fromkeys(forms))


def storage_forms(value: Any) -> list[str]:
    """All strings the value may have been stored as (deduplicated, ordered)."""
    return EntityRef.parse(value).forms


def union_forms(values: Iterable[Any]) -> list[str]:
    forms: list[str] = []
    for value in values:
        forms.extend(storage_forms(value))
    return list(dict.fromkeys(forms))


def ref_in(column, values: Iterable[Any]) -> ColumnElement[bool]:
    """Membership predicate matching column against every storage form of values."""
    forms = union_forms(values)
    if not forms:
        return false()
    return column.in_(forms)


def same_entity(a: Any, b: Any) -> bool:
    left, right = EntityRef.parse(a), EntityRef.parse(b)
    return not left.is_blank and left.key == right.key
