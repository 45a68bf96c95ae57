"""Document entity base class and its default JSON serializer.

Entities are dataclasses deriving from :class:`CosmicEntity`. The store-facing
document is the flat mapping of dataclass fields plus the derived
``partition_key``:

{
  "id":            "3f0c...",                  # assigned on create when blank
  "added_on":      "2025-01-01T00:00:00+00:00",
  "modified_on":   "2025-01-02T08:30:00+00:00", # omitted until first modify
  "partition_key": "A1",                        # from the entity property
  "code":          "A1",
  "links":         ["x", "y"]
}
"""
from __future__ import annotations

import dataclasses
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, TypeVar, get_args, get_type_hints

from .types import SYSTEM_PROPERTY_NAMES, Document

PARTITION_KEY_FIELD = "partition_key"


@dataclasses.dataclass
class CosmicEntity:
    """Base class for every stored entity.

    Subclasses declare their own fields and implement :attr:`partition_key`.
    The base fields are keyword-only so subclasses may declare required fields.
    """

    id: Optional[str] = dataclasses.field(default=None, kw_only=True)
    added_on: Optional[datetime] = dataclasses.field(default=None, kw_only=True)
    modified_on: Optional[datetime] = dataclasses.field(default=None, kw_only=True)

    @property
    def partition_key(self) -> Any:
        """Partition key value of this entity.

        Abstract: every subclass must override it. The base raises
        :class:`NotImplementedError` so a missing override fails on first write.
        """
        raise NotImplementedError(f"{type(self).__name__} must implement partition_key")


E = TypeVar("E", bound=CosmicEntity)


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _field_hints(entity_type: type) -> Dict[str, Any]:
    try:
        return get_type_hints(entity_type)
    except (NameError, TypeError):
        return {f.name: f.type for f in dataclasses.fields(entity_type)}


def _is_datetime_hint(hint: Any) -> bool:
    if isinstance(hint, str):
        return "datetime" in hint
    if hint is datetime:
        return True
    return any(arg is datetime for arg in get_args(hint))


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items() if v is not None}
    return value


def _decode_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    # fromisoformat on older interpreters rejects the Z suffix
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


class EntitySerializer:
    """Converts entities to store documents and back.

    Writes omit ``None`` fields. Reads treat an empty payload as no entity,
    match property names case-insensitively and ignore unknown properties.
    """

    def to_document(self, entity: CosmicEntity) -> Document:
        document: Document = {}
        for f in dataclasses.fields(entity):
            value = getattr(entity, f.name)
            if value is None:
                continue
            document[f.name] = _encode(value)
        partition_key = entity.partition_key
        if partition_key is not None:
            document[PARTITION_KEY_FIELD] = _encode(partition_key)
        return document

    def from_document(self, entity_type: Type[E], document: Optional[Document]) -> Optional[E]:
        if not document:
            return None
        if not isinstance(document, dict):
            raise TypeError(f"Expected a JSON object for {entity_type.__name__}, got {type(document).__name__}")

        hints = _field_hints(entity_type)
        by_lower: Dict[str, dataclasses.Field] = {f.name.lower(): f for f in dataclasses.fields(entity_type)}

        values: Dict[str, Any] = {}
        for key, value in document.items():
            if key in SYSTEM_PROPERTY_NAMES:
                continue
            f = by_lower.get(str(key).lower())
            if f is None or not f.init:
                continue
            if _is_datetime_hint(hints.get(f.name)):
                value = _decode_datetime(value)
            values[f.name] = value

        # Projections may leave out required fields
        for f in dataclasses.fields(entity_type):
            if not f.init or f.name in values:
                continue
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                values[f.name] = None

        return entity_type(**values)
