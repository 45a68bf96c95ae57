from __future__ import annotations

from typing import Any, Dict, TypedDict

# Raw JSON document as exchanged with the store
Document = Dict[str, Any]


class SdkParameter(TypedDict):
    """Query parameter in the shape ``ContainerProxy.query_items`` accepts."""

    name: str
    value: Any


class SystemProperties(TypedDict, total=False):
    """Properties the store adds to every document it returns."""

    _rid: str
    _self: str
    _etag: str
    _attachments: str
    _ts: int


SYSTEM_PROPERTY_NAMES = frozenset(SystemProperties.__annotations__)
