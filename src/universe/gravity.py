from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple


@dataclass(frozen=True)
class RecordedQuery:
    """Rendered query text and its ``(name, value)`` bindings, in order."""

    text: str
    parameters: Tuple[Tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class Gravity:
    """Cost and diagnostics envelope returned by every repository call.

    Attributes
    ----------
    ru: float
        Request units consumed, summed across every round trip of the call.
    continuation_token: Optional[str]
        Cursor for the next page of :meth:`Galaxy.paged`; ``None`` once the
        result set is exhausted and for every other operation.
    query: Optional[RecordedQuery]
        Executed query, only when the repository records queries.
    """

    ru: float = 0.0
    continuation_token: Optional[str] = None
    query: Optional[RecordedQuery] = None
