"""Filter, projection, sorting and paging options for repository queries.

A filter is a sequence of :class:`Cluster` objects. Each cluster is a group
of :class:`Catalyst` terms, parenthesized when it holds more than one. The
first catalyst of a cluster is unprefixed and the rest join it through their
own ``where`` operator. Clusters join each other through the cluster's
``where``.

Example
-------
``[Cluster([Catalyst("Links", "x", operator=Operator.IN),
Catalyst("Code", "A1", where=Where.OR)])]`` renders
``WHERE (ARRAY_CONTAINS(c.Links, @Links) OR c.Code = @Code)``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence


class Where(Enum):
    """Boolean connective joining a catalyst or cluster to the previous one."""

    AND = "AND"
    OR = "OR"


class Operator(Enum):
    EQ = "="
    NOT_EQ = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "IN"
    NOT_IN = "NOT IN"
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    DEFINED = "IS_DEFINED"
    NOT_DEFINED = "NOT IS_DEFINED"


class Direction(Enum):
    ASC = "ASC"
    DESC = "DESC"


# Operators rendered without a bound parameter
VALUELESS_OPERATORS = frozenset({Operator.DEFINED, Operator.NOT_DEFINED})
PATTERN_OPERATORS = frozenset({Operator.LIKE, Operator.NOT_LIKE})

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_ALIAS = re.compile(r"^\w+$")
_COLUMN_PATH = re.compile(r"\w+(?:\.\w+)*")


def is_column_path(name: Optional[str]) -> bool:
    """True for a dotted property path such as ``Code`` or ``address.city``."""
    return bool(name) and _COLUMN_PATH.fullmatch(name) is not None


@dataclass(frozen=True)
class Catalyst:
    """A single filter term.

    Attributes
    ----------
    column: str
        Document property, rendered as ``c.<column>``. Nested paths such as
        ``address.city`` are allowed.
    value: Any
        Bound parameter value. Must be ``None`` for DEFINED / NOT_DEFINED.
    alias: Optional[str]
        Parameter name (without ``@``). Defaults to the column stripped of
        every non-alphanumeric character.
    where: Where
        Connective to the previous catalyst of the same cluster.
    operator: Operator
        Comparison operator.
    """

    column: str
    value: Any = None
    alias: Optional[str] = None
    where: Where = Where.AND
    operator: Operator = Operator.EQ

    @property
    def parameter_name(self) -> str:
        if self.alias is not None and self.alias.strip():
            return self.alias.strip()
        return _NON_ALNUM.sub("", self.column or "")

    @property
    def has_parameter(self) -> bool:
        return self.operator not in VALUELESS_OPERATORS

    def violations(self) -> List[str]:
        """Return every rule this catalyst breaks; empty when valid."""
        problems: List[str] = []
        label = self.column if self.column and self.column.strip() else "<blank>"

        if not self.column or not self.column.strip():
            problems.append("Catalyst column is required")
        elif not is_column_path(self.column):
            problems.append(f"Catalyst {label}: column must be a property path such as address.city")
        elif self.has_parameter and not self.parameter_name:
            problems.append(f"Catalyst {label}: column yields an empty parameter name, supply an alias")

        if self.alias is not None and not _ALIAS.match(self.alias.strip()):
            problems.append(f"Catalyst {label}: alias '{self.alias}' must contain only letters, digits or underscores")

        if self.operator in VALUELESS_OPERATORS:
            if self.value is not None and self.value != "":
                problems.append(f"Catalyst {label}: {self.operator.name} does not accept a value")
        elif self.value is None:
            problems.append(f"Catalyst {label}: {self.operator.name} requires a value")

        if self.operator in PATTERN_OPERATORS and self.value is not None:
            if not isinstance(self.value, str) or not self.value or "%" not in self.value:
                problems.append(
                    f"Catalyst {label}: {self.operator.name} requires a non-empty string containing the '%' wildcard"
                )
        return problems


@dataclass(frozen=True)
class Cluster:
    """An ordered, non-empty group of catalysts rendered as one sub-expression."""

    catalysts: Sequence[Catalyst]
    where: Where = Where.AND

    def __post_init__(self) -> None:
        object.__setattr__(self, "catalysts", tuple(self.catalysts or ()))

    @classmethod
    def of(cls, *catalysts: Catalyst, where: Where = Where.AND) -> "Cluster":
        return cls(catalysts, where=where)


@dataclass(frozen=True)
class ColumnOptions:
    """Projection settings.

    ``count`` requests ``COUNT(1) Count`` and moves ``names`` into GROUP BY.
    """

    names: Sequence[str] = field(default_factory=tuple)
    is_distinct: bool = False
    top: int = 0
    count: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "names", tuple(self.names or ()))


@dataclass(frozen=True)
class SortOption:
    column: str
    direction: Direction = Direction.ASC


@dataclass(frozen=True)
class Page:
    """Page request for :meth:`universe.galaxy.Galaxy.paged`.

    ``continuation_token`` is the opaque cursor returned by the previous call;
    ``None`` or an empty string starts from the beginning.
    """

    size: int
    continuation_token: Optional[str] = None
