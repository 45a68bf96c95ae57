"""Render filter and projection options into parameterized Cosmos SQL.

The compiler is pure: the same inputs always produce the same text and the
same parameter order, and no option object is mutated.

Shape of the output
-------------------
``SELECT [DISTINCT] [TOP n] <projection> FROM c [WHERE ...] [GROUP BY ...] [ORDER BY ...]``
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .exceptions import ValidationError
from .options import Catalyst, Cluster, ColumnOptions, Operator, SortOption, is_column_path
from .types import SdkParameter

logger = logging.getLogger(__name__)

ROOT_ALIAS = "c"
SORT_WITH_GROUP_MESSAGE = "ORDER BY is not supported in presence of GROUP BY"


@dataclass(frozen=True)
class CompiledQuery:
    text: str
    parameters: Tuple[Tuple[str, Any], ...] = ()
    grouped: bool = False

    def sdk_parameters(self) -> List[SdkParameter]:
        """Parameters in the ``[{"name": ..., "value": ...}]`` form the SDK expects."""
        return [{"name": name, "value": value} for name, value in self.parameters]


def make_column_ref(column: str) -> str:
    """Property reference on the query root, e.g. ``c.Code``."""
    return f"{ROOT_ALIAS}.{column}"


def make_parameter_ref(catalyst: Catalyst) -> str:
    return f"@{catalyst.parameter_name}"


def make_predicate(catalyst: Catalyst) -> str:
    column = make_column_ref(catalyst.column)
    op = catalyst.operator
    if op is Operator.IN:
        return f"ARRAY_CONTAINS({column}, {make_parameter_ref(catalyst)})"
    if op is Operator.NOT_IN:
        return f"NOT ARRAY_CONTAINS({column}, {make_parameter_ref(catalyst)})"
    if op is Operator.DEFINED or op is Operator.NOT_DEFINED:
        return f"{op.value}({column})"
    return f"{column} {op.value} {make_parameter_ref(catalyst)}"


def _dedupe(names: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(n for n in names if n))


def effective_groups(columns: Optional[ColumnOptions], groups: Optional[Sequence[str]]) -> List[str]:
    """GROUP BY columns after ``ColumnOptions.count`` folds its names in."""
    merged = list(groups or [])
    if columns is not None and columns.count:
        merged.extend(columns.names)
    return _dedupe(merged)


def validate(
    clusters: Sequence[Cluster],
    columns: Optional[ColumnOptions] = None,
    sorting: Optional[Sequence[SortOption]] = None,
    groups: Optional[Sequence[str]] = None,
) -> None:
    """Check every rule and raise one :class:`ValidationError` listing all violations."""
    problems: List[str] = []
    seen_params: Dict[str, str] = {}

    for position, cluster in enumerate(clusters or []):
        if not cluster.catalysts:
            problems.append(f"Cluster {position} must contain at least one catalyst")
            continue
        for catalyst in cluster.catalysts:
            problems.extend(catalyst.violations())
            if not catalyst.has_parameter or not catalyst.parameter_name:
                continue
            name = catalyst.parameter_name
            if name in seen_params:
                problems.append(
                    f"Parameter @{name} is bound by both '{seen_params[name]}' and '{catalyst.column}', supply an alias"
                )
            else:
                seen_params[name] = catalyst.column

    if columns is not None:
        if columns.top < 0:
            problems.append("ColumnOptions.top must not be negative")
        if any(not n or not n.strip() for n in columns.names):
            problems.append("ColumnOptions.names must not contain blank names")
        for name in columns.names:
            if name and name.strip() and not is_column_path(name):
                problems.append(f"ColumnOptions.names: '{name}' is not a property path")

    for option in sorting or []:
        if not option.column or not option.column.strip():
            problems.append("Sort column is required")
        elif not is_column_path(option.column):
            problems.append(f"Sort column '{option.column}' is not a property path")

    for group in groups or []:
        if not is_column_path(group):
            problems.append(f"Group column '{group}' is not a property path")

    if sorting and effective_groups(columns, groups):
        problems.append(SORT_WITH_GROUP_MESSAGE)

    if problems:
        raise ValidationError(_dedupe(problems))


def render_projection(columns: Optional[ColumnOptions]) -> str:
    if columns is None:
        return "*"

    projection = ", ".join(make_column_ref(n) for n in columns.names)
    if columns.count:
        projection = f"{projection}, COUNT(1) Count" if projection else "COUNT(1) Count"
    if not projection:
        projection = "*"
    if columns.top > 0:
        projection = f"TOP {columns.top} {projection}"
    if columns.is_distinct:
        projection = f"DISTINCT {projection}"
    return projection


def render_filter(clusters: Sequence[Cluster]) -> str:
    parts: List[str] = []
    for position, cluster in enumerate(clusters):
        terms: List[str] = []
        for index, catalyst in enumerate(cluster.catalysts):
            predicate = make_predicate(catalyst)
            terms.append(predicate if index == 0 else f"{catalyst.where.value} {predicate}")
        body = " ".join(terms)
        if len(cluster.catalysts) > 1:
            body = f"({body})"
        parts.append(f"WHERE {body}" if position == 0 else f"{cluster.where.value} {body}")
    return " ".join(parts)


def render_order_by(sorting: Sequence[SortOption]) -> str:
    keys = ", ".join(f"{make_column_ref(s.column)} {s.direction.value}" for s in sorting)
    return f"ORDER BY {keys}"


def render_group_by(groups: Sequence[str]) -> str:
    return "GROUP BY " + ", ".join(make_column_ref(g) for g in groups)


def bind_parameters(clusters: Sequence[Cluster]) -> Tuple[Tuple[str, Any], ...]:
    return tuple(
        (make_parameter_ref(catalyst), catalyst.value)
        for cluster in clusters
        for catalyst in cluster.catalysts
        if catalyst.has_parameter
    )


def compile_query(
    clusters: Optional[Sequence[Cluster]] = None,
    columns: Optional[ColumnOptions] = None,
    sorting: Optional[Sequence[SortOption]] = None,
    groups: Optional[Sequence[str]] = None,
) -> CompiledQuery:
    """Validate the options and render them into a :class:`CompiledQuery`.

    Parameters
    ----------
    clusters:
        Filter groups; ``None`` or empty selects every document.
    columns:
        Projection settings; ``None`` projects ``*``.
    sorting:
        ORDER BY keys in precedence order.
    groups:
        GROUP BY columns. ``columns.count`` adds its names here.

    Raises
    ------
    ValidationError
        With every violation found, before anything is rendered.
    """
    clusters = list(clusters or [])
    sorting = list(sorting or [])
    validate(clusters, columns, sorting, groups)

    group_list = effective_groups(columns, groups)
    sections = [f"SELECT {render_projection(columns)} FROM {ROOT_ALIAS}"]
    if clusters:
        sections.append(render_filter(clusters))
    if group_list:
        sections.append(render_group_by(group_list))
    if sorting:
        sections.append(render_order_by(sorting))

    compiled = CompiledQuery(
        text=" ".join(sections),
        parameters=bind_parameters(clusters),
        grouped=bool(group_list),
    )
    logger.debug("compiled_query: text=%s params=%d", compiled.text, len(compiled.parameters))
    return compiled
