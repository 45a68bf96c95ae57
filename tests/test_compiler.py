from __future__ import annotations

import pytest

from universe import (
    Catalyst,
    Cluster,
    ColumnOptions,
    Direction,
    Operator,
    SortOption,
    ValidationError,
    Where,
    compile_query,
)
from universe.compiler import SORT_WITH_GROUP_MESSAGE


def test_single_equality_renders_bare_predicate() -> None:
    query = compile_query([Cluster.of(Catalyst("Code", "A1"))])

    assert query.text == "SELECT * FROM c WHERE c.Code = @Code"
    assert query.parameters == (("@Code", "A1"),)
    assert query.sdk_parameters() == [{"name": "@Code", "value": "A1"}]


def test_cluster_of_two_is_parenthesized() -> None:
    query = compile_query(
        [
            Cluster.of(
                Catalyst("Links", ["x"], operator=Operator.IN),
                Catalyst("Code", "A1", where=Where.OR),
            )
        ]
    )

    assert query.text == "SELECT * FROM c WHERE (ARRAY_CONTAINS(c.Links, @Links) OR c.Code = @Code)"
    assert query.parameters == (("@Links", ["x"]), ("@Code", "A1"))


def test_clusters_join_with_their_own_operator() -> None:
    query = compile_query(
        [
            Cluster.of(Catalyst("Status", "active")),
            Cluster.of(
                Catalyst("Age", 18, operator=Operator.GTE),
                Catalyst("Vip", True, where=Where.OR),
                where=Where.OR,
            ),
        ]
    )

    assert query.text == "SELECT * FROM c WHERE c.Status = @Status OR (c.Age >= @Age OR c.Vip = @Vip)"


def test_every_operator_symbol() -> None:
    query = compile_query(
        [
            Cluster.of(
                Catalyst("A", 1),
                Catalyst("B", 1, operator=Operator.NOT_EQ),
                Catalyst("C", 1, operator=Operator.GT),
                Catalyst("D", 1, operator=Operator.GTE),
                Catalyst("E", 1, operator=Operator.LT),
                Catalyst("F", 1, operator=Operator.LTE),
                Catalyst("G", "x", operator=Operator.NOT_IN),
                Catalyst("H", "a%", operator=Operator.LIKE),
                Catalyst("I", "%b", operator=Operator.NOT_LIKE),
                Catalyst("J", operator=Operator.DEFINED),
                Catalyst("K", operator=Operator.NOT_DEFINED),
            )
        ]
    )

    assert query.text == (
        "SELECT * FROM c WHERE (c.A = @A AND c.B != @B AND c.C > @C AND c.D >= @D"
        " AND c.E < @E AND c.F <= @F AND NOT ARRAY_CONTAINS(c.G, @G)"
        " AND c.H LIKE @H AND c.I NOT LIKE @I AND IS_DEFINED(c.J) AND NOT IS_DEFINED(c.K))"
    )
    # Existence checks bind nothing
    assert [name for name, _ in query.parameters] == ["@A", "@B", "@C", "@D", "@E", "@F", "@G", "@H", "@I"]


def test_parameter_name_strips_non_alphanumerics_and_honours_alias() -> None:
    query = compile_query(
        [
            Cluster.of(
                Catalyst("address.city", "Oslo"),
                Catalyst("price", 10, alias="minPrice", operator=Operator.GTE),
                Catalyst("price", 20, alias="maxPrice", operator=Operator.LTE),
            )
        ]
    )

    assert query.text == (
        "SELECT * FROM c WHERE (c.address.city = @addresscity"
        " AND c.price >= @minPrice AND c.price <= @maxPrice)"
    )
    assert query.parameters == (("@addresscity", "Oslo"), ("@minPrice", 10), ("@maxPrice", 20))


def test_projection_top_distinct_and_count() -> None:
    columns = ColumnOptions(names=["Code", "Name"], is_distinct=True, top=5)
    assert compile_query([], columns).text == "SELECT DISTINCT TOP 5 c.Code, c.Name FROM c"

    counted = compile_query([], ColumnOptions(names=["Code"], count=True), groups=["Region", "Code"])
    assert counted.text == "SELECT c.Code, COUNT(1) Count FROM c GROUP BY c.Region, c.Code"
    assert counted.grouped

    assert compile_query([], ColumnOptions(count=True)).text == "SELECT COUNT(1) Count FROM c"
    assert compile_query([], ColumnOptions(top=3)).text == "SELECT TOP 3 * FROM c"


def test_order_by_keeps_precedence() -> None:
    query = compile_query(
        [Cluster.of(Catalyst("Code", "A1"))],
        sorting=[SortOption("Name", Direction.DESC), SortOption("AddedOn")],
    )

    assert query.text == "SELECT * FROM c WHERE c.Code = @Code ORDER BY c.Name DESC, c.AddedOn ASC"
    assert not query.grouped


def test_no_clusters_selects_everything() -> None:
    query = compile_query(None)
    assert query.text == "SELECT * FROM c"
    assert query.parameters == ()


def test_compilation_is_deterministic() -> None:
    clusters = [
        Cluster.of(Catalyst("Links", "x", operator=Operator.IN), Catalyst("Code", "A1", where=Where.OR)),
        Cluster.of(Catalyst("Name", "w%", operator=Operator.LIKE)),
    ]
    columns = ColumnOptions(names=["Code"])

    first = compile_query(clusters, columns, [SortOption("Code")])
    second = compile_query(clusters, columns, [SortOption("Code")])

    assert first == second


@pytest.mark.parametrize("operator", [Operator.DEFINED, Operator.NOT_DEFINED])
def test_existence_operators_reject_values(operator: Operator) -> None:
    with pytest.raises(ValidationError) as info:
        compile_query([Cluster.of(Catalyst("Deleted", True, operator=operator))])

    assert f"{operator.name} does not accept a value" in str(info.value)


@pytest.mark.parametrize("value", ["abc", "", 42, None])
@pytest.mark.parametrize("operator", [Operator.LIKE, Operator.NOT_LIKE])
def test_like_requires_wildcard_string(operator: Operator, value: object) -> None:
    with pytest.raises(ValidationError):
        compile_query([Cluster.of(Catalyst("Name", value, operator=operator))])


def test_comparison_requires_value() -> None:
    with pytest.raises(ValidationError) as info:
        compile_query([Cluster.of(Catalyst("Code", None))])

    assert "EQ requires a value" in str(info.value)


def test_empty_cluster_is_rejected() -> None:
    with pytest.raises(ValidationError) as info:
        compile_query([Cluster.of(Catalyst("Code", "A1")), Cluster([])])

    assert info.value.messages == ["Cluster 1 must contain at least one catalyst"]


def test_all_violations_are_reported_together() -> None:
    with pytest.raises(ValidationError) as info:
        compile_query(
            [
                Cluster.of(
                    Catalyst("", "x"),
                    Catalyst("Deleted", True, operator=Operator.DEFINED),
                    Catalyst("Name", "plain", operator=Operator.LIKE),
                ),
                Cluster([]),
            ]
        )

    messages = info.value.messages
    assert len(messages) == 4
    assert str(info.value) == "\n".join(messages)
    assert "Catalyst column is required" in messages


def test_duplicate_parameter_names_need_an_alias() -> None:
    with pytest.raises(ValidationError) as info:
        compile_query(
            [Cluster.of(Catalyst("price", 10, operator=Operator.GTE), Catalyst("price", 20, operator=Operator.LTE))]
        )

    assert "Parameter @price is bound by both" in str(info.value)


def test_invalid_alias_is_rejected() -> None:
    with pytest.raises(ValidationError) as info:
        compile_query([Cluster.of(Catalyst("Code", "A1", alias="bad name"))])

    assert "alias 'bad name'" in str(info.value)


def test_sorting_with_grouping_is_a_dialect_error() -> None:
    with pytest.raises(ValidationError) as info:
        compile_query([], sorting=[SortOption("Code")], groups=["Code"])
    assert info.value.messages == [SORT_WITH_GROUP_MESSAGE]

    # Count folds names into the grouping set, so it conflicts too
    with pytest.raises(ValidationError):
        compile_query([], ColumnOptions(names=["Code"], count=True), sorting=[SortOption("Code")])


def test_negative_top_is_rejected() -> None:
    with pytest.raises(ValidationError):
        compile_query([], ColumnOptions(top=-1))


def test_options_are_not_mutated() -> None:
    names = ["Code"]
    groups = ["Region"]
    columns = ColumnOptions(names=names, count=True)

    compile_query([], columns, groups=groups)

    assert groups == ["Region"]
    assert columns.names == ("Code",)


@pytest.mark.parametrize("column", ["Code; DROP", "Name)", "a..b", "1=1 OR c.x", " Code", "address."])
def test_malformed_column_paths_are_rejected(column: str) -> None:
    with pytest.raises(ValidationError) as info:
        compile_query([Cluster.of(Catalyst(column, "A1", alias="code"))])
    assert "property path" in str(info.value)

    with pytest.raises(ValidationError):
        compile_query([], ColumnOptions(names=[column]))
    with pytest.raises(ValidationError):
        compile_query([], sorting=[SortOption(column)])
    with pytest.raises(ValidationError):
        compile_query([], groups=[column])


def test_nested_paths_pass_everywhere() -> None:
    query = compile_query(
        [Cluster.of(Catalyst("address.city", "Oslo"))],
        ColumnOptions(names=["address.city", "_id2"]),
        sorting=[SortOption("address.zip")],
    )

    assert query.text == (
        "SELECT c.address.city, c._id2 FROM c WHERE c.address.city = @addresscity ORDER BY c.address.zip ASC"
    )
