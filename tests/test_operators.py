import pytest

from querygraph.catalog import ColumnSchema
from querygraph.dialect import get_dialect
from querygraph.errors import GraphError
from querygraph.operators import (
    Operator,
    OperatorFilter,
    SimpleFilter,
    coerce_value,
    decode_filters,
    matches,
    operators_for_column,
    parse_operator,
    render_sql,
    split_key,
)
from querygraph.params import ParamBuffer

ESC = " ESCAPE '\\'"


def test_decode_filters_shapes():
    filters = decode_filters({"name": "Ann", "age__gte": 20, "id": {"op": "in", "val": "1, 2"}})
    assert filters == [
        SimpleFilter("name", "Ann"),
        OperatorFilter("age", Operator.GTE, 20),
        OperatorFilter("id", Operator.IN, ["1", "2"]),
    ]
    assert filters[0].op is Operator.EQ


def test_split_key():
    assert split_key("created_at__lte") == ("created_at", Operator.LTE)
    assert split_key("title__startswith") == ("title", Operator.STARTSWITH)
    assert split_key("plain") == ("plain", None)
    assert split_key("weird__suffix") == ("weird__suffix", None)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("=", Operator.EQ),
        ("==", Operator.EQ),
        ("!=", Operator.NE),
        ("<>", Operator.NE),
        ("neq", Operator.NE),
        (">=", Operator.GTE),
        ("<", Operator.LT),
        ("CONTAINS", Operator.CONTAINS),
        (None, Operator.EQ),
    ],
)
def test_parse_operator_aliases(raw, expected):
    assert parse_operator(raw) is expected


def test_unknown_operator():
    with pytest.raises(GraphError):
        parse_operator("regex")


def test_between_needs_two_bounds():
    assert coerce_value(Operator.BETWEEN, "1,5") == ("1", "5")
    with pytest.raises(GraphError):
        coerce_value(Operator.BETWEEN, [1, 2, 3])


def test_numeric_when_both_sides_parse():
    assert matches(Operator.EQ, "10", 10)
    assert matches(Operator.EQ, 10.0, "10")
    assert not matches(Operator.GT, "9", "10")
    assert matches(Operator.GT, "b", "a")
    assert matches(Operator.LTE, 20, "20")


def test_string_semantics():
    assert matches(Operator.CONTAINS, "Hello X", "X")
    assert matches(Operator.LIKE, "Hello X", "llo")
    assert matches(Operator.STARTSWITH, "Hello", "He")
    assert matches(Operator.ENDSWITH, "Hello", "lo")
    assert matches(Operator.IN, 2, ["1", "2"])
    assert matches(Operator.IN, "2", "1,2")
    assert not matches(Operator.IN, 3, [])
    assert matches(Operator.EQ, True, "true")
    assert matches(Operator.BETWEEN, 5, (1, 5))
    assert not matches(Operator.BETWEEN, 6, (1, 5))


def test_null_fails_every_predicate():
    for op in Operator:
        value = ("a", "b") if op is Operator.BETWEEN else "a"
        assert not matches(op, None, value)


def test_render_sql():
    params = ParamBuffer(get_dialect("postgres"))
    assert render_sql(Operator.NE, '"a"', 1, params) == '"a" <> $1'
    assert render_sql(Operator.CONTAINS, '"t"', "x", params) == '"t" LIKE $2' + ESC
    assert render_sql(Operator.STARTSWITH, '"t"', "x", params) == '"t" LIKE $3' + ESC
    assert render_sql(Operator.ENDSWITH, '"t"', "x", params) == '"t" LIKE $4' + ESC
    assert render_sql(Operator.IN, '"id"', [1, 2], params) == '"id" IN ($5, $6)'
    assert render_sql(Operator.BETWEEN, '"n"', (1, 9), params) == '"n" BETWEEN $7 AND $8'
    assert params.values == [1, "%x%", "x%", "%x", 1, 2, 1, 9]


def test_empty_in_matches_nothing():
    params = ParamBuffer(get_dialect("postgres"))
    assert render_sql(Operator.IN, '"id"', [], params) == "1 = 0"
    assert params.values == []


def test_operators_for_column():
    assert operators_for_column(ColumnSchema("flag", "boolean")) == [Operator.EQ]
    assert operators_for_column(ColumnSchema("status", "text", enum_options=("a", "b"))) == [Operator.EQ]
    assert operators_for_column(ColumnSchema("n", "integer")) == [
        Operator.EQ, Operator.GT, Operator.GTE, Operator.LT, Operator.LTE,
    ]
    assert operators_for_column(ColumnSchema("at", "timestamp with time zone"))[1] is Operator.GT
    assert operators_for_column(ColumnSchema("title", "varchar")) == [
        Operator.EQ, Operator.CONTAINS, Operator.STARTSWITH, Operator.ENDSWITH,
    ]


def test_null_filter_value_never_matches():
    assert not matches(Operator.EQ, "", None)
    assert not matches(Operator.NE, "x", None)
    assert not matches(Operator.CONTAINS, "None", None)


def test_like_wildcards_are_escaped():
    pg = ParamBuffer(get_dialect("postgres"))
    assert render_sql(Operator.CONTAINS, '"t"', "50%_off\\", pg) == '"t" LIKE $1' + ESC
    assert pg.values == ["%50\\%\\_off\\\\%"]

    my = ParamBuffer(get_dialect("mysql"))
    assert render_sql(Operator.STARTSWITH, "`t`", "a_b", my) == "`t` LIKE ?"
    assert my.values == ["a\\_b%"]


def test_operators_for_column_uses_base_type():
    ordered = [Operator.EQ, Operator.GT, Operator.GTE, Operator.LT, Operator.LTE]
    text = [Operator.EQ, Operator.CONTAINS, Operator.STARTSWITH, Operator.ENDSWITH]
    assert operators_for_column(ColumnSchema("n", "int4")) == ordered
    assert operators_for_column(ColumnSchema("x", "double precision")) == ordered
    assert operators_for_column(ColumnSchema("d", "timestamptz")) == ordered
    assert operators_for_column(ColumnSchema("p", "point")) == text
    assert operators_for_column(ColumnSchema("i", "interval")) == text
    assert operators_for_column(ColumnSchema("ip", "inet")) == text
