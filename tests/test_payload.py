import pytest

from querygraph.errors import GraphError
from querygraph.graph import AggregateFunction, FieldRef, JoinEdge, SortKey, WriteOperation
from querygraph.operators import Operator
from querygraph.payload import decode_graph, decode_list_params, decode_write


def test_decode_graph_alternative_spellings():
    g = decode_graph(
        {
            "source": {"table": "users", "alias": "usr"},
            "joins": [{"from": {"table": "users", "column": "id"}, "to": {"table": "posts", "field": "user_id"}}],
            "filters": [
                {"field": "posts.title", "operator": "contains", "val": "X"},
                {"table": "users", "column": "id", "op": ">=", "value": 2},
                {"field": "id", "op": "in", "value": "1,2"},
            ],
            "groupBy": ["users.name"],
            "aggregations": [{"func": "count", "field": "*", "as": "n"}],
            "having": [{"alias": "n", "op": "gt", "value": 1}],
            "orderBy": "-n",
            "limit": 10,
        }
    )
    assert g.source.alias == "usr"
    assert g.joins == (JoinEdge("users", "id", "posts", "user_id"),)
    assert [(f.field, f.op, f.value) for f in g.filters] == [
        (FieldRef("title", "posts"), Operator.CONTAINS, "X"),
        (FieldRef("id", "users"), Operator.GTE, 2),
        (FieldRef("id"), Operator.IN, ["1", "2"]),
    ]
    assert g.group_by == (FieldRef("name", "users"),)
    assert g.aggregations[0].function is AggregateFunction.COUNT
    assert g.aggregations[0].field is None
    assert g.aggregations[0].output_name == "n"
    assert g.having[0].alias == "n"
    assert g.sort == (SortKey("n", True),)
    assert g.limit == 10
    assert g.offset == 0


def test_flat_join_keys_and_fields_list():
    g = decode_graph(
        {
            "source": "users",
            "joins": [{"fromTable": "users", "fromColumn": "id", "toTable": "posts", "toColumn": "user_id"}],
            "fields": ["users.name", "posts.*"],
            "sort": [{"field": "users.name", "direction": "desc"}, "posts.title ASC"],
            "offset": None,
        }
    )
    assert g.output_fields == {"users": ("name",), "posts": ()}
    assert g.sort == (SortKey("users.name", True), SortKey("posts.title", False))


def test_invalid_graph_bodies():
    with pytest.raises(GraphError):
        decode_graph({"source": "users", "limit": -5})
    with pytest.raises(GraphError):
        decode_graph({"source": "users", "filters": [{"field": "id", "op": "regex", "value": "x"}]})
    with pytest.raises(GraphError):
        decode_graph(
            {"source": "users", "joins": [{"type": "INNER", "fromTable": "users", "fromColumn": "id", "toTable": "posts", "toColumn": "user_id"}]}
        )


def test_decode_write():
    req = decode_write({"operation": "update", "graph": {"source": "posts"}, "data": {"title": "x"}, "additionalFilters": {"user_id__gte": 1}})
    assert req.operation is WriteOperation.UPDATE
    assert req.preview_only is False
    [f] = req.extra_filters()
    assert (f.field, f.op, f.value) == (FieldRef("user_id"), Operator.GTE, 1)

    req = decode_write({"operation": "DELETE", "graph": {"source": "posts"}, "additionalFilters": [{"field": "id", "value": 3}]})
    assert req.extra_filters()[0].op is Operator.EQ


def test_decode_list_params():
    p = decode_list_params({"limit": "5", "orderBy": "name", "orderDir": "desc", "age__gte": "3", "offset": ""})
    assert p.limit == 5
    assert p.offset is None
    assert p.order_by == "name"
    assert p.order_dir == "DESC"
    assert p.filters == {"age__gte": "3"}

    assert decode_list_params(None).filters == {}
    with pytest.raises(GraphError):
        decode_list_params({"limit": "many"})
