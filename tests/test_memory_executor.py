import pytest

from querygraph.errors import NoPrimaryKey, NoRelationship, UnknownTable, UnresolvableReference
from querygraph.exec.executor import Executor, sort_rows
from querygraph.exec.join import left_join, lift
from querygraph.graph import (
    AggregateFunction,
    Aggregation,
    FieldRef,
    GraphFilter,
    HavingClause,
    JoinEdge,
    QueryGraph,
    SortKey,
    Source,
)
from querygraph.operators import Operator
from querygraph.plan import JoinStep

USERS_POSTS = JoinEdge("users", "id", "posts", "user_id")


def test_left_join_keeps_unmatched_rows(executor):
    graph = QueryGraph(
        source=Source("users"),
        joins=(USERS_POSTS,),
        output_fields={"users": ("name",), "posts": ("title",)},
        sort=(SortKey("users_name"), SortKey("posts_title")),
    )
    res = executor.run_graph(graph)
    assert res.columns == ["users_name", "posts_title"]
    assert res.rows == [
        {"users_name": "Ann", "posts_title": "Hello X"},
        {"users_name": "Ann", "posts_title": "Other"},
        {"users_name": "Bob", "posts_title": None},
    ]
    assert res.total == 3


def test_left_join_step_null_key_never_matches():
    left = lift("posts", [{"id": 3, "user_id": None}], ["id", "user_id"])
    step = JoinStep("posts", "user_id", "users", "id")
    out = left_join(left, step, [{"id": None, "name": "ghost"}, {"id": 1, "name": "Ann"}], ["id", "name"])
    assert out == [{("posts", "id"): 3, ("posts", "user_id"): None, ("users", "id"): None, ("users", "name"): None}]


def test_join_keys_compare_as_strings():
    left = lift("posts", [{"id": 1, "user_id": "1"}], ["id", "user_id"])
    out = left_join(left, JoinStep("posts", "user_id", "users", "id"), [{"id": 1, "name": "Ann"}], ["id", "name"])
    assert out[0][("users", "name")] == "Ann"


def test_sum_count_avg(executor):
    graph = QueryGraph(
        source=Source("posts"),
        aggregations=(
            Aggregation(AggregateFunction.SUM, FieldRef("amount")),
            Aggregation(AggregateFunction.COUNT, None),
            Aggregation(AggregateFunction.AVG, FieldRef("amount")),
        ),
    )
    res = executor.run_graph(graph)
    assert res.rows == [{"sum_amount": 60, "count": 3, "avg_amount": 20}]
    assert res.columns == ["sum_amount", "count", "avg_amount"]


def test_min_max_skip_non_numeric(store, schema):
    store.load({"posts": [{"id": 1, "amount": "7"}, {"id": 2, "amount": None}, {"id": 3, "amount": "n/a"}]})
    graph = QueryGraph(
        source=Source("posts"),
        aggregations=(
            Aggregation(AggregateFunction.MIN, FieldRef("amount")),
            Aggregation(AggregateFunction.MAX, FieldRef("title")),
        ),
    )
    res = Executor(store, schema).run_graph(graph)
    assert res.rows == [{"min_amount": 7.0, "max_title": None}]


def test_group_by_with_having(executor):
    graph = QueryGraph(
        source=Source("posts"),
        group_by=(FieldRef("user_id"),),
        aggregations=(Aggregation(AggregateFunction.SUM, FieldRef("amount"), "total"),),
        having=(HavingClause("total", Operator.GTE, 30),),
        sort=(SortKey("total", descending=True),),
    )
    res = executor.run_graph(graph)
    # the NULL group is its own partition; equal totals keep first-seen order
    assert res.rows == [{"user_id": 1, "total": 30}, {"user_id": None, "total": 30}]
    assert res.total == 2


def test_filter_gte(executor):
    graph = QueryGraph(
        source=Source("posts"),
        filters=(GraphFilter(FieldRef("amount"), Operator.GTE, 20),),
        output_fields={"posts": ("amount",)},
    )
    assert [r["amount"] for r in executor.run_graph(graph).rows] == [20, 30]


def test_pagination_reports_total(store, schema):
    store.load({"posts": [{"id": i, "amount": i * 10} for i in range(1, 6)]})
    graph = QueryGraph(source=Source("posts"), output_fields={"posts": ("id",)}, limit=2, offset=1)
    res = Executor(store, schema).run_graph(graph)
    assert res.rows == [{"id": 2}, {"id": 3}]
    assert res.total == 5


def test_sort_nulls_last_ascending_first_descending():
    rows = [{"v": 2}, {"v": None}, {"v": 10}, {"v": 1}]
    asc = sort_rows(rows, [(lambda r: r["v"], False)])
    assert [r["v"] for r in asc] == [1, 2, 10, None]
    desc = sort_rows(rows, [(lambda r: r["v"], True)])
    assert [r["v"] for r in desc] == [None, 10, 2, 1]


def test_multi_key_sort_is_stable():
    rows = [{"a": 1, "b": "y"}, {"a": 2, "b": "x"}, {"a": 1, "b": "x"}]
    out = sort_rows(rows, [(lambda r: r["a"], False), (lambda r: r["b"], False)])
    assert out == [{"a": 1, "b": "x"}, {"a": 1, "b": "y"}, {"a": 2, "b": "x"}]


def test_join_target_missing_from_store(store, schema):
    store.load({"users": [{"id": 1, "name": "Ann"}]})
    assert not store.has_table("comments")
    graph = QueryGraph(source=Source("users"), joins=(JoinEdge("users", "id", "comments", "post_id"),))
    res = Executor(store, schema).run_graph(graph)
    assert res.rows[0]["comments_body"] is None
    assert res.rows[0]["users_name"] == "Ann"


def test_store_only_table_uses_row_keys(store, schema):
    store.load({"scratch": [{"k": "a", "n": 1}, {"k": "b", "n": 2}]})
    graph = QueryGraph(source=Source("scratch"), filters=(GraphFilter(FieldRef("n"), Operator.GT, 1),))
    res = Executor(store, schema).run_graph(graph)
    assert res.columns == ["k", "n"]
    assert res.rows == [{"k": "b", "n": 2}]


def test_unknown_source_table(executor):
    with pytest.raises(UnknownTable):
        executor.run_graph(QueryGraph(source=Source("ghosts")))


def test_unresolvable_filter_is_dropped_unless_strict(store, schema):
    graph = QueryGraph(source=Source("users"), filters=(GraphFilter(FieldRef("nope"), Operator.EQ, 1),))
    assert Executor(store, schema).run_graph(graph).total == 2
    with pytest.raises(UnresolvableReference):
        Executor(store, schema, strict=True).run_graph(graph)


def test_prefixed_reference_in_memory(executor):
    graph = QueryGraph(
        source=Source("users"),
        joins=(USERS_POSTS,),
        filters=(GraphFilter(FieldRef("posts_title"), Operator.CONTAINS, "X"),),
        output_fields={"users": ("id",), "posts": ("id",)},
    )
    assert executor.run_graph(graph).rows == [{"users_id": 1, "posts_id": 1}]


def test_list_rows(executor):
    res = executor.list_rows("posts", {"amount__gt": 10, "bogus": 1}, order_by="amount", order_dir="desc")
    assert [r["amount"] for r in res.rows] == [30, 20]
    assert res.total == 2

    res = executor.list_rows("posts", limit=1, offset=1)
    assert [r["id"] for r in res.rows] == [2]
    assert res.total == 3


def test_get_row(executor, store):
    assert executor.get_row("users", "2")["name"] == "Bob"
    assert executor.get_row("users", 9) is None
    with pytest.raises(NoPrimaryKey):
        executor.get_row("logs", 1)

    store.load({"pairs": [{"a": 1, "b": "x", "note": "first"}, {"a": 1, "b": "y", "note": "second"}]})
    assert executor.get_row("pairs", "1|y")["note"] == "second"
    assert executor.get_row("pairs", "1") is None


def test_related_rows(executor):
    res = executor.related_rows("users", 1, "posts")
    assert [r["id"] for r in res.rows] == [1, 2]
    assert res.total == 2

    res = executor.related_rows("posts", 2, "users")
    assert res.rows == [{"id": 1, "name": "Ann", "meta": None}]

    with pytest.raises(NoRelationship):
        executor.related_rows("users", 1, "tags")


def test_unresolvable_output_fields_project_source_table(executor):
    graph = QueryGraph(source=Source("users"), output_fields={"users": ("nope",), "ghosts": ("id",)})
    res = executor.run_graph(graph)
    assert res.columns == ["id", "name", "meta"]
    assert res.rows == [{"id": 1, "name": "Ann", "meta": None}, {"id": 2, "name": "Bob", "meta": None}]
