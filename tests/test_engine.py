import pytest

from querygraph import Engine, ParameterizedQuery, QueryResult, Settings
from querygraph.errors import GraphError, MissingData, MissingFilter, NoRelationship, QueryGraphError, SchemaNotFound


USERS_POSTS_GRAPH = {
    "source": {"table": "users"},
    "joins": [{"from": {"table": "users", "field": "id"}, "to": {"table": "posts", "field": "user_id"}}],
    "fields": ["users.name", "posts.title"],
}


def test_unregistered_connection(engine):
    with pytest.raises(SchemaNotFound):
        engine.query("nope", {"source": "users"})


def test_query_dispatches_on_dialect(engine):
    sql = engine.query("pg", {"source": "users", "fields": ["users.name"]})
    assert isinstance(sql, ParameterizedQuery)
    assert sql.text == 'SELECT "u"."name" AS "name" FROM "users" "u"'

    local = engine.query("mem", {"source": "users", "fields": ["users.name"]})
    assert isinstance(local, QueryResult)
    assert local.rows == [{"name": "Ann"}, {"name": "Bob"}]


def test_users_posts_scenario(schema_json):
    engine = Engine(settings=Settings())
    engine.register("c1", schema_json, "local")
    engine.create_row("c1", "users", {"name": "Ann"})
    engine.create_row("c1", "posts", {"user_id": 1, "title": "Hello X"})
    engine.create_row("c1", "posts", {"user_id": 1, "title": "Other"})

    related = engine.related_rows("c1", "users", 1, "posts")
    assert [r["title"] for r in related.rows] == ["Hello X", "Other"]
    assert related.total == 2

    res = engine.query("c1", USERS_POSTS_GRAPH, {"posts.title__contains": "X"})
    assert res.rows == [{"users_name": "Ann", "posts_title": "Hello X"}]

    sql = engine.query("pg", USERS_POSTS_GRAPH, {"posts.title__contains": "X"})
    assert sql.text.endswith('WHERE "p"."title" LIKE $1 ESCAPE ' "'\\'")
    assert sql.values == ["%X%"]


def test_both_backends_agree_on_aggregates(engine):
    body = {
        "source": "posts",
        "aggregations": [
            {"function": "sum", "field": "amount"},
            {"func": "count", "field": "*"},
            {"type": "AVG", "column": "amount"},
        ],
    }
    assert engine.query("mem", body).rows == [{"sum_amount": 60, "count": 3, "avg_amount": 20}]
    sql = engine.query("pg", body)
    assert sql.columns == ["sum_amount", "count", "avg_amount"]
    assert 'COUNT(*) AS "count"' in sql.text


def test_list_rows_default_page_size(engine):
    engine.settings = Settings(default_page_size=2)
    local = engine.list_rows("mem", "posts", {})
    assert len(local.rows) == 2
    assert local.total == 3

    sql = engine.list_rows("pg", "posts", {"title__startswith": "He", "orderBy": "id", "orderDir": "desc"})
    assert sql.text == 'SELECT * FROM "posts" WHERE "title" LIKE $1 ESCAPE ' "'\\' ORDER BY \"id\" DESC LIMIT $2"
    assert sql.values == ["He%", 2]


def test_preview_is_capped(engine):
    engine.settings = Settings(preview_limit=1)
    assert len(engine.preview("mem", {"source": "posts", "limit": 10}).rows) == 1
    assert engine.preview("pg", {"source": "posts"}).values == [1]


def test_per_table_crud_both_backends(engine):
    assert engine.get_row("mem", "users", 1)["name"] == "Ann"
    assert engine.get_row("pg", "users", 1).text == 'SELECT * FROM "users" WHERE "id" = $1'

    assert engine.update_row("mem", "users", 1, {"name": "A"})["name"] == "A"
    assert engine.update_row("my", "users", 1, {"name": "A"}).text == "UPDATE `users` SET `name` = ? WHERE `id` = ?"

    assert engine.update_where("mem", "posts", {"amount": 1}, {"user_id": 1}) == 2
    assert engine.delete_where("mem", "posts", {"amount": 1}) == 2
    with pytest.raises(MissingFilter):
        engine.delete_where("pg", "posts", {})

    assert engine.delete_row("mem", "users", 2)["name"] == "Bob"
    assert engine.delete_row("pg", "users", 2).text == 'DELETE FROM "users" WHERE "id" = $1 RETURNING *'

    with pytest.raises(NoRelationship):
        engine.related_rows("pg", "users", 1, "tags")


def test_write_request_body(engine):
    res = engine.write(
        "mem",
        {"operation": "delete", "graph": {"source": "users"}, "additionalFilters": {"id": 1}, "previewOnly": True},
    )
    assert res.to_dict() == {
        "operation": "DELETE",
        "tables": {"users": {"operation": "DELETE", "deletedCount": 1, "preview": True, "message": "would delete 1"}},
    }

    compiled = engine.write("pg", {"operation": "DELETE", "graph": {"source": "users"}, "additionalFilters": {"id": 1}})
    assert compiled.statements["users"].values == [1]


def test_write_without_data_both_backends(engine):
    body = {"operation": "UPDATE", "graph": {"source": "users"}, "additionalFilters": {"id": 1}}
    for connection in ("mem", "pg", "my"):
        with pytest.raises(MissingData):
            engine.write(connection, body)
    assert engine.get_row("mem", "users", 1)["name"] == "Ann"


def test_contains_treats_wildcards_literally_on_both_backends(engine):
    engine.load_rows("mem", {"posts": [{"id": 1, "title": "50% off"}, {"id": 2, "title": "500 off"}]})
    body = {"source": "posts", "fields": ["posts.title"]}
    filters = {"title__contains": "50%"}

    assert engine.query("mem", body, filters).rows == [{"title": "50% off"}]

    pg = engine.query("pg", body, filters)
    assert pg.text.endswith('WHERE "p"."title" LIKE $1 ESCAPE ' "'\\'")
    assert pg.values == ["%50\\%%"]

    my = engine.query("my", body, filters)
    assert my.text.endswith("WHERE `p`.`title` LIKE ?")
    assert my.values == ["%50\\%%"]


def test_malformed_body(engine):
    with pytest.raises(GraphError):
        engine.query("pg", {"joins": []})
    with pytest.raises(GraphError):
        engine.query("pg", {"source": "users", "limit": -1})


def test_operators_listing(engine):
    ops = engine.operators("pg")
    assert ops["posts"]["amount"] == ["eq", "gt", "gte", "lt", "lte"]
    assert ops["posts"]["title"] == ["eq", "contains", "startswith", "endswith"]


def test_close_drops_rows_and_schema(engine):
    engine.close("mem")
    assert "mem" not in engine.store
    with pytest.raises(SchemaNotFound):
        engine.schema("mem")


def test_errors_render_kind():
    err = MissingFilter("no filters")
    assert isinstance(err, QueryGraphError)
    assert err.to_dict() == {"kind": "MissingFilter", "message": "no filters"}
    assert str(err) == "MissingFilter: no filters"
