import re

import pytest

from querygraph.errors import MissingFilter, NoPrimaryKey, NoRelationship, NoValidColumns
from querygraph.sql.builder import SqlBuilder


def builder(schema, table, dialect="postgres"):
    return SqlBuilder(schema.require_table(table), dialect)


def placeholder_count(text):
    return len(re.findall(r"\$\d+|\?", text))


def test_select_with_filters_order_and_pagination(schema):
    q = builder(schema, "posts").build_select(
        {"amount__gte": 20, "bogus": 1}, limit=10, offset=5, order_by="amount", order_dir="desc"
    )
    assert q.text == 'SELECT * FROM "posts" WHERE "amount" >= $1 ORDER BY "amount" DESC LIMIT $2 OFFSET $3'
    assert q.values == [20, 10, 5]


def test_select_drops_unknown_order_by_and_zero_offset(schema):
    q = builder(schema, "posts").build_select(order_by="nope", limit=3, offset=0)
    assert q.text == 'SELECT * FROM "posts" LIMIT $1'
    assert q.values == [3]


def test_mysql_offset_without_limit(schema):
    q = builder(schema, "posts", "mysql").build_select(offset=5)
    assert q.text == "SELECT * FROM `posts` LIMIT 18446744073709551615 OFFSET ?"
    assert q.values == [5]


def test_select_by_id(schema):
    q = builder(schema, "users").build_select_by_id(7)
    assert q.text == 'SELECT * FROM "users" WHERE "id" = $1'
    assert q.values == [7]


def test_insert_keeps_valid_columns(schema):
    q = builder(schema, "posts").build_insert({"title": "X", "user_id": 1, "nope": 2})
    assert q.text == 'INSERT INTO "posts" ("title", "user_id") VALUES ($1, $2) RETURNING *'
    assert q.values == ["X", 1]

    my = builder(schema, "posts", "mysql").build_insert({"title": "X"})
    assert my.text == "INSERT INTO `posts` (`title`) VALUES (?)"


def test_insert_without_valid_columns(schema):
    with pytest.raises(NoValidColumns):
        builder(schema, "posts").build_insert({"nope": 1})


def test_update_never_sets_primary_key(schema):
    q = builder(schema, "posts").build_update(1, {"id": 99, "title": "Y"})
    assert q.text == 'UPDATE "posts" SET "title" = $1 WHERE "id" = $2 RETURNING *'
    assert q.values == ["Y", 1]

    with pytest.raises(NoValidColumns):
        builder(schema, "posts").build_update(1, {"id": 99})


def test_single_record_statements_need_a_primary_key(schema):
    with pytest.raises(NoPrimaryKey):
        builder(schema, "logs").build_update(1, {"message": "x"})
    with pytest.raises(NoPrimaryKey):
        builder(schema, "logs").build_delete(1)


def test_update_where_binds_set_before_where(schema):
    q = builder(schema, "posts").build_update_where({"title": "Z", "amount": 5}, {"user_id": 1})
    assert q.text == 'UPDATE "posts" SET "title" = $1, "amount" = $2 WHERE "user_id" = $3 RETURNING *'
    assert q.values == ["Z", 5, 1]
    assert placeholder_count(q.text) == len(q.values)


def test_update_where_without_filters(schema):
    with pytest.raises(MissingFilter):
        builder(schema, "posts").build_update_where({"title": "Z"}, {})


@pytest.mark.parametrize("filters", [{}, None, {"bogus": 1}])
def test_delete_where_without_filters(schema, filters):
    with pytest.raises(MissingFilter):
        builder(schema, "posts").build_delete_where(filters)


def test_delete_by_id_and_where(schema):
    q = builder(schema, "posts").build_delete(3)
    assert q.text == 'DELETE FROM "posts" WHERE "id" = $1 RETURNING *'

    q = builder(schema, "posts", "mysql").build_delete_where({"amount__lt": 15, "title__contains": "X"})
    assert q.text == "DELETE FROM `posts` WHERE `amount` < ? AND `title` LIKE ?"
    assert q.values == [15, "%X%"]
    assert placeholder_count(q.text) == len(q.values)


def test_json_column_equality(schema):
    q = builder(schema, "users").build_select({"meta": '{"a": 1}'})
    assert q.text == 'SELECT * FROM "users" WHERE "meta"::jsonb = $1::jsonb'
    assert q.values == ['{"a": 1}']

    q = builder(schema, "users").build_select({"meta": "plain text"})
    assert q.text == 'SELECT * FROM "users" WHERE "meta"::text = $1'
    assert q.values == ["plain text"]

    q = builder(schema, "users", "mysql").build_select({"meta": '{"a": 1}'})
    assert q.text == "SELECT * FROM `users` WHERE `meta` = CAST(? AS JSON)"


def test_list_filter_value_is_bound_as_json_text(schema):
    q = builder(schema, "posts").build_select({"title": ["a"]})
    assert q.values == ['["a"]']


def test_related_reverse_fk(schema):
    q = builder(schema, "users").build_related_query("posts", 1)
    assert q.text == 'SELECT * FROM "posts" WHERE "user_id" = $1'
    assert q.values == [1]


def test_related_forward_fk_uses_subquery(schema):
    q = builder(schema, "posts").build_related_query("users", 5, limit=10)
    assert q.text == (
        'SELECT * FROM "users" WHERE "id" = (SELECT "user_id" FROM "posts" WHERE "id" = $1) LIMIT $2'
    )
    assert q.values == [5, 10]


def test_related_order_by_checked_against_related_table(schema):
    q = builder(schema, "users").build_related_query(
        "posts", 1, order_by="amount", order_dir="DESC", related_schema=schema.require_table("posts")
    )
    assert q.text == 'SELECT * FROM "posts" WHERE "user_id" = $1 ORDER BY "amount" DESC'

    q = builder(schema, "users").build_related_query(
        "posts", 1, order_by="name", related_schema=schema.require_table("posts")
    )
    assert "ORDER BY" not in q.text


def test_related_without_relationship(schema):
    with pytest.raises(NoRelationship):
        builder(schema, "users").build_related_query("tags", 1)
