import json

from querygraph.repl import cmd_schema, cmd_tables, execute, format_table, is_complete_json, load_engine, main


def test_is_complete_json():
    assert not is_complete_json("")
    assert not is_complete_json('{"source": "users",\n')
    assert is_complete_json('{"source": "users"}\n')
    # braces inside strings do not count
    assert not is_complete_json('{"source": "us{ers"\n')
    assert is_complete_json('{"source": "us}ers", "x": "\\"{"}')


def test_format_table():
    lines = format_table(["a", "bb"], [{"a": 1, "bb": None}, {"a": 22, "bb": "x"}]).split("\n")
    assert lines[0] == "a  | bb"
    assert lines[1] == "---+---"
    assert lines[2].rstrip() == "1  |"
    assert lines[3] == "22 | x "


def test_load_engine_and_execute(tmp_path, capsys, schema_json):
    schema_file = tmp_path / "schema.json"
    rows_file = tmp_path / "rows.json"
    schema_file.write_text(json.dumps(schema_json), encoding="utf-8")
    rows_file.write_text(json.dumps({"users": [{"id": 1, "name": "Ann"}]}), encoding="utf-8")

    engine = load_engine(schema_file, rows_file)
    execute(engine, {"source": "users", "fields": ["users.name"]}, echo_sql="postgres")
    out = capsys.readouterr().out
    assert 'SELECT "u"."name" AS "name" FROM "users" "u"' in out
    assert "Ann" in out
    assert "(1 row(s), total=1)" in out

    execute(engine, {"operation": "INSERT", "graph": {"source": "users"}, "data": {"name": "Bob"}})
    out = capsys.readouterr().out
    assert "INSERT users: inserted 1 row" in out


def test_meta_commands_print_schema(schema, capsys):
    cmd_tables(schema)
    cmd_schema(schema, "posts")
    cmd_schema(schema, "ghosts")
    out = capsys.readouterr().out
    assert "comments\n" in out
    assert "  - id integer PRIMARY KEY NOT NULL" in out
    assert "  - user_id -> users(id)" in out
    assert "  - comments(post_id) -> id" in out
    assert "Table not found: ghosts" in out


def test_main_requires_schema(capsys):
    assert main(["querygraph"]) == 2
    assert "Usage" in capsys.readouterr().out
