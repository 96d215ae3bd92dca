import pytest

from querygraph import Engine, SchemaMap, Settings
from querygraph.exec.executor import Executor
from querygraph.exec.store import ConnectionStore
from querygraph.exec.writer import Writer

SCHEMA = {
    "users": {
        "columns": [
            {"name": "id", "dataType": "integer", "isPrimaryKey": True, "isNullable": False},
            {"name": "name", "dataType": "text"},
            {"name": "meta", "dataType": "jsonb"},
        ],
        "primaryKeys": ["id"],
        "foreignKeys": [],
    },
    "posts": {
        "columns": [
            {"name": "id", "dataType": "integer", "isPrimaryKey": True, "isNullable": False},
            {"name": "user_id", "dataType": "integer"},
            {"name": "title", "dataType": "text"},
            {"name": "amount", "dataType": "integer"},
        ],
        "primaryKeys": ["id"],
        "foreignKeys": [{"columnName": "user_id", "foreignTable": "users", "foreignColumn": "id"}],
    },
    "comments": {
        "columns": [
            {"name": "id", "dataType": "integer"},
            {"name": "post_id", "dataType": "integer"},
            {"name": "body", "dataType": "text"},
        ],
        "primaryKeys": ["id"],
        "foreignKeys": [{"columnName": "post_id", "foreignTable": "posts", "foreignColumn": "id"}],
    },
    "tags": {
        "columns": [{"name": "id", "dataType": "integer"}, {"name": "label", "dataType": "text"}],
        "primaryKeys": ["id"],
    },
    "logs": {
        "columns": [{"name": "message", "dataType": "text"}],
    },
    "pairs": {
        "columns": [
            {"name": "a", "dataType": "integer"},
            {"name": "b", "dataType": "text"},
            {"name": "note", "dataType": "text"},
        ],
        "primaryKeys": ["a", "b"],
    },
}

ROWS = {
    "users": [
        {"id": 1, "name": "Ann", "meta": None},
        {"id": 2, "name": "Bob", "meta": None},
    ],
    "posts": [
        {"id": 1, "user_id": 1, "title": "Hello X", "amount": 10},
        {"id": 2, "user_id": 1, "title": "Other", "amount": 20},
        {"id": 3, "user_id": None, "title": "Orphan", "amount": 30},
    ],
}


@pytest.fixture
def schema():
    return SchemaMap.from_dict(SCHEMA)


@pytest.fixture
def store():
    s = ConnectionStore("test")
    s.load(ROWS)
    return s


@pytest.fixture
def executor(store, schema):
    return Executor(store, schema)


@pytest.fixture
def writer(store, schema):
    return Writer(store, schema)


@pytest.fixture
def settings():
    return Settings(default_page_size=100, preview_limit=5, strict_references=False)


@pytest.fixture
def engine(settings):
    e = Engine(settings=settings)
    e.register("pg", SCHEMA, "postgres")
    e.register("my", SCHEMA, "mysql")
    e.register("mem", SCHEMA, "local")
    e.load_rows("mem", ROWS)
    return e


@pytest.fixture
def schema_json():
    return SCHEMA
