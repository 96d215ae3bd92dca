"""
querygraph/catalog.py

Schema model consumed by the query graph engine.

Responsibilities:
- Describe tables, columns, primary keys, foreign keys and indexes as immutable values.
- Decode the schema introspector's JSON shape into that model.
- Compute reverse foreign keys (every FK adds a back-reference on the referenced table).
- Resolve the relationship between two tables for related-record queries.

Design notes:
- The engine never introspects a database; a SchemaMap is supplied once per connection
  and treated as read-only input.
- Only the first declared primary key column is addressable for single-record
  statements; composite keys are still recorded for local-mode id matching.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping

from .errors import NoPrimaryKey, NoRelationship, UnknownTable


@dataclass(frozen=True)
class ColumnSchema:
    """
    Column metadata.

    Attributes:
        name: Column name.
        data_type: Declared type as reported by the introspector (e.g. "integer", "jsonb").
        is_nullable: Whether NULL is allowed.
        default: Declared default value (None if not declared).
        is_primary_key: Whether the column is part of the primary key.
        enum_options: Allowed values for enum-typed columns.
    """
    name: str
    data_type: str = ""
    is_nullable: bool = True
    default: Any = None
    is_primary_key: bool = False
    enum_options: tuple[str, ...] = ()

    @property
    def is_json(self) -> bool:
        """True for json/jsonb columns."""
        return "json" in self.data_type.lower()


@dataclass(frozen=True)
class ForeignKey:
    """
    Forward foreign key: ``column`` on the owning table references ``foreign_table.foreign_column``.
    """
    column: str
    foreign_table: str
    foreign_column: str
    on_delete: str | None = None
    on_update: str | None = None


@dataclass(frozen=True)
class ReverseForeignKey:
    """
    Back-reference recorded on a referenced table.

    Attributes:
        referencing_table: Table holding the foreign key.
        referencing_column: FK column on the referencing table.
        referenced_column: Column on this table that the FK points at.
    """
    referencing_table: str
    referencing_column: str
    referenced_column: str


@dataclass(frozen=True)
class IndexSchema:
    """Index metadata (informational only; the engine does no index planning)."""
    name: str
    columns: tuple[str, ...] = ()
    is_unique: bool = False
    is_primary: bool = False


@dataclass(frozen=True)
class TableSchema:
    """
    Table metadata.

    Attributes:
        name: Table name.
        columns: Ordered column definitions.
        primary_keys: Primary key column names in declaration order (0, 1 or N).
        foreign_keys: Forward foreign keys.
        reverse_foreign_keys: Back-references from tables whose FKs point here.
        indexes: Optional index metadata.
    """
    name: str
    columns: tuple[ColumnSchema, ...] = ()
    primary_keys: tuple[str, ...] = ()
    foreign_keys: tuple[ForeignKey, ...] = ()
    reverse_foreign_keys: tuple[ReverseForeignKey, ...] = ()
    indexes: tuple[IndexSchema, ...] = ()

    def column_names(self) -> list[str]:
        """Return column names in declaration order."""
        return [c.name for c in self.columns]

    def get_column(self, name: str) -> ColumnSchema | None:
        """Return ColumnSchema by name, or None if not found."""
        for c in self.columns:
            if c.name == name:
                return c
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None

    def primary_key_column(self) -> str | None:
        """
        Return the addressable primary key column (the first declared one), else None.
        """
        if not self.primary_keys:
            return None
        return self.primary_keys[0]

    def require_primary_key(self) -> str:
        """
        Return the addressable primary key column or raise NoPrimaryKey.

        Raises:
            NoPrimaryKey: if the table declares no primary key.
        """
        pk = self.primary_key_column()
        if pk is None:
            raise NoPrimaryKey(f"No primary key found for table {self.name}")
        return pk


@dataclass(frozen=True)
class Relationship:
    """
    How rows of ``related_table`` relate to a row of ``table``.

    kind:
        "forward": table.local_column references related_table.related_column.
        "reverse": related_table.related_column references table.local_column.
    direct:
        When True the caller-supplied id is compared straight to ``related_column``;
        otherwise (forward only) the id addresses ``table``'s primary key and the FK
        value is looked up first.
    """
    table: str
    related_table: str
    kind: str
    local_column: str
    related_column: str
    direct: bool = True


def _get(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key among camelCase/snake_case spellings."""
    for k in keys:
        if k in raw:
            return raw[k]
    return default


def _column_from_dict(raw: Mapping[str, Any], primary_keys: set[str]) -> ColumnSchema:
    name = str(raw["name"])
    return ColumnSchema(
        name=name,
        data_type=str(_get(raw, "dataType", "data_type", "type", default="") or ""),
        is_nullable=bool(_get(raw, "isNullable", "is_nullable", default=True)),
        default=_get(raw, "default"),
        is_primary_key=bool(_get(raw, "isPrimaryKey", "is_primary_key", default=False)) or name in primary_keys,
        enum_options=tuple(_get(raw, "enumOptions", "enum_options", default=()) or ()),
    )


def _table_from_dict(name: str, raw: Mapping[str, Any]) -> TableSchema:
    declared_pks = list(_get(raw, "primaryKeys", "primary_keys", default=[]) or [])
    cols_raw = list(raw.get("columns", []))
    if not declared_pks:
        declared_pks = [
            str(c["name"]) for c in cols_raw if _get(c, "isPrimaryKey", "is_primary_key", default=False)
        ]
    pk_set = set(declared_pks)

    fks = tuple(
        ForeignKey(
            column=str(_get(fk, "columnName", "column_name", "column")),
            foreign_table=str(_get(fk, "foreignTable", "foreign_table")),
            foreign_column=str(_get(fk, "foreignColumn", "foreign_column")),
            on_delete=_get(fk, "onDelete", "on_delete"),
            on_update=_get(fk, "onUpdate", "on_update"),
        )
        for fk in _get(raw, "foreignKeys", "foreign_keys", default=[]) or []
    )

    indexes = tuple(
        IndexSchema(
            name=str(idx.get("name", "")),
            columns=tuple(idx.get("columns", []) or ()),
            is_unique=bool(_get(idx, "isUnique", "is_unique", default=False)),
            is_primary=bool(_get(idx, "isPrimary", "is_primary", default=False)),
        )
        for idx in raw.get("indexes", []) or []
    )

    return TableSchema(
        name=name,
        columns=tuple(_column_from_dict(c, pk_set) for c in cols_raw),
        primary_keys=tuple(declared_pks),
        foreign_keys=fks,
        indexes=indexes,
    )


@dataclass
class SchemaMap:
    """
    Schema of one connection: table name -> TableSchema.

    Attributes:
        tables: Mapping of table name -> TableSchema (reverse FKs already computed).
    """
    tables: dict[str, TableSchema] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.tables = _with_reverse_keys(self.tables)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "SchemaMap":
        """
        Build a SchemaMap from the introspector's JSON shape.

        Args:
            raw: ``{table: {columns, primaryKeys, foreignKeys, indexes}}``; values may
                 also already be TableSchema instances.

        Returns:
            SchemaMap with reverse foreign keys computed.
        """
        tables: dict[str, TableSchema] = {}
        for name, t in raw.items():
            tables[name] = t if isinstance(t, TableSchema) else _table_from_dict(name, t)
        return cls(tables=tables)

    # ---------- mapping helpers ----------

    def __contains__(self, table_name: object) -> bool:
        return table_name in self.tables

    def __iter__(self) -> Iterator[str]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    def get(self, table_name: str) -> TableSchema | None:
        return self.tables.get(table_name)

    def require_table(self, table_name: str) -> TableSchema:
        """
        Fetch a table by name or raise UnknownTable.

        Raises:
            UnknownTable: if the table does not exist.
        """
        t = self.tables.get(table_name)
        if t is None:
            raise UnknownTable(f"Table not found: {table_name}")
        return t

    # ---------- relationships ----------

    def resolve_relationship(
        self,
        table_name: str,
        related_table: str,
        fk_column: str | None = None,
    ) -> Relationship:
        """
        Find how ``related_table`` relates to ``table_name``.

        With ``fk_column`` the match is narrowed to that FK column (forward) or that
        referenced column (reverse) and the id is compared directly. Without it, the
        first forward FK wins, then the first reverse FK.

        Raises:
            UnknownTable: if ``table_name`` is unknown.
            NoRelationship: if neither direction is declared.
        """
        return find_relationship(self.require_table(table_name), related_table, fk_column)


def find_relationship(schema: TableSchema, related_table: str, fk_column: str | None = None) -> Relationship:
    """
    Relationship lookup over one table's declared and reverse foreign keys.

    Raises:
        NoRelationship: if neither direction is declared.
    """
    name = schema.name
    if fk_column:
        for fk in schema.foreign_keys:
            if fk.foreign_table == related_table and fk.column == fk_column:
                return Relationship(name, related_table, "forward", fk.column, fk.foreign_column, True)
        for rfk in schema.reverse_foreign_keys:
            if rfk.referencing_table == related_table and rfk.referenced_column == fk_column:
                return Relationship(name, related_table, "reverse", rfk.referenced_column, rfk.referencing_column, True)

    for fk in schema.foreign_keys:
        if fk.foreign_table == related_table:
            return Relationship(name, related_table, "forward", fk.column, fk.foreign_column, False)
    for rfk in schema.reverse_foreign_keys:
        if rfk.referencing_table == related_table:
            return Relationship(name, related_table, "reverse", rfk.referenced_column, rfk.referencing_column, True)

    raise NoRelationship(f"No relationship found between {name} and {related_table}")


def _with_reverse_keys(tables: dict[str, TableSchema]) -> dict[str, TableSchema]:
    """
    Recompute reverse foreign keys for every table.

    Reverse keys already present (e.g. reported by the introspector) are kept; computed
    ones are appended when missing.
    """
    computed: dict[str, list[ReverseForeignKey]] = {name: list(t.reverse_foreign_keys) for name, t in tables.items()}
    for name, t in tables.items():
        for fk in t.foreign_keys:
            if fk.foreign_table not in computed:
                continue
            rfk = ReverseForeignKey(
                referencing_table=name,
                referencing_column=fk.column,
                referenced_column=fk.foreign_column,
            )
            if rfk not in computed[fk.foreign_table]:
                computed[fk.foreign_table].append(rfk)

    return {name: replace(t, reverse_foreign_keys=tuple(computed[name])) for name, t in tables.items()}
