"""
querygraph/payload.py

JSON and query-parameter boundary.

Responsibilities:
- Decode graph bodies, write requests and list query parameters with pydantic models.
- Tolerate the alternative spellings routing layers send (camelCase keys,
  ``from: {table, field}`` join endpoints, ``op``/``operator``, ``as``/``alias``,
  ``func``/``type``, ``orderBy``/``sort``, ``fields: ["t.c"]``).
- Convert validated payloads into the immutable IR of graph.py.

Design notes:
- Every pydantic ValidationError is re-raised as GraphError so callers see one
  error family.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import GraphError
from .graph import (
    AggregateFunction,
    Aggregation,
    FieldRef,
    GraphFilter,
    HavingClause,
    JoinEdge,
    QueryGraph,
    SortKey,
    Source,
    WriteOperation,
    filters_from_mapping,
)
from .operators import coerce_value, parse_operator


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SourcePayload(_Payload):
    table: str
    alias: Optional[str] = None


class JoinPayload(_Payload):
    """Join edge; accepts ``{from: {table, column|field}, to: {...}}`` or flat camelCase keys."""

    type: str = "LEFT"
    from_table: str
    from_column: str
    to_table: str
    to_column: str

    @model_validator(mode="before")
    @classmethod
    def _flatten_endpoints(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        out = dict(data)
        for side in ("from", "to"):
            ep = out.pop(side, None)
            if isinstance(ep, Mapping):
                out.setdefault(f"{side}Table", ep.get("table"))
                out.setdefault(f"{side}Column", ep.get("column", ep.get("field")))
        return out

    def to_edge(self) -> JoinEdge:
        return JoinEdge(self.from_table, self.from_column, self.to_table, self.to_column, kind=self.type.upper())


class FilterPayload(_Payload):
    field: str = Field(validation_alias=AliasChoices("field", "column"))
    op: str = Field(default="eq", validation_alias=AliasChoices("op", "operator"))
    value: Any = Field(default=None, validation_alias=AliasChoices("value", "val"))

    @model_validator(mode="before")
    @classmethod
    def _qualify(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and data.get("table") and "." not in str(data.get("field", data.get("column", ""))):
            out = dict(data)
            name = out.pop("field", None) or out.pop("column", None)
            out["field"] = f"{data['table']}.{name}"
            return out
        return data

    def to_filter(self) -> GraphFilter:
        op = parse_operator(self.op)
        return GraphFilter(FieldRef.parse(self.field), op, coerce_value(op, self.value))


class AggregationPayload(_Payload):
    function: AggregateFunction = Field(validation_alias=AliasChoices("function", "func", "type"))
    field: Optional[str] = Field(default=None, validation_alias=AliasChoices("field", "column"))
    alias: str = Field(default="", validation_alias=AliasChoices("alias", "as"))

    @field_validator("function", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def to_aggregation(self) -> Aggregation:
        ref = None if self.field in (None, "", "*") else FieldRef.parse(self.field)
        return Aggregation(self.function, ref, self.alias)


class HavingPayload(_Payload):
    aggregate_alias: str = Field(validation_alias=AliasChoices("aggregateAlias", "aggregate_alias", "alias", "aggField"))
    op: str = Field(default="eq", validation_alias=AliasChoices("op", "operator"))
    value: Any = Field(default=None, validation_alias=AliasChoices("value", "val"))

    def to_having(self) -> HavingClause:
        op = parse_operator(self.op)
        return HavingClause(self.aggregate_alias, op, coerce_value(op, self.value))


class SortPayload(_Payload):
    """Sort entry; also accepts "name", "-name" and "name DESC" strings."""

    field: str = Field(validation_alias=AliasChoices("field", "column"))
    direction: str = Field(default="ASC", validation_alias=AliasChoices("direction", "dir", "order"))

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            text = data.strip()
            if text.startswith("-"):
                return {"field": text[1:], "direction": "DESC"}
            parts = text.split()
            if len(parts) == 2:
                return {"field": parts[0], "direction": parts[1]}
            return {"field": text}
        return data

    def to_sort(self) -> SortKey:
        return SortKey(self.field, self.direction.upper() == "DESC")


class GraphPayload(_Payload):
    """
    Graph body: ``{source, joins, filters, groupBy, aggregations, having,
    outputFields, sort, limit, offset}``.
    """

    source: SourcePayload
    joins: list[JoinPayload] = Field(default_factory=list)
    filters: list[FilterPayload] = Field(default_factory=list)
    group_by: list[str] = Field(default_factory=list)
    aggregations: list[AggregationPayload] = Field(default_factory=list)
    having: list[HavingPayload] = Field(default_factory=list)
    output_fields: dict[str, list[str]] = Field(default_factory=dict)
    sort: list[SortPayload] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        out = dict(data)
        if isinstance(out.get("source"), str):
            out["source"] = {"table": out["source"]}
        if "sort" not in out and "orderBy" in out:
            out["sort"] = out.pop("orderBy")
        if isinstance(out.get("sort"), (str, Mapping)):
            out["sort"] = [out["sort"]]
        if "fields" in out and "outputFields" not in out and "output_fields" not in out:
            grouped: dict[str, list[str]] = {}
            for ref in out.pop("fields") or []:
                table, _, column = str(ref).partition(".")
                if column == "*":
                    grouped.setdefault(table, [])
                elif column:
                    grouped.setdefault(table, []).append(column)
            out["outputFields"] = grouped
        if out.get("offset") is None:
            out.pop("offset", None)
        return out

    def to_graph(self) -> QueryGraph:
        return QueryGraph(
            source=Source(self.source.table, self.source.alias),
            joins=tuple(j.to_edge() for j in self.joins),
            filters=tuple(f.to_filter() for f in self.filters),
            group_by=tuple(FieldRef.parse(g) for g in self.group_by),
            aggregations=tuple(a.to_aggregation() for a in self.aggregations),
            having=tuple(h.to_having() for h in self.having),
            output_fields={t: tuple(cols) for t, cols in self.output_fields.items()},
            sort=tuple(s.to_sort() for s in self.sort),
            limit=self.limit,
            offset=self.offset,
        )


class WriteRequest(_Payload):
    operation: WriteOperation
    graph: GraphPayload
    data: dict[str, Any] = Field(default_factory=dict)
    preview_only: bool = False
    additional_filters: Union[list[FilterPayload], dict[str, Any]] = Field(default_factory=list)

    @field_validator("operation", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    def extra_filters(self) -> list[GraphFilter]:
        if isinstance(self.additional_filters, dict):
            return filters_from_mapping(self.additional_filters)
        return [f.to_filter() for f in self.additional_filters]


class ListParams(_Payload):
    """
    Query parameters of a per-table listing: ``limit``, ``offset``, ``orderBy``,
    ``orderDir``; every other key is a ``column[__op]`` filter.
    """

    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)
    order_by: Optional[str] = None
    order_dir: str = "ASC"
    filters: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _split(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or "filters" in data:
            return data
        reserved = {"limit", "offset", "orderBy", "order_by", "orderDir", "order_dir"}
        out = {k: v for k, v in data.items() if k in reserved and v not in (None, "")}
        out["filters"] = {k: v for k, v in data.items() if k not in reserved}
        return out

    @field_validator("order_dir", mode="before")
    @classmethod
    def _direction(cls, v: Any) -> str:
        return "DESC" if str(v or "ASC").upper() == "DESC" else "ASC"


# ---------- entry points ----------

def _wrap(model: type[BaseModel], raw: Any) -> Any:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise GraphError(f"Invalid {model.__name__}: {e.errors(include_url=False)}") from e


def decode_graph(raw: Mapping[str, Any] | QueryGraph) -> QueryGraph:
    """
    Decode a graph body into a QueryGraph.

    Raises:
        GraphError: for a malformed body, unknown operator or unsupported join type.
    """
    if isinstance(raw, QueryGraph):
        return raw
    return _wrap(GraphPayload, raw).to_graph()


def decode_write(raw: Mapping[str, Any]) -> WriteRequest:
    return _wrap(WriteRequest, raw)


def decode_list_params(raw: Mapping[str, Any] | None) -> ListParams:
    return _wrap(ListParams, dict(raw or {}))
