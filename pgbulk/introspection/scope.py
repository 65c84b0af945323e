"""
Table scopes and the two-level (table, schema) grouping of bulk rows.

Bulk queries return rows for every table in the search path. Rows are
grouped by quoted relation name and then by schema name, and a
``TableScope`` picks the bucket(s) that belong to one requested table.
"""

import re
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ConfigDict

from pgbulk.introspection.parsing import DefinitionParseError, unquote_identifier

# Wildcard schema: match the table in every schema of the search path.
ANY_SCHEMA = "ANY (current_schemas(false))"

BASE_TABLE = "BASE TABLE"

RELKINDS = {
    BASE_TABLE: ("r", "p"),
}

GroupedRows = dict[str, dict[str, list[Any]]]

PLAIN_IDENTIFIER_PATTERN = re.compile(r"[a-z_][a-z0-9_$]*")


def quote_string(value: str) -> str:
    """Quote ``value`` as an SQL string literal; used for grouping keys."""
    return "'" + value.replace("'", "''") + "'"


def quote_identifier(identifier: str) -> str:
    """
    Double-quote ``identifier`` unless it is a plain lowercase name, so that
    ``split_qualified_name`` reads it back as the same single relation.

    >>> quote_identifier('odd"name')
    '"odd""name"'
    """
    if PLAIN_IDENTIFIER_PATTERN.fullmatch(identifier):
        return identifier
    return '"' + identifier.replace('"', '""') + '"'


def split_qualified_name(name: str) -> tuple[str | None, str]:
    """
    Split ``schema.table`` into its parts, honouring double-quoted identifiers.

    >>> split_qualified_name('"My Schema"."a.b"')
    ('My Schema', 'a.b')
    """
    parts = []
    current = []
    quoted = False
    position = 0
    while position < len(name):
        char = name[position]
        if char == '"':
            if quoted and position + 1 < len(name) and name[position + 1] == '"':
                current.append('""')
                position += 2
                continue
            quoted = not quoted
            current.append(char)
        elif char == "." and not quoted:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
        position += 1
    parts.append("".join(current))

    if quoted or len(parts) > 2 or not all(part.strip() for part in parts):
        raise DefinitionParseError(f"Invalid table name: {name!r}")

    parts = [unquote_identifier(part) for part in parts]
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], parts[1]


class TableScope(BaseModel):
    """
    Identity of one table for lookups: relation name, schema (or the
    ``ANY_SCHEMA`` wildcard) and an optional relation kind filter.
    """

    model_config = ConfigDict(frozen=True)

    relname: str
    schema_name: str = ANY_SCHEMA
    kind: str | None = None

    @property
    def name(self) -> str:
        """Quoted relation name, the first-level grouping key."""
        return quote_string(self.relname)

    @property
    def any_schema(self) -> bool:
        return self.schema_name == ANY_SCHEMA


def quoted_scope(name: str, kind: str | None = None) -> TableScope:
    schema_name, relname = split_qualified_name(name)
    return TableScope(
        relname=relname,
        schema_name=schema_name if schema_name is not None else ANY_SCHEMA,
        kind=kind,
    )


def scope_condition(
    scope: TableScope | None,
    kind: str | None = None,
    table_alias: str = "t",
    namespace_alias: str = "n",
) -> tuple[str, list[Any]]:
    """
    Build the WHERE fragment (and its positional arguments) restricting a
    catalog query to ``scope``; ``None`` means every table in the search path.
    """
    conditions = []
    args: list[Any] = []

    if scope is not None:
        args.append(scope.relname)
        conditions.append(f"{table_alias}.relname = ${len(args)}")

    if scope is None or scope.any_schema:
        conditions.append(f"{namespace_alias}.nspname = ANY (current_schemas(false))")
    else:
        args.append(scope.schema_name)
        conditions.append(f"{namespace_alias}.nspname = ${len(args)}")

    kind = scope.kind if scope is not None and scope.kind else kind
    if kind is not None:
        relkinds = ", ".join(quote_string(relkind) for relkind in RELKINDS[kind])
        conditions.append(f"{table_alias}.relkind IN ({relkinds})")

    return " AND ".join(conditions), args


def group_rows(
    rows: Iterable[Mapping[str, Any]],
    sort_key: Callable[[Mapping[str, Any]], Any] | None = None,
) -> GroupedRows:
    """
    Group rows by quoted ``relname``, then by ``nspname``.

    Buckets keep catalog order, re-sorted (stably) by ``sort_key`` when given.
    """
    grouped: GroupedRows = {}
    for row in rows:
        grouped.setdefault(quote_string(row["relname"]), {}).setdefault(row["nspname"], []).append(row)

    if sort_key is not None:
        for schemas in grouped.values():
            for schema_name, bucket in schemas.items():
                schemas[schema_name] = sorted(bucket, key=sort_key)
    return grouped


def find_by_scope(grouped: GroupedRows, scope: TableScope) -> list[Any]:
    """
    Rows for ``scope``: the exact schema bucket, or every bucket of the table
    concatenated when the scope is the wildcard. Unknown tables yield ``[]``.
    """
    schemas = grouped.get(scope.name)
    if schemas is None:
        return []
    if scope.schema_name in schemas:
        return list(schemas[scope.schema_name])
    if scope.any_schema:
        return [row for bucket in schemas.values() for row in bucket]
    return []
