"""
Catalog row decoders.

Each decoder owns one catalog query and knows how to turn the rows it
returns into definitions. The same query runs in two shapes: over every
table of the search path (``load``, used by the preloader) or restricted to
one table (``fetch``, used on a cache miss). Both shapes go through the same
grouping, scope lookup and ``build`` step, so they yield equal values.
"""

from abc import ABC, abstractmethod
from operator import itemgetter
from typing import Any, Generic, Iterable, TypeVar

from asyncpg import Connection

from pgbulk.introspection.definitions import (
    CheckConstraintDefinition,
    ColumnDefinition,
    ExclusionConstraintDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    IntrospectionKind,
    UniqueConstraintDefinition,
)
from pgbulk.introspection.features import CatalogFeatures
from pgbulk.introspection.parsing import (
    decode_int_vector,
    decode_text_array,
    foreign_key_action,
    is_nulls_not_distinct,
    pair_by_subscript,
    parse_check_expression,
    parse_exclusion_definition,
    parse_index_definition,
    parse_key_options,
    split_top_level,
    unquote_identifier,
)
from pgbulk.introspection.scope import (
    BASE_TABLE,
    GroupedRows,
    TableScope,
    find_by_scope,
    group_rows,
    quote_identifier,
    quoted_scope,
    scope_condition,
)
from pgbulk.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CatalogDecoder(ABC, Generic[T]):
    kind: IntrospectionKind
    query: str
    # relation kind filter applied to scopes, e.g. BASE_TABLE
    scope_kind: str | None = None
    # row column that orders rows within a (table, schema) bucket
    sort_column: str | None = None
    table_alias: str = "t"

    def __init__(self, features: CatalogFeatures | None = None):
        self.features = features or CatalogFeatures()

    def query_parameters(self) -> dict[str, str]:
        return {}

    def render_query(self, scope: TableScope | None = None) -> tuple[str, list[Any]]:
        condition, args = scope_condition(scope, kind=self.scope_kind, table_alias=self.table_alias)
        return self.query.format(scope=condition, **self.query_parameters()), args

    def scope_for(self, table_name: str) -> TableScope:
        return quoted_scope(table_name, kind=self.scope_kind)

    async def fetch_rows(self, conn: Connection, scope: TableScope | None = None) -> list[Any]:
        sql, args = self.render_query(scope)
        return await conn.fetch(sql, *args)

    def group(self, rows: Iterable[Any]) -> GroupedRows:
        sort_key = itemgetter(self.sort_column) if self.sort_column else None
        return group_rows(rows, sort_key=sort_key)

    def decode(self, grouped: GroupedRows, table_name: str) -> T:
        return self.build(table_name, find_by_scope(grouped, self.scope_for(table_name)))

    @abstractmethod
    def build(self, table_name: str, rows: list[Any]) -> T:
        """Materialize the value for one table from its (ordered) rows."""

    async def load(self, conn: Connection, table_names: Iterable[str]) -> dict[str, T]:
        """Run the bulk query once and decode it for every requested table."""
        rows = await self.fetch_rows(conn)
        grouped = self.group(rows)
        result = {table_name: self.decode(grouped, table_name) for table_name in table_names}
        logger.debug("Decoded %s for %d tables from %d catalog rows", self.kind.value, len(result), len(rows))
        return result

    async def fetch(self, conn: Connection, table_name: str) -> T:
        """Run the query restricted to ``table_name``."""
        scope = self.scope_for(table_name)
        grouped = self.group(await self.fetch_rows(conn, scope))
        return self.build(table_name, find_by_scope(grouped, scope))


class ColumnDefinitionsDecoder(CatalogDecoder[list[ColumnDefinition]]):
    kind = IntrospectionKind.COLUMN_DEFINITIONS
    sort_column = "attnum"
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname, a.attnum AS attnum, a.attname AS name,
               format_type(a.atttypid, a.atttypmod) AS sql_type,
               pg_get_expr(d.adbin, d.adrelid) AS column_default,
               a.attnotnull AS not_null, a.atttypid::int8 AS type_oid, a.atttypmod AS type_modifier,
               c.collname::text AS collation_name, col_description(a.attrelid, a.attnum) AS comment,
               {identity} AS identity, {generated} AS generated
          FROM pg_attribute a
          JOIN pg_class t ON t.oid = a.attrelid
          JOIN pg_namespace n ON n.oid = t.relnamespace
          LEFT JOIN pg_attrdef d ON a.attrelid = d.adrelid AND a.attnum = d.adnum
          LEFT JOIN pg_type ty ON a.atttypid = ty.oid
          LEFT JOIN pg_collation c ON a.attcollation = c.oid AND a.attcollation <> ty.typcollation
         WHERE a.attnum > 0 AND NOT a.attisdropped
           AND {scope}
         ORDER BY n.nspname, t.relname, a.attnum
    """

    def query_parameters(self) -> dict[str, str]:
        return {
            "identity": "a.attidentity::text" if self.features.supports_identity_columns else "''::text",
            "generated": "a.attgenerated::text" if self.features.supports_virtual_columns else "''::text",
        }

    def build(self, table_name: str, rows: list[Any]) -> list[ColumnDefinition]:
        return [
            ColumnDefinition(
                name=row["name"],
                sql_type=row["sql_type"],
                default=row["column_default"],
                not_null=row["not_null"],
                type_oid=row["type_oid"],
                type_modifier=row["type_modifier"],
                collation=row["collation_name"],
                comment=row["comment"],
                identity=row["identity"] or "",
                generated=row["generated"] or "",
            )
            for row in rows
        ]


class PrimaryKeysDecoder(CatalogDecoder[list[str]]):
    kind = IntrospectionKind.PRIMARY_KEYS
    sort_column = "idx"
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname, i.idx AS idx, a.attname::text AS name
          FROM (
                 SELECT indrelid, indkey, generate_subscripts(indkey, 1) idx
                   FROM pg_index
                  WHERE indisprimary
               ) i
          JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = i.indkey[i.idx]
          JOIN pg_class t ON t.oid = i.indrelid
          JOIN pg_namespace n ON n.oid = t.relnamespace
         WHERE {scope}
         ORDER BY n.nspname, t.relname, i.idx
    """

    def build(self, table_name: str, rows: list[Any]) -> list[str]:
        return [row["name"] for row in rows]


class IndexesDecoder(CatalogDecoder[list[IndexDefinition]]):
    kind = IntrospectionKind.INDEXES
    sort_column = "name"
    query = """
        SELECT DISTINCT t.relname AS relname, n.nspname AS nspname, i.relname AS name,
               d.indisunique AS is_unique, d.indkey::int2[] AS indkey,
               pg_get_indexdef(d.indexrelid) AS definition,
               pg_catalog.obj_description(i.oid, 'pg_class') AS comment, d.indisvalid AS valid,
               ARRAY(
                 SELECT pg_get_indexdef(d.indexrelid, k + 1, true)
                   FROM generate_subscripts(d.indkey, 1) AS k
                  ORDER BY k
               ) AS key_columns
          FROM pg_class t
          JOIN pg_index d ON t.oid = d.indrelid
          JOIN pg_class i ON d.indexrelid = i.oid
          LEFT JOIN pg_namespace n ON n.oid = t.relnamespace
         WHERE i.relkind IN ('i', 'I')
           AND d.indisprimary = 'f'
           AND {scope}
         ORDER BY nspname, relname, name
    """

    def build(self, table_name: str, rows: list[Any]) -> list[IndexDefinition]:
        return [self.build_index(table_name, row) for row in rows]

    def build_index(self, table_name: str, row: Any) -> IndexDefinition:
        parsed = parse_index_definition(row["definition"])
        indkey = decode_int_vector(row["indkey"])
        columns = [unquote_identifier(column) for column in decode_text_array(row["key_columns"])]
        include = [unquote_identifier(column) for column in split_top_level(parsed.include)] if parsed.include else []

        orders: dict[str, str] = {}
        opclasses: dict[str, str] = {}
        if 0 in indkey:
            # at least one key is an expression; keep the key list verbatim
            columns = [parsed.expressions]
        else:
            # the catalog reports INCLUDE columns alongside the keys
            columns = [column for column in columns if column not in include]
            orders, opclasses = parse_key_options(parsed.expressions)

        return IndexDefinition(
            table=table_name,
            name=row["name"],
            unique=row["is_unique"],
            columns=columns,
            orders=orders,
            opclasses=opclasses,
            where=parsed.where,
            using=parsed.using,
            include=include,
            nulls_not_distinct=parsed.nulls_not_distinct,
            storage_parameters=parsed.storage_parameters,
            comment=row["comment"] or None,
            valid=row["valid"],
        )


def _key_columns_lateral(alias: str, key_column: str, table_alias: str) -> str:
    # subscripts and names are aggregated without ORDER BY; decoding pairs them up again
    return f"""
          LEFT JOIN LATERAL (
                 SELECT array_agg(k.idx) AS subscripts, array_agg(a.attname::text) AS names
                   FROM generate_subscripts(c.{key_column}, 1) AS k(idx)
                   JOIN pg_attribute a ON a.attrelid = {table_alias}.oid AND a.attnum = c.{key_column}[k.idx]
               ) {alias} ON true"""


def _single_or_list(names: list[str]) -> str | list[str]:
    return names[0] if len(names) == 1 else names


class ForeignKeysDecoder(CatalogDecoder[list[ForeignKeyDefinition]]):
    kind = IntrospectionKind.FOREIGN_KEYS
    sort_column = "name"
    table_alias = "t1"
    query = (
        """
        SELECT t1.relname AS relname, n.nspname AS nspname, c.conname AS name,
               t2.oid::regclass::text AS to_table,
               c.confupdtype::text AS on_update, c.confdeltype::text AS on_delete,
               c.convalidated AS valid, c.condeferrable AS deferrable, c.condeferred AS deferred,
               source_columns.subscripts AS column_subscripts, source_columns.names AS column_names,
               target_columns.subscripts AS primary_key_subscripts, target_columns.names AS primary_key_names
          FROM pg_constraint c
          JOIN pg_class t1 ON c.conrelid = t1.oid
          JOIN pg_class t2 ON c.confrelid = t2.oid
          JOIN pg_namespace n ON c.connamespace = n.oid"""
        + _key_columns_lateral("source_columns", "conkey", "t1")
        + _key_columns_lateral("target_columns", "confkey", "t2")
        + """
         WHERE c.contype = 'f'
           AND {scope}
         ORDER BY n.nspname, t1.relname, c.conname
    """
    )

    def build(self, table_name: str, rows: list[Any]) -> list[ForeignKeyDefinition]:
        foreign_keys = []
        for row in rows:
            column = pair_by_subscript(row["column_subscripts"], decode_text_array(row["column_names"]))
            primary_key = pair_by_subscript(
                row["primary_key_subscripts"], decode_text_array(row["primary_key_names"])
            )
            foreign_keys.append(
                ForeignKeyDefinition(
                    from_table=table_name,
                    to_table=unquote_identifier(row["to_table"]),
                    name=row["name"],
                    column=_single_or_list(column),
                    primary_key=_single_or_list(primary_key),
                    on_delete=foreign_key_action(row["on_delete"]),
                    on_update=foreign_key_action(row["on_update"]),
                    deferrable=row["deferrable"],
                    initially_deferred=row["deferred"],
                    valid=row["valid"],
                )
            )
        return foreign_keys


class CheckConstraintsDecoder(CatalogDecoder[list[CheckConstraintDefinition]]):
    kind = IntrospectionKind.CHECK_CONSTRAINTS
    sort_column = "name"
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname, c.conname AS name,
               pg_get_constraintdef(c.oid, true) AS definition, c.convalidated AS valid
          FROM pg_constraint c
          JOIN pg_class t ON c.conrelid = t.oid
          JOIN pg_namespace n ON n.oid = c.connamespace
         WHERE c.contype = 'c'
           AND {scope}
         ORDER BY n.nspname, t.relname, c.conname
    """

    def build(self, table_name: str, rows: list[Any]) -> list[CheckConstraintDefinition]:
        return [
            CheckConstraintDefinition(
                table=table_name,
                name=row["name"],
                expression=parse_check_expression(row["definition"]),
                valid=row["valid"],
            )
            for row in rows
        ]


class ExclusionConstraintsDecoder(CatalogDecoder[list[ExclusionConstraintDefinition]]):
    kind = IntrospectionKind.EXCLUSION_CONSTRAINTS
    sort_column = "name"
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname, c.conname AS name,
               pg_get_constraintdef(c.oid) AS definition,
               c.condeferrable AS deferrable, c.condeferred AS deferred
          FROM pg_constraint c
          JOIN pg_class t ON c.conrelid = t.oid
          JOIN pg_namespace n ON n.oid = c.connamespace
         WHERE c.contype = 'x'
           AND {scope}
         ORDER BY n.nspname, t.relname, c.conname
    """

    def build(self, table_name: str, rows: list[Any]) -> list[ExclusionConstraintDefinition]:
        constraints = []
        for row in rows:
            using, expression, where = parse_exclusion_definition(row["definition"])
            constraints.append(
                ExclusionConstraintDefinition(
                    table=table_name,
                    name=row["name"],
                    using=using,
                    expression=expression,
                    where=where,
                    deferrable=row["deferrable"],
                    initially_deferred=row["deferred"],
                )
            )
        return constraints


class UniqueConstraintsDecoder(CatalogDecoder[list[UniqueConstraintDefinition]]):
    kind = IntrospectionKind.UNIQUE_CONSTRAINTS
    sort_column = "name"
    query = (
        """
        SELECT t.relname AS relname, n.nspname AS nspname, c.conname AS name,
               c.condeferrable AS deferrable, c.condeferred AS deferred,
               pg_get_constraintdef(c.oid) AS definition,
               key_columns.subscripts AS column_subscripts, key_columns.names AS column_names
          FROM pg_constraint c
          JOIN pg_class t ON c.conrelid = t.oid
          JOIN pg_namespace n ON n.oid = c.connamespace"""
        + _key_columns_lateral("key_columns", "conkey", "t")
        + """
         WHERE c.contype = 'u'
           AND {scope}
         ORDER BY n.nspname, t.relname, c.conname
    """
    )

    def build(self, table_name: str, rows: list[Any]) -> list[UniqueConstraintDefinition]:
        return [
            UniqueConstraintDefinition(
                table=table_name,
                name=row["name"],
                columns=pair_by_subscript(row["column_subscripts"], decode_text_array(row["column_names"])),
                nulls_not_distinct=is_nulls_not_distinct(row["definition"]),
                deferrable=row["deferrable"],
                initially_deferred=row["deferred"],
            )
            for row in rows
        ]


class TableCommentDecoder(CatalogDecoder[str | None]):
    kind = IntrospectionKind.TABLE_COMMENT
    scope_kind = BASE_TABLE
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname,
               pg_catalog.obj_description(t.oid, 'pg_class') AS comment
          FROM pg_catalog.pg_class t
          LEFT JOIN pg_namespace n ON n.oid = t.relnamespace
         WHERE {scope}
         ORDER BY n.nspname, t.relname
    """

    def build(self, table_name: str, rows: list[Any]) -> str | None:
        return rows[0]["comment"] if rows else None


class InheritedTableNamesDecoder(CatalogDecoder[list[str]]):
    kind = IntrospectionKind.INHERITED_TABLE_NAMES
    scope_kind = BASE_TABLE
    sort_column = "seqno"
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname, i.inhseqno AS seqno,
               parent.relname::text AS parent_name
          FROM pg_catalog.pg_inherits i
          JOIN pg_catalog.pg_class t ON i.inhrelid = t.oid
          JOIN pg_catalog.pg_class parent ON i.inhparent = parent.oid
          LEFT JOIN pg_namespace n ON n.oid = t.relnamespace
         WHERE {scope}
         ORDER BY n.nspname, t.relname, i.inhseqno
    """

    def build(self, table_name: str, rows: list[Any]) -> list[str]:
        return [row["parent_name"] for row in rows]


class TablePartitionDefinitionDecoder(CatalogDecoder[str | None]):
    kind = IntrospectionKind.TABLE_PARTITION_DEFINITION
    scope_kind = BASE_TABLE
    query = """
        SELECT t.relname AS relname, n.nspname AS nspname, {partition_definition} AS partition_definition
          FROM pg_catalog.pg_class t
          LEFT JOIN pg_namespace n ON n.oid = t.relnamespace
         WHERE {scope}
         ORDER BY n.nspname, t.relname
    """

    def query_parameters(self) -> dict[str, str]:
        if self.features.supports_native_partitioning:
            return {"partition_definition": "pg_catalog.pg_get_partkeydef(t.oid)"}
        return {"partition_definition": "NULL::text"}

    def build(self, table_name: str, rows: list[Any]) -> str | None:
        return rows[0]["partition_definition"] if rows else None


DECODERS: tuple[type[CatalogDecoder], ...] = (
    ColumnDefinitionsDecoder,
    PrimaryKeysDecoder,
    IndexesDecoder,
    ForeignKeysDecoder,
    CheckConstraintsDecoder,
    ExclusionConstraintsDecoder,
    UniqueConstraintsDecoder,
    TableCommentDecoder,
    InheritedTableNamesDecoder,
    TablePartitionDefinitionDecoder,
)


def build_decoders(features: CatalogFeatures | None = None) -> dict[IntrospectionKind, CatalogDecoder]:
    return {decoder.kind: decoder(features) for decoder in DECODERS}


TABLE_NAMES_QUERY = """
    SELECT t.relname AS relname
      FROM pg_catalog.pg_class t
      LEFT JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
     WHERE {scope}
     ORDER BY t.relname
"""


async def fetch_table_names(conn: Connection) -> list[str]:
    """
    Base and partitioned tables visible in the search path, by name. Names
    that are not plain lowercase identifiers come back double-quoted so they
    can be passed straight to the providers.
    """
    condition, args = scope_condition(None, kind=BASE_TABLE)
    rows = await conn.fetch(TABLE_NAMES_QUERY.format(scope=condition), *args)
    return list(dict.fromkeys(quote_identifier(row["relname"]) for row in rows))
