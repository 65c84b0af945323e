from abc import ABC, abstractmethod
from typing import Any

from asyncpg import Connection

from pgbulk.introspection.decoders import CatalogDecoder, build_decoders
from pgbulk.introspection.definitions import (
    CheckConstraintDefinition,
    ColumnDefinition,
    ExclusionConstraintDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    IntrospectionKind,
    TableOptions,
    UniqueConstraintDefinition,
    build_table_options,
)
from pgbulk.introspection.preload import PreloadCache
from pgbulk.logging_config import get_logger, log_performance

logger = get_logger(__name__)


class IntrospectionProvider(ABC):
    """
    Per-table introspection capability.

    Implementations answer one ``kind`` for one table; the named accessors
    below are thin conveniences over ``introspect``.
    """

    @abstractmethod
    async def introspect(self, kind: IntrospectionKind, table_name: str) -> Any:
        raise NotImplementedError()

    async def column_definitions(self, table_name: str) -> list[ColumnDefinition]:
        return await self.introspect(IntrospectionKind.COLUMN_DEFINITIONS, table_name)

    async def primary_keys(self, table_name: str) -> list[str]:
        return await self.introspect(IntrospectionKind.PRIMARY_KEYS, table_name)

    async def indexes(self, table_name: str) -> list[IndexDefinition]:
        return await self.introspect(IntrospectionKind.INDEXES, table_name)

    async def foreign_keys(self, table_name: str) -> list[ForeignKeyDefinition]:
        return await self.introspect(IntrospectionKind.FOREIGN_KEYS, table_name)

    async def check_constraints(self, table_name: str) -> list[CheckConstraintDefinition]:
        return await self.introspect(IntrospectionKind.CHECK_CONSTRAINTS, table_name)

    async def exclusion_constraints(self, table_name: str) -> list[ExclusionConstraintDefinition]:
        return await self.introspect(IntrospectionKind.EXCLUSION_CONSTRAINTS, table_name)

    async def unique_constraints(self, table_name: str) -> list[UniqueConstraintDefinition]:
        return await self.introspect(IntrospectionKind.UNIQUE_CONSTRAINTS, table_name)

    async def table_comment(self, table_name: str) -> str | None:
        return await self.introspect(IntrospectionKind.TABLE_COMMENT, table_name)

    async def inherited_table_names(self, table_name: str) -> list[str]:
        return await self.introspect(IntrospectionKind.INHERITED_TABLE_NAMES, table_name)

    async def table_partition_definition(self, table_name: str) -> str | None:
        return await self.introspect(IntrospectionKind.TABLE_PARTITION_DEFINITION, table_name)

    async def table_options(self, table_name: str) -> TableOptions:
        return await self.introspect(IntrospectionKind.TABLE_OPTIONS, table_name)


class DirectIntrospectionProvider(IntrospectionProvider):
    """Answers every call with a single-table catalog query."""

    def __init__(self, conn: Connection, decoders: dict[IntrospectionKind, CatalogDecoder] | None = None):
        self.conn = conn
        self.decoders = decoders if decoders is not None else build_decoders()

    @log_performance(logger, "single-table introspection")
    async def introspect(self, kind: IntrospectionKind, table_name: str) -> Any:
        if kind == IntrospectionKind.TABLE_OPTIONS:
            return build_table_options(
                await self.table_comment(table_name),
                await self.inherited_table_names(table_name),
                await self.table_partition_definition(table_name),
            )
        return await self.decoders[kind].fetch(self.conn, table_name)


class CachedIntrospectionProvider(IntrospectionProvider):
    """Serves preloaded values, delegating to ``delegate`` on a miss."""

    def __init__(self, cache: PreloadCache, delegate: IntrospectionProvider):
        self.cache = cache
        self.delegate = delegate

    async def introspect(self, kind: IntrospectionKind, table_name: str) -> Any:
        return await self.cache.get(kind, table_name, lambda: self.delegate.introspect(kind, table_name))
