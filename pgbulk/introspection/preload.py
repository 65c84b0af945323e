"""
Bulk preloading and the cache-or-compute gate.

A ``PreloadCache`` belongs to exactly one catalog session. ``preload`` runs
one bulk query per introspection kind over the whole table list and
publishes the decoded values as a single, read-only map; ``get`` serves a
value from that map or falls back to a caller-supplied single-table query.
Fallback results are deliberately not written back.
"""

from typing import Any, Awaitable, Callable, Iterable, TypeVar

from asyncpg import Connection

from pgbulk.introspection.decoders import CatalogDecoder, build_decoders
from pgbulk.introspection.definitions import IntrospectionKind, build_table_options
from pgbulk.introspection.features import CatalogFeatures
from pgbulk.logging_config import get_logger, log_performance

logger = get_logger(__name__)

T = TypeVar("T")

PreloadMap = dict[IntrospectionKind, dict[str, Any]]

# Decoder-backed kinds in the order they are preloaded; TABLE_OPTIONS is
# composed afterwards from the three micro kinds that precede it.
PRELOAD_ORDER = (
    IntrospectionKind.COLUMN_DEFINITIONS,
    IntrospectionKind.PRIMARY_KEYS,
    IntrospectionKind.INDEXES,
    IntrospectionKind.FOREIGN_KEYS,
    IntrospectionKind.CHECK_CONSTRAINTS,
    IntrospectionKind.EXCLUSION_CONSTRAINTS,
    IntrospectionKind.UNIQUE_CONSTRAINTS,
    IntrospectionKind.TABLE_COMMENT,
    IntrospectionKind.INHERITED_TABLE_NAMES,
    IntrospectionKind.TABLE_PARTITION_DEFINITION,
)


class PreloadCache:
    def __init__(self, decoders: dict[IntrospectionKind, CatalogDecoder] | None = None):
        self.decoders = decoders if decoders is not None else build_decoders()
        self._values: PreloadMap | None = None
        self.hits = 0
        self.misses = 0

    @classmethod
    def for_features(cls, features: CatalogFeatures) -> "PreloadCache":
        return cls(build_decoders(features))

    @property
    def loaded(self) -> bool:
        return self._values is not None

    @property
    def values(self) -> PreloadMap:
        """The published preload map (empty before the first successful preload)."""
        return self._values if self._values is not None else {}

    def contains(self, kind: IntrospectionKind, table_name: str) -> bool:
        return self._values is not None and table_name in self._values.get(kind, {})

    @log_performance(logger, "bulk preload")
    async def preload(self, conn: Connection, table_names: Iterable[str]) -> None:
        """
        Decode every kind for ``table_names`` with one bulk query per kind.

        Any catalog or decode error propagates; the previously published map
        (if any) stays in place, so callers keep falling back.
        """
        table_names = list(dict.fromkeys(table_names))
        logger.info("Preloading catalog definitions for %d tables", len(table_names))

        values: PreloadMap = {}
        for kind in PRELOAD_ORDER:
            values[kind] = await self.decoders[kind].load(conn, table_names)

        values[IntrospectionKind.TABLE_OPTIONS] = {
            table_name: build_table_options(
                values[IntrospectionKind.TABLE_COMMENT][table_name],
                values[IntrospectionKind.INHERITED_TABLE_NAMES][table_name],
                values[IntrospectionKind.TABLE_PARTITION_DEFINITION][table_name],
            )
            for table_name in table_names
        }

        self._values = values
        logger.info("Preloaded %d introspection kinds with %d catalog queries", len(values), len(PRELOAD_ORDER))

    async def get(self, kind: IntrospectionKind, table_name: str, fallback: Callable[[], Awaitable[T]]) -> T:
        """Return the preloaded value, or the (uncached) result of ``fallback``."""
        if self.contains(kind, table_name):
            self.hits += 1
            return self._values[kind][table_name]

        self.misses += 1
        logger.debug("Preload miss for %s of %s; querying the catalog directly", kind.value, table_name)
        return await fallback()
