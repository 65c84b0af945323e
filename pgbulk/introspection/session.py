from typing import Iterable

from asyncpg import Connection

from pgbulk.introspection.decoders import build_decoders, fetch_table_names
from pgbulk.introspection.features import CatalogFeatures
from pgbulk.introspection.preload import PreloadCache
from pgbulk.introspection.provider import CachedIntrospectionProvider, DirectIntrospectionProvider
from pgbulk.logging_config import get_logger

logger = get_logger(__name__)


class IntrospectionSession:
    """
    Everything introspection needs for one catalog connection: detected
    server features, the preload cache and the providers built on top of it.

    Queries share the connection, so a session must not be used from
    concurrent tasks without external serialization.
    """

    def __init__(self, conn: Connection, features: CatalogFeatures | None = None):
        self.conn = conn
        self.features = features or CatalogFeatures.detect(conn)
        decoders = build_decoders(self.features)
        self.cache = PreloadCache(decoders)
        self.direct = DirectIntrospectionProvider(conn, decoders)
        self.provider = CachedIntrospectionProvider(self.cache, self.direct)
        self.table_names: list[str] = []

    @classmethod
    async def open(cls, conn: Connection, preload: bool = True) -> "IntrospectionSession":
        session = cls(conn)
        logger.info("Opened introspection session (server major version %d)", session.features.server_major_version)
        if preload:
            await session.preload()
        return session

    async def list_tables(self) -> list[str]:
        self.table_names = await fetch_table_names(self.conn)
        return self.table_names

    async def preload(self, table_names: Iterable[str] | None = None) -> None:
        """Start a new preload cycle, over every visible table unless given a list."""
        if table_names is None:
            table_names = await self.list_tables()
        await self.cache.preload(self.conn, table_names)
