import asyncio
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException

from pgbulk.config import DEFAULT_DATABASE_URL
from pgbulk.introspection.definitions import IntrospectionKind
from pgbulk.introspection.describe import TableDescription, describe_table
from pgbulk.introspection.session import IntrospectionSession
from pgbulk.logging_config import get_logger

logger = get_logger(__name__)


class IntrospectionRouter(APIRouter):
    """
    Serves table definitions from one catalog session.

    The session (and its preload cache) is opened in the router lifespan;
    requests are serialized because they share the session's connection.
    """

    def __init__(self,
                 connection_str: str | None = None,
                 preload: bool = True,
                 **kwargs):
        super().__init__(**kwargs, lifespan=self.lifespan)

        logger.info("Initializing IntrospectionRouter (preload=%s)", preload)
        self.connection_str = connection_str or DEFAULT_DATABASE_URL
        self.preload = preload

        self.initialized = False
        self._conn: asyncpg.Connection | None = None
        self._session: IntrospectionSession | None = None
        self._lock = asyncio.Lock()

        self.add_api_route(
            "/tables",
            self.list_tables,
            methods=["GET"],
            response_model=list[str],
            summary="List tables",
            description="Base and partitioned tables visible in the search path.",
        )
        self.add_api_route(
            "/tables/{table_name}",
            self.describe_table,
            methods=["GET"],
            response_model=TableDescription,
            summary="Describe a table",
            description="Columns, keys, indexes, constraints and options of one table.",
        )
        self.add_api_route(
            "/tables/{table_name}/{kind}",
            self.introspect,
            methods=["GET"],
            summary="Introspect one kind of definition",
        )
        self.add_api_route(
            "/preload",
            self.refresh,
            methods=["POST"],
            summary="Start a new preload cycle",
        )

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        self._conn = await asyncpg.connect(dsn=self.connection_str)
        try:
            logger.info("Starting IntrospectionRouter")
            await self.start()

            self.initialized = True
            yield
        finally:
            self.initialized = False
            self._session = None
            await asyncio.wait_for(self._conn.close(), timeout=10)

    async def start(self):
        self._session = await IntrospectionSession.open(self._conn, preload=self.preload)

    @property
    def session(self) -> IntrospectionSession:
        if self._session is None:
            raise HTTPException(status_code=503, detail="Introspection session is not open")
        return self._session

    async def list_tables(self) -> list[str]:
        async with self._lock:
            return await self.session.list_tables()

    async def describe_table(self, table_name: str) -> TableDescription:
        async with self._lock:
            return await describe_table(self.session.provider, table_name)

    async def introspect(self, table_name: str, kind: IntrospectionKind) -> Any:
        async with self._lock:
            return await self.session.provider.introspect(kind, table_name)

    async def refresh(self) -> dict[str, int]:
        async with self._lock:
            await self.session.preload()
            return {
                "tables": len(self.session.table_names),
                "kinds": len(self.session.cache.values),
            }
