from asyncpg import Connection
from pydantic import BaseModel


class CatalogFeatures(BaseModel):
    """Catalog capabilities that depend on the server's major version."""

    server_major_version: int = 16

    @property
    def supports_identity_columns(self) -> bool:
        return self.server_major_version >= 10

    @property
    def supports_virtual_columns(self) -> bool:
        return self.server_major_version >= 12

    @property
    def supports_native_partitioning(self) -> bool:
        return self.server_major_version >= 10

    @classmethod
    def detect(cls, conn: Connection) -> "CatalogFeatures":
        version = conn.get_server_version()
        return cls(server_major_version=version.major)
