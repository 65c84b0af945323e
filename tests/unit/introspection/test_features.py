"""
Unit tests for pgbulk.introspection.features module.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import asyncpg
import pytest

from pgbulk.introspection.features import CatalogFeatures


class TestCatalogFeatures:
    """Test server capability detection."""

    @pytest.mark.parametrize(
        "major,identity,generated,partitioning",
        [
            (9, False, False, False),
            (10, True, False, True),
            (12, True, True, True),
            (16, True, True, True),
        ],
    )
    def test_version_gates(self, major, identity, generated, partitioning):
        """Test which catalog columns each server version offers."""
        features = CatalogFeatures(server_major_version=major)

        assert features.supports_identity_columns is identity
        assert features.supports_virtual_columns is generated
        assert features.supports_native_partitioning is partitioning

    def test_detect_reads_server_version(self):
        """Test detection from an asyncpg connection."""
        conn = MagicMock(spec=asyncpg.Connection)
        conn.get_server_version.return_value = SimpleNamespace(major=11, minor=5, micro=0)

        features = CatalogFeatures.detect(conn)

        assert features.server_major_version == 11
        assert features.supports_virtual_columns is False
