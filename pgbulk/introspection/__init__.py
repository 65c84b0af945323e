from pgbulk.introspection.definitions import (
    CheckConstraintDefinition,
    ColumnDefinition,
    ExclusionConstraintDefinition,
    ForeignKeyAction,
    ForeignKeyDefinition,
    IndexDefinition,
    IntrospectionKind,
    TableOptions,
    UniqueConstraintDefinition,
)
from pgbulk.introspection.describe import TableDescription, describe_table, describe_tables
from pgbulk.introspection.features import CatalogFeatures
from pgbulk.introspection.parsing import DefinitionParseError
from pgbulk.introspection.preload import PreloadCache
from pgbulk.introspection.provider import (
    CachedIntrospectionProvider,
    DirectIntrospectionProvider,
    IntrospectionProvider,
)
from pgbulk.introspection.scope import ANY_SCHEMA, TableScope, find_by_scope, group_rows, quoted_scope
from pgbulk.introspection.session import IntrospectionSession

__all__ = [
    "ANY_SCHEMA",
    "CachedIntrospectionProvider",
    "CatalogFeatures",
    "CheckConstraintDefinition",
    "ColumnDefinition",
    "DefinitionParseError",
    "DirectIntrospectionProvider",
    "ExclusionConstraintDefinition",
    "ForeignKeyAction",
    "ForeignKeyDefinition",
    "IndexDefinition",
    "IntrospectionKind",
    "IntrospectionProvider",
    "IntrospectionSession",
    "PreloadCache",
    "TableDescription",
    "TableOptions",
    "TableScope",
    "UniqueConstraintDefinition",
    "describe_table",
    "describe_tables",
    "find_by_scope",
    "group_rows",
    "quoted_scope",
]
