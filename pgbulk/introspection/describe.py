from typing import Iterable

from pydantic import BaseModel, ConfigDict

from pgbulk.introspection.definitions import (
    CheckConstraintDefinition,
    ColumnDefinition,
    ExclusionConstraintDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableOptions,
    UniqueConstraintDefinition,
)
from pgbulk.introspection.provider import IntrospectionProvider


class TableDescription(BaseModel):
    """Every introspected fact about one table, as a schema dumper consumes them."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[ColumnDefinition]
    primary_key: list[str]
    indexes: list[IndexDefinition]
    foreign_keys: list[ForeignKeyDefinition]
    check_constraints: list[CheckConstraintDefinition]
    exclusion_constraints: list[ExclusionConstraintDefinition]
    unique_constraints: list[UniqueConstraintDefinition]
    options: TableOptions


async def describe_table(provider: IntrospectionProvider, table_name: str) -> TableDescription:
    return TableDescription(
        name=table_name,
        columns=await provider.column_definitions(table_name),
        primary_key=await provider.primary_keys(table_name),
        indexes=await provider.indexes(table_name),
        foreign_keys=await provider.foreign_keys(table_name),
        check_constraints=await provider.check_constraints(table_name),
        exclusion_constraints=await provider.exclusion_constraints(table_name),
        unique_constraints=await provider.unique_constraints(table_name),
        options=await provider.table_options(table_name),
    )


async def describe_tables(provider: IntrospectionProvider, table_names: Iterable[str]) -> list[TableDescription]:
    # sequential: providers share one connection
    return [await describe_table(provider, table_name) for table_name in table_names]
