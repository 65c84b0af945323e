from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Definition(BaseModel):
    """Base for the immutable value objects produced by the catalog decoders."""

    model_config = ConfigDict(frozen=True)


class ColumnDefinition(Definition):
    name: str
    sql_type: str
    default: str | None = None
    not_null: bool = False
    type_oid: int
    type_modifier: int = -1
    collation: str | None = None
    comment: str | None = None
    # attidentity: '' (none), 'a' (always), 'd' (by default)
    identity: str = ""
    # attgenerated: '' (none), 's' (stored), 'v' (virtual)
    generated: str = ""

    @property
    def null(self) -> bool:
        return not self.not_null

    @property
    def is_identity(self) -> bool:
        return bool(self.identity)

    @property
    def is_generated(self) -> bool:
        return bool(self.generated)


class IndexDefinition(Definition):
    table: str
    name: str
    unique: bool = False
    columns: list[str] = Field(
        default_factory=list,
        description="Key columns, or a single raw expression when the index has expression keys.",
    )
    orders: dict[str, str] = Field(default_factory=dict)
    opclasses: dict[str, str] = Field(default_factory=dict)
    where: str | None = None
    using: str = "btree"
    include: list[str] = Field(default_factory=list)
    nulls_not_distinct: bool = False
    # reloptions as rendered, e.g. "fillfactor='70'"
    storage_parameters: str | None = None
    comment: str | None = None
    valid: bool = True


class ForeignKeyAction(str, Enum):
    NO_ACTION = "no_action"
    RESTRICT = "restrict"
    CASCADE = "cascade"
    SET_NULL = "set_null"
    SET_DEFAULT = "set_default"


class ForeignKeyDefinition(Definition):
    from_table: str
    to_table: str
    name: str
    column: str | list[str]
    primary_key: str | list[str]
    on_delete: ForeignKeyAction = ForeignKeyAction.NO_ACTION
    on_update: ForeignKeyAction = ForeignKeyAction.NO_ACTION
    deferrable: bool = False
    initially_deferred: bool = False
    valid: bool = True


class CheckConstraintDefinition(Definition):
    table: str
    name: str
    expression: str
    valid: bool = True


class UniqueConstraintDefinition(Definition):
    table: str
    name: str
    columns: list[str]
    nulls_not_distinct: bool = False
    deferrable: bool = False
    initially_deferred: bool = False


class ExclusionConstraintDefinition(Definition):
    table: str
    name: str
    using: str
    expression: str
    where: str | None = None
    deferrable: bool = False
    initially_deferred: bool = False


class TableOptions(Definition):
    comment: str | None = None
    options: str | None = None


def build_table_options(
    comment: str | None,
    inherited_table_names: list[str],
    partition_definition: str | None,
) -> TableOptions:
    """
    Compose table options; ``INHERITS`` wins over ``PARTITION BY`` when both are present.
    """
    options = None
    if inherited_table_names:
        options = f"INHERITS ({', '.join(inherited_table_names)})"
    elif partition_definition:
        options = f"PARTITION BY {partition_definition}"
    return TableOptions(comment=comment, options=options)


class IntrospectionKind(str, Enum):
    """Introspection kinds, in preload order."""

    COLUMN_DEFINITIONS = "column_definitions"
    PRIMARY_KEYS = "primary_keys"
    INDEXES = "indexes"
    FOREIGN_KEYS = "foreign_keys"
    CHECK_CONSTRAINTS = "check_constraints"
    EXCLUSION_CONSTRAINTS = "exclusion_constraints"
    UNIQUE_CONSTRAINTS = "unique_constraints"
    TABLE_COMMENT = "table_comment"
    INHERITED_TABLE_NAMES = "inherited_table_names"
    TABLE_PARTITION_DEFINITION = "table_partition_definition"
    TABLE_OPTIONS = "table_options"
