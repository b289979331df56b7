"""Pydantic models for live schema snapshots and DDL descriptors.

This module contains schema-domain models:
- Introspection models: ColumnSchema, IndexSchema, ForeignKeySchema,
  TableSchema, LiveSchema
- DDL descriptors passed to dialects: ColumnDefinition, ConstraintSchema,
  TableDefinition

Introspection models are frozen: a snapshot never changes once captured.
Names coming out of a catalog have engine-specific quoting stripped on
construction.

The entity model (what the application declares) lives in db_sync.model.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

QUOTE_CHARS = "\"'`"


def strip_quotes(value: str | None) -> str | None:
    """Remove one pair of matching leading/trailing quote characters.

    Example:
        >>> strip_quotes('"books"')
        'books'
        >>> strip_quotes("`author_id`")
        'author_id'
        >>> strip_quotes("plain")
        'plain'
    """
    if value and len(value) >= 2 and value[0] in QUOTE_CHARS and value[-1] == value[0]:
        return value[1:-1]
    return value


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a live database column.

    ``data_type`` is the normalized semantic type; ``raw_type`` keeps the
    catalog spelling for reports.

    Example:
        >>> col = ColumnSchema(name="id", data_type="integer")
        >>> col.is_nullable
        True
    """

    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    raw_type: str = ""
    is_nullable: bool = True
    default: str | None = None
    is_primary: bool = False


class IndexSchema(BaseModel):
    """Schema for a live database index.

    ``is_constraint`` marks indexes that back a named constraint (for
    example a ``UNIQUE`` constraint) and must be dropped as a constraint.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    is_constraint: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return strip_quotes(value)

    @field_validator("columns")
    @classmethod
    def _strip_columns(cls, value: list[str]) -> list[str]:
        return [strip_quotes(c) for c in value]


class ForeignKeySchema(BaseModel):
    """Schema for a live foreign key on a single column."""

    model_config = ConfigDict(frozen=True)

    name: str
    column: str
    references_table: str
    references_column: str | None = None
    on_delete: str | None = None
    on_update: str | None = None

    @field_validator("name", "column", "references_table", "references_column")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        return strip_quotes(value)


class TableSchema(BaseModel):
    """Schema for a live database table.

    ``indexes`` maps a column name to every index covering it, and
    ``foreign_keys`` maps a column name to the foreign key declared on it.
    Only columns present in ``columns`` appear as keys.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    columns: dict[str, ColumnSchema] = Field(default_factory=dict)
    indexes: dict[str, list[IndexSchema]] = Field(default_factory=dict)
    foreign_keys: dict[str, ForeignKeySchema] = Field(default_factory=dict)

    def index_list(self) -> list[IndexSchema]:
        """Distinct indexes of the table, in first-seen column order."""
        seen: dict[str, IndexSchema] = {}
        for indexes in self.indexes.values():
            for index in indexes:
                seen.setdefault(index.name, index)
        return list(seen.values())


class LiveSchema(BaseModel):
    """Snapshot of the live database schema."""

    model_config = ConfigDict(frozen=True)

    tables: dict[str, TableSchema] = Field(default_factory=dict)

    @property
    def table_names(self) -> list[str]:
        """Table names in introspection order."""
        return list(self.tables)


# ============================================================================
# DDL Descriptors
# ============================================================================


class ColumnDefinition(BaseModel):
    """Column to create, in dialect-neutral terms."""

    name: str
    type: str
    nullable: bool = True
    default: str | int | float | bool | None = None
    primary_key: bool = False
    autoincrement: bool = False


class ConstraintSchema(BaseModel):
    """Schema for a table constraint to add."""

    name: str
    constraint_type: str  # FOREIGN KEY, UNIQUE
    columns: list[str] = Field(default_factory=list)
    references_table: str | None = None
    references_columns: list[str] | None = None
    on_delete: str | None = None
    on_update: str | None = None


class TableDefinition(BaseModel):
    """Table to create.

    ``foreign_keys`` is only populated for dialects that cannot add
    constraints after creation and therefore declare them inline.
    """

    name: str
    columns: list[ColumnDefinition] = Field(default_factory=list)
    foreign_keys: list[ConstraintSchema] = Field(default_factory=list)

    @property
    def primary_key(self) -> list[str]:
        """Names of primary-key columns."""
        return [c.name for c in self.columns if c.primary_key]
