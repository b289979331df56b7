"""Dialect adapter base class.

A dialect wraps one live SQLAlchemy ``AsyncConnection`` and offers two
groups of capabilities: catalog introspection (tables, columns, indexes,
foreign keys) and individual DDL primitives.  It knows nothing about the
entity model.

Defaults follow a fixed contract:

- ``get_indices`` / ``get_foreign_keys`` raise ``IntrospectionUnsupported``
- ``add_constraint`` / ``drop_constraint`` / ``change_column_type`` raise
  ``OperationNotSupported``
- ``cast_column_type`` returns ``False``

Concrete dialects override what their engine can do.  Every DDL primitive
either succeeds or raises ``DDLError``.

Usage:
    async with engine.connect() as conn:
        dialect = PostgresDialect(conn)
        tables = await dialect.list_tables()
        await dialect.add_column("books", ColumnDefinition(name="isbn", type="string"))
        await dialect.commit()
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from db_sync.errors import (
    DatabaseConnectionError,
    DDLError,
    IntrospectionUnsupported,
    OperationNotSupported,
)
from db_sync.schema.models import (
    ColumnDefinition,
    ColumnSchema,
    ConstraintSchema,
    ForeignKeySchema,
    IndexSchema,
    TableDefinition,
)

logger = logging.getLogger(__name__)


class BaseDialect(ABC):
    """Capability provider for one database engine.

    Args:
        connection: Live async connection owned by the caller for the
            duration of a synchronization run.
        schema: Namespace to introspect (only meaningful for Postgres).
        log_sql: Log every DDL statement at INFO instead of DEBUG.
    """

    name: str = "abstract"
    quote_char: str = '"'
    supports_constraints: bool = True
    supports_transactional_ddl: bool = False

    # Semantic type -> DDL type
    TYPE_MAP: dict[str, str] = {}
    # Catalog type (lower-case, without length) -> semantic type
    RAW_TYPE_MAP: dict[str, str] = {}
    # (old semantic type, new semantic type) pairs castable without data loss
    SAFE_CASTS: frozenset[tuple[str, str]] = frozenset()
    BOOLEAN_LITERALS: tuple[str, str] = ("FALSE", "TRUE")

    def __init__(
        self,
        connection: AsyncConnection | None,
        *,
        schema: str | None = None,
        log_sql: bool = False,
    ) -> None:
        self._conn = connection
        self._schema = schema
        self._log_sql = log_sql

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _require_connection(self) -> AsyncConnection:
        if self._conn is None:
            raise RuntimeError("Dialect not connected. Pass a connection at construction.")
        return self._conn

    async def _fetch(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        *,
        fatal: bool = False,
    ) -> list[Any]:
        """Run a catalog query and return all rows.

        Connection-level failures become ``DatabaseConnectionError``.  With
        ``fatal=True`` every database error does.
        """
        conn = self._require_connection()
        try:
            if params is None:
                result = await conn.exec_driver_sql(sql)
            else:
                result = await conn.execute(text(sql), params)
            return list(result.fetchall())
        except DBAPIError as e:
            if fatal or e.connection_invalidated or isinstance(e, (OperationalError, InterfaceError)):
                raise DatabaseConnectionError(f"Catalog query failed: {e}") from e
            raise
        except SQLAlchemyError as e:
            if fatal:
                raise DatabaseConnectionError(f"Catalog query failed: {e}") from e
            raise

    async def _execute_ddl(self, sql: str, *, table: str, column: str | None = None) -> None:
        conn = self._require_connection()
        if self._log_sql:
            logger.info("%s", sql)
        else:
            logger.debug("DDL: %s", sql)
        try:
            await conn.exec_driver_sql(sql)
        except SQLAlchemyError as e:
            raise DDLError(table, column, e) from e

    async def commit(self) -> None:
        """Commit the current transaction on the owned connection."""
        await self._require_connection().commit()

    async def rollback(self) -> None:
        """Roll back the current transaction on the owned connection."""
        await self._require_connection().rollback()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling embedded quote characters."""
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def table_ref(self, table: str) -> str:
        """Reference to *table* as used in DDL."""
        return self.quote(table)

    def _column_list(self, columns: list[str]) -> str:
        return ", ".join(self.quote(c) for c in columns)

    def column_type(self, semantic_type: str) -> str:
        """DDL type for a semantic type."""
        return self.TYPE_MAP.get(semantic_type, semantic_type.upper())

    def normalize_type(self, raw_type: str) -> str:
        """Semantic type for a catalog type.

        Length/precision suffixes are ignored.  Unknown types are returned
        lower-cased so they still compare by equality.

        Example:
            >>> dialect.normalize_type("VARCHAR(255)")
            'string'
        """
        base = raw_type.strip().lower().split("(")[0].strip()
        return self.RAW_TYPE_MAP.get(base, base)

    def storage_type(self, semantic_type: str) -> str:
        """Semantic type a declared type reads back as once created.

        The identity for engines that store every semantic type distinctly.

        Example:
            >>> SQLiteDialect(None).storage_type("biginteger")
            'integer'
        """
        return self.normalize_type(self.column_type(semantic_type))

    def literal(self, value: str | int | float | bool | None) -> str:
        """Render a default value as a SQL literal."""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.BOOLEAN_LITERALS[int(value)]
        if isinstance(value, (int, float)):
            return str(value)
        return "'" + str(value).replace("'", "''") + "'"

    def _column_type_sql(self, column: ColumnDefinition, for_create: bool) -> str:
        return self.column_type(column.type)

    def column_sql(self, column: ColumnDefinition, *, for_create: bool = True) -> str:
        """Render a column definition.

        Inside ``CREATE TABLE`` the definition is complete.  For
        ``ADD COLUMN`` it is made safe for populated tables: ``NOT NULL`` is
        kept only when a default is given, and primary-key/auto-increment
        attributes are dropped.
        """
        parts = [self.quote(column.name), self._column_type_sql(column, for_create)]
        if column.default is not None:
            parts.append(f"DEFAULT {self.literal(column.default)}")
        if for_create:
            if not column.nullable or column.primary_key:
                parts.append("NOT NULL")
        elif not column.nullable and column.default is not None:
            parts.append("NOT NULL")
        return " ".join(parts)

    def constraint_sql(self, constraint: ConstraintSchema) -> str:
        """Render a table constraint clause."""
        columns = self._column_list(constraint.columns)
        if constraint.constraint_type == "FOREIGN KEY":
            sql = (
                f"CONSTRAINT {self.quote(constraint.name)} FOREIGN KEY ({columns}) "
                f"REFERENCES {self.table_ref(constraint.references_table)} "
                f"({self._column_list(constraint.references_columns or [])})"
            )
            if constraint.on_delete:
                sql += f" ON DELETE {constraint.on_delete}"
            if constraint.on_update:
                sql += f" ON UPDATE {constraint.on_update}"
            return sql
        if constraint.constraint_type == "UNIQUE":
            return f"CONSTRAINT {self.quote(constraint.name)} UNIQUE ({columns})"
        raise ValueError(f"Unsupported constraint type: {constraint.constraint_type}")

    def _inline_primary_key(self, table: TableDefinition) -> bool:
        return False

    def create_table_sql(self, table: TableDefinition) -> str:
        """Render ``CREATE TABLE`` for a table definition."""
        parts = [self.column_sql(c) for c in table.columns]
        primary_key = table.primary_key
        if primary_key and not self._inline_primary_key(table):
            parts.append(f"PRIMARY KEY ({self._column_list(primary_key)})")
        parts.extend(self.constraint_sql(fk) for fk in table.foreign_keys)
        return f"CREATE TABLE {self.table_ref(table.name)} ({', '.join(parts)})"

    def create_index_sql(self, table: str, index: IndexSchema) -> str:
        """Render ``CREATE [UNIQUE] INDEX``."""
        unique = "UNIQUE " if index.is_unique else ""
        return (
            f"CREATE {unique}INDEX {self.quote(index.name)} "
            f"ON {self.table_ref(table)} ({self._column_list(index.columns)})"
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_tables(self) -> list[str]:
        """Ordered table names.

        Raises:
            DatabaseConnectionError: If the connection is unusable.
        """

    @abstractmethod
    async def get_columns(self, table: str) -> list[ColumnSchema]:
        """Columns of *table* in ordinal order."""

    async def get_indices(self, table: str) -> list[IndexSchema]:
        """Indexes of *table*."""
        raise IntrospectionUnsupported(f"{self.name} cannot list indexes of {table}")

    async def get_foreign_keys(self, table: str) -> list[ForeignKeySchema]:
        """Foreign keys of *table*."""
        raise IntrospectionUnsupported(f"{self.name} cannot list foreign keys of {table}")

    # ------------------------------------------------------------------
    # DDL primitives
    # ------------------------------------------------------------------

    async def create_table(self, table: TableDefinition) -> None:
        await self._execute_ddl(self.create_table_sql(table), table=table.name)

    async def drop_table(self, table: str) -> None:
        await self._execute_ddl(f"DROP TABLE {self.table_ref(table)}", table=table)

    async def add_column(self, table: str, column: ColumnDefinition) -> None:
        sql = (
            f"ALTER TABLE {self.table_ref(table)} "
            f"ADD COLUMN {self.column_sql(column, for_create=False)}"
        )
        await self._execute_ddl(sql, table=table, column=column.name)

    async def remove_column(self, table: str, name: str) -> None:
        sql = f"ALTER TABLE {self.table_ref(table)} DROP COLUMN {self.quote(name)}"
        await self._execute_ddl(sql, table=table, column=name)

    async def rename_column(self, table: str, old: str, new: str) -> None:
        sql = (
            f"ALTER TABLE {self.table_ref(table)} "
            f"RENAME COLUMN {self.quote(old)} TO {self.quote(new)}"
        )
        await self._execute_ddl(sql, table=table, column=old)

    async def change_column_type(
        self,
        table: str,
        name: str,
        old_type: str,
        new_type: str,
        *,
        nullable: bool = True,
    ) -> None:
        raise OperationNotSupported(self.name, "change_column_type")

    async def cast_column_type(
        self, table: str, column: str, old_type: str, new_type: str
    ) -> bool:
        """Whether *column* can be cast in place without data loss.

        Never raises.  ``False`` makes the planner drop and re-create the
        column instead.
        """
        return (old_type, new_type) in self.SAFE_CASTS

    async def add_constraint(self, table: str, constraint: ConstraintSchema) -> None:
        raise OperationNotSupported(self.name, "add_constraint")

    async def drop_constraint(self, table: str, constraint_name: str) -> None:
        raise OperationNotSupported(self.name, "drop_constraint")

    async def add_index(self, table: str, index: IndexSchema) -> None:
        await self._execute_ddl(self.create_index_sql(table, index), table=table)

    async def drop_index(self, table: str, index_name: str) -> None:
        await self._execute_ddl(f"DROP INDEX {self.quote(index_name)}", table=table)


# Casts every engine with an ALTER ... TYPE can perform without data loss
WIDENING_CASTS: frozenset[tuple[str, str]] = frozenset({
    ("integer", "biginteger"),
    ("integer", "float"),
    ("integer", "decimal"),
    ("biginteger", "decimal"),
    ("string", "text"),
    ("date", "datetime"),
    ("integer", "string"),
    ("biginteger", "string"),
    ("boolean", "string"),
    ("uuid", "string"),
    ("integer", "text"),
    ("biginteger", "text"),
    ("float", "text"),
    ("decimal", "text"),
    ("boolean", "text"),
    ("date", "text"),
    ("datetime", "text"),
    ("uuid", "text"),
    ("json", "text"),
})
