"""Live schema introspection through a dialect adapter.

This module builds one normalized ``LiveSchema`` snapshot per run:
- Tables and columns (normalized type, nullability, default)
- Indexes, keyed by every column they cover
- Foreign keys, keyed by their column

The introspector never issues SQL itself; every catalog query goes through
the dialect.  It is read-only and safe to call repeatedly within one run.
"""

import logging

from db_sync.dialects.base import BaseDialect
from db_sync.errors import IntrospectionUnsupported
from db_sync.schema.models import (
    ColumnSchema,
    ForeignKeySchema,
    IndexSchema,
    LiveSchema,
    TableSchema,
)

logger = logging.getLogger(__name__)

# Tables excluded from introspection (migration bookkeeping, extensions)
EXCLUDED_TABLES_DEFAULT = frozenset({
    "schema_migrations",
    "pg_stat_statements",
    "spatial_ref_sys",
})


class SchemaIntrospector:
    """Introspects the live schema visible to a dialect.

    Usage:
        introspector = SchemaIntrospector(dialect)

        # Full snapshot (columns, indexes, foreign keys)
        schema = await introspector.introspect()

        # Or just column names
        columns = await introspector.get_column_names()
    """

    def __init__(
        self,
        dialect: BaseDialect,
        excluded_tables: set[str] | frozenset[str] | None = None,
    ) -> None:
        """Initialize with a connected dialect.

        Args:
            dialect: Dialect adapter owning a live connection.
            excluded_tables: Table names to skip; defaults to
                ``EXCLUDED_TABLES_DEFAULT``.
        """
        self._dialect = dialect
        self.excluded_tables = (
            EXCLUDED_TABLES_DEFAULT if excluded_tables is None else frozenset(excluded_tables)
        )

    async def introspect(self) -> LiveSchema:
        """Capture a full snapshot of the live schema.

        Returns:
            LiveSchema with every non-excluded table.

        Raises:
            DatabaseConnectionError: If the connection is unusable.  Nothing
                partial is returned.
        """
        tables: dict[str, TableSchema] = {}
        for table_name in await self._dialect.list_tables():
            if table_name in self.excluded_tables:
                continue
            tables[table_name] = await self._introspect_table(table_name)

        logger.debug("Introspected %d tables via %s", len(tables), self._dialect.name)
        return LiveSchema(tables=tables)

    async def get_column_names(self) -> dict[str, set[str]]:
        """Get column names for all tables.

        Lightweight alternative to ``introspect()`` when only presence
        matters.

        Returns:
            Dict mapping table name to set of column names
        """
        result: dict[str, set[str]] = {}
        for table_name in await self._dialect.list_tables():
            if table_name in self.excluded_tables:
                continue
            columns = await self._columns(table_name)
            result[table_name] = {c.name for c in columns}
        return result

    async def _introspect_table(self, table_name: str) -> TableSchema:
        columns = {c.name: c for c in await self._columns(table_name)}
        indexes = await self._indices(table_name)
        foreign_keys = await self._foreign_keys(table_name)

        # Index mapping: column -> every index covering it
        index_map: dict[str, list[IndexSchema]] = {}
        primary_columns: set[str] = set()
        for index in indexes:
            for column in index.columns:
                if column not in columns:
                    continue
                index_map.setdefault(column, []).append(index)
                if index.is_primary:
                    primary_columns.add(column)

        # FK mapping: column -> at most one foreign key
        fk_map: dict[str, ForeignKeySchema] = {}
        for fk in foreign_keys:
            if fk.column not in columns:
                continue
            if fk.column in fk_map:
                logger.warning(
                    "Table %s: column %s has more than one foreign key, keeping %s",
                    table_name, fk.column, fk_map[fk.column].name,
                )
                continue
            fk_map[fk.column] = fk

        # Some engines only report the primary key through its index
        for name in primary_columns:
            if not columns[name].is_primary:
                columns[name] = columns[name].model_copy(update={"is_primary": True})

        return TableSchema(
            name=table_name,
            columns=columns,
            indexes=index_map,
            foreign_keys=fk_map,
        )

    async def _columns(self, table_name: str) -> list[ColumnSchema]:
        try:
            return await self._dialect.get_columns(table_name)
        except IntrospectionUnsupported as e:
            logger.warning("Columns of %s unavailable, assuming none: %s", table_name, e)
            return []

    async def _indices(self, table_name: str) -> list[IndexSchema]:
        try:
            return await self._dialect.get_indices(table_name)
        except IntrospectionUnsupported as e:
            logger.warning("Indexes of %s unavailable, assuming none: %s", table_name, e)
            return []

    async def _foreign_keys(self, table_name: str) -> list[ForeignKeySchema]:
        try:
            return await self._dialect.get_foreign_keys(table_name)
        except IntrospectionUnsupported as e:
            logger.warning("Foreign keys of %s unavailable, assuming none: %s", table_name, e)
            return []
