"""SQLite dialect.

Introspection uses ``sqlite_master`` and the ``table_info`` /
``index_list`` / ``index_info`` / ``foreign_key_list`` pragmas.

SQLite cannot add or drop constraints on an existing table and cannot
change a column type in place.  Foreign keys for new tables are therefore
declared inline in ``CREATE TABLE``; every other constraint operation
raises ``OperationNotSupported``.
"""

from db_sync.dialects.base import BaseDialect
from db_sync.schema.models import (
    ColumnDefinition,
    ColumnSchema,
    ForeignKeySchema,
    IndexSchema,
    TableDefinition,
)


class SQLiteDialect(BaseDialect):
    """SQLite capability provider (aiosqlite driver)."""

    name = "sqlite"
    quote_char = '"'
    supports_constraints = False
    # pysqlite runs DDL outside an explicit transaction
    supports_transactional_ddl = False

    # Every INTEGER is 64-bit, so BIGINT reads back as plain integer
    TYPE_MAP = {
        "string": "VARCHAR(255)",
        "text": "TEXT",
        "integer": "INTEGER",
        "biginteger": "BIGINT",
        "float": "REAL",
        "decimal": "NUMERIC",
        "boolean": "BOOLEAN",
        "date": "DATE",
        "datetime": "DATETIME",
        "json": "JSON",
        "uuid": "UUID",
        "blob": "BLOB",
    }

    RAW_TYPE_MAP = {
        "varchar": "string",
        "character": "string",
        "nvarchar": "string",
        "char": "string",
        "text": "text",
        "clob": "text",
        "integer": "integer",
        "int": "integer",
        "smallint": "integer",
        "bigint": "integer",
        "real": "float",
        "double": "float",
        "double precision": "float",
        "float": "float",
        "numeric": "decimal",
        "decimal": "decimal",
        "boolean": "boolean",
        "date": "date",
        "datetime": "datetime",
        "timestamp": "datetime",
        "json": "json",
        "uuid": "uuid",
        "blob": "blob",
    }

    BOOLEAN_LITERALS = ("0", "1")

    def _column_type_sql(self, column: ColumnDefinition, for_create: bool) -> str:
        if for_create and column.autoincrement and column.primary_key:
            return "INTEGER PRIMARY KEY AUTOINCREMENT"
        return self.column_type(column.type)

    def _inline_primary_key(self, table: TableDefinition) -> bool:
        return any(c.autoincrement and c.primary_key for c in table.columns)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        rows = await self._fetch(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' "
            "ORDER BY name",
            fatal=True,
        )
        return [row[0] for row in rows]

    async def get_columns(self, table: str) -> list[ColumnSchema]:
        # cid, name, type, notnull, dflt_value, pk
        rows = await self._fetch(f"PRAGMA table_info({self.quote(table)})")
        return [
            ColumnSchema(
                name=name,
                data_type=self.normalize_type(declared or ""),
                raw_type=declared or "",
                is_nullable=not notnull and not pk,
                default=default,
                is_primary=bool(pk),
            )
            for _cid, name, declared, notnull, default, pk in rows
        ]

    async def get_indices(self, table: str) -> list[IndexSchema]:
        # seq, name, unique, origin, partial
        index_rows = await self._fetch(f"PRAGMA index_list({self.quote(table)})")
        indexes = []
        for row in index_rows:
            index_name, unique, origin = row[1], row[2], row[3]
            # seqno, cid, name
            info_rows = await self._fetch(f"PRAGMA index_info({self.quote(index_name)})")
            columns = [info[2] for info in sorted(info_rows, key=lambda r: r[0])]
            # Expression key parts have no column name
            if not columns or None in columns:
                continue
            indexes.append(
                IndexSchema(
                    name=index_name,
                    columns=columns,
                    is_unique=bool(unique),
                    is_primary=(origin == "pk"),
                    is_constraint=(origin == "u"),
                )
            )
        return indexes

    async def get_foreign_keys(self, table: str) -> list[ForeignKeySchema]:
        # id, seq, table, from, to, on_update, on_delete, match
        rows = await self._fetch(f"PRAGMA foreign_key_list({self.quote(table)})")
        return [
            ForeignKeySchema(
                name=f"fk_{table}_{row[3]}",
                column=row[3],
                references_table=row[2],
                references_column=row[4],
                on_delete=row[6],
                on_update=row[5],
            )
            for row in rows
        ]
