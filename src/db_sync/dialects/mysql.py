"""MySQL / MariaDB dialect.

Catalog queries run against information_schema for the connection's
current database (``DATABASE()``).  MySQL commits DDL implicitly, so
transactional apply is not available.
"""

from sqlalchemy.exc import SQLAlchemyError

from db_sync.dialects.base import WIDENING_CASTS, BaseDialect
from db_sync.errors import DDLError
from db_sync.schema.models import (
    ColumnDefinition,
    ColumnSchema,
    ConstraintSchema,
    ForeignKeySchema,
    IndexSchema,
)


class MySQLDialect(BaseDialect):
    """MySQL capability provider (aiomysql driver)."""

    name = "mysql"
    quote_char = "`"
    supports_constraints = True
    supports_transactional_ddl = False

    TYPE_MAP = {
        "string": "VARCHAR(255)",
        "text": "TEXT",
        "integer": "INT",
        "biginteger": "BIGINT",
        "float": "DOUBLE",
        "decimal": "DECIMAL(10,2)",
        "boolean": "TINYINT(1)",
        "date": "DATE",
        "datetime": "DATETIME",
        "json": "JSON",
        "uuid": "CHAR(36)",
        "blob": "BLOB",
    }

    RAW_TYPE_MAP = {
        "varchar": "string",
        "char": "string",
        "text": "text",
        "tinytext": "text",
        "mediumtext": "text",
        "longtext": "text",
        "int": "integer",
        "integer": "integer",
        "mediumint": "integer",
        "smallint": "integer",
        "tinyint": "integer",
        "bigint": "biginteger",
        "double": "float",
        "float": "float",
        "real": "float",
        "decimal": "decimal",
        "numeric": "decimal",
        "date": "date",
        "datetime": "datetime",
        "timestamp": "datetime",
        "json": "json",
        "blob": "blob",
        "tinyblob": "blob",
        "mediumblob": "blob",
        "longblob": "blob",
        "binary": "blob",
        "varbinary": "blob",
    }

    SAFE_CASTS = WIDENING_CASTS
    BOOLEAN_LITERALS = ("0", "1")

    def normalize_type(self, raw_type: str) -> str:
        """Semantic type from ``COLUMN_TYPE``.

        ``tinyint(1)`` is how MySQL stores booleans and ``char(36)`` is the
        conventional UUID column, so both keep their length here.
        """
        raw = raw_type.strip().lower()
        if raw.startswith("tinyint(1)"):
            return "boolean"
        if raw == "char(36)":
            return "uuid"
        return super().normalize_type(raw)

    def _column_type_sql(self, column: ColumnDefinition, for_create: bool) -> str:
        ddl_type = self.column_type(column.type)
        if column.autoincrement and for_create:
            return f"{ddl_type} AUTO_INCREMENT"
        return ddl_type

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        rows = await self._fetch(
            """
            SELECT TABLE_NAME
            FROM information_schema.TABLES
            WHERE TABLE_SCHEMA = DATABASE()
              AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
            """,
            fatal=True,
        )
        return [row[0] for row in rows]

    async def get_columns(self, table: str) -> list[ColumnSchema]:
        rows = await self._fetch(
            """
            SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE, COLUMN_DEFAULT, COLUMN_KEY
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = DATABASE()
              AND TABLE_NAME = :table
            ORDER BY ORDINAL_POSITION
            """,
            {"table": table},
        )
        return [
            ColumnSchema(
                name=col_name,
                data_type=self.normalize_type(column_type),
                raw_type=column_type,
                is_nullable=(is_nullable == "YES"),
                default=None if default is None else str(default),
                is_primary=(column_key == "PRI"),
            )
            for col_name, column_type, is_nullable, default, column_key in rows
        ]

    async def get_indices(self, table: str) -> list[IndexSchema]:
        rows = await self._fetch(
            """
            SELECT
                s.INDEX_NAME,
                s.COLUMN_NAME,
                s.NON_UNIQUE,
                tc.CONSTRAINT_TYPE
            FROM information_schema.STATISTICS s
            LEFT JOIN information_schema.TABLE_CONSTRAINTS tc
                ON tc.TABLE_SCHEMA = s.TABLE_SCHEMA
                AND tc.TABLE_NAME = s.TABLE_NAME
                AND tc.CONSTRAINT_NAME = s.INDEX_NAME
                AND tc.CONSTRAINT_TYPE IN ('PRIMARY KEY', 'UNIQUE')
            WHERE s.TABLE_SCHEMA = DATABASE()
              AND s.TABLE_NAME = :table
            ORDER BY s.INDEX_NAME, s.SEQ_IN_INDEX
            """,
            {"table": table},
        )
        grouped: dict[str, dict] = {}
        expressions: set[str] = set()
        for index_name, column, non_unique, constraint_type in rows:
            # Functional key parts have no column name
            if column is None:
                expressions.add(index_name)
                continue
            entry = grouped.setdefault(
                index_name,
                {
                    "columns": [],
                    "is_unique": not int(non_unique),
                    "is_constraint": constraint_type is not None,
                },
            )
            entry["columns"].append(column)
        return [
            IndexSchema(
                name=name,
                columns=entry["columns"],
                is_unique=entry["is_unique"],
                is_primary=(name == "PRIMARY"),
                is_constraint=entry["is_constraint"],
            )
            for name, entry in grouped.items()
            if name not in expressions
        ]

    async def get_foreign_keys(self, table: str) -> list[ForeignKeySchema]:
        rows = await self._fetch(
            """
            SELECT
                kcu.CONSTRAINT_NAME,
                kcu.COLUMN_NAME,
                kcu.REFERENCED_TABLE_NAME,
                kcu.REFERENCED_COLUMN_NAME,
                rc.DELETE_RULE,
                rc.UPDATE_RULE
            FROM information_schema.KEY_COLUMN_USAGE kcu
            JOIN information_schema.REFERENTIAL_CONSTRAINTS rc
                ON rc.CONSTRAINT_SCHEMA = kcu.CONSTRAINT_SCHEMA
                AND rc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
            WHERE kcu.TABLE_SCHEMA = DATABASE()
              AND kcu.TABLE_NAME = :table
              AND kcu.REFERENCED_TABLE_NAME IS NOT NULL
            ORDER BY kcu.CONSTRAINT_NAME, kcu.ORDINAL_POSITION
            """,
            {"table": table},
        )
        return [
            ForeignKeySchema(
                name=name,
                column=column,
                references_table=ref_table,
                references_column=ref_column,
                on_delete=delete_rule,
                on_update=update_rule,
            )
            for name, column, ref_table, ref_column, delete_rule, update_rule in rows
        ]

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    async def change_column_type(
        self,
        table: str,
        name: str,
        old_type: str,
        new_type: str,
        *,
        nullable: bool = True,
    ) -> None:
        null_sql = "NULL" if nullable else "NOT NULL"
        sql = (
            f"ALTER TABLE {self.table_ref(table)} "
            f"MODIFY COLUMN {self.quote(name)} {self.column_type(new_type)} {null_sql}"
        )
        await self._execute_ddl(sql, table=table, column=name)

    async def add_constraint(self, table: str, constraint: ConstraintSchema) -> None:
        sql = f"ALTER TABLE {self.table_ref(table)} ADD {self.constraint_sql(constraint)}"
        column = constraint.columns[0] if len(constraint.columns) == 1 else None
        await self._execute_ddl(sql, table=table, column=column)

    async def drop_constraint(self, table: str, constraint_name: str) -> None:
        """Drop a named constraint.

        MySQL has no uniform ``DROP CONSTRAINT`` before 8.0.19, so the
        constraint type is looked up first.

        Raises:
            DDLError: If the lookup or the statement is rejected.
        """
        try:
            rows = await self._fetch(
                """
                SELECT CONSTRAINT_TYPE
                FROM information_schema.TABLE_CONSTRAINTS
                WHERE TABLE_SCHEMA = DATABASE()
                  AND TABLE_NAME = :table
                  AND CONSTRAINT_NAME = :name
                """,
                {"table": table, "name": constraint_name},
            )
        except SQLAlchemyError as e:
            raise DDLError(table, None, e) from e
        constraint_type = rows[0][0] if rows else None
        quoted = self.quote(constraint_name)
        if constraint_type == "FOREIGN KEY":
            clause = f"DROP FOREIGN KEY {quoted}"
        elif constraint_type == "PRIMARY KEY":
            clause = "DROP PRIMARY KEY"
        elif constraint_type == "UNIQUE" or constraint_type is None:
            clause = f"DROP INDEX {quoted}"
        else:
            clause = f"DROP CONSTRAINT {quoted}"
        await self._execute_ddl(f"ALTER TABLE {self.table_ref(table)} {clause}", table=table)

    async def drop_index(self, table: str, index_name: str) -> None:
        sql = f"DROP INDEX {self.quote(index_name)} ON {self.table_ref(table)}"
        await self._execute_ddl(sql, table=table)
