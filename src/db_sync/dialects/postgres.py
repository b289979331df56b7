"""PostgreSQL dialect.

Introspects through information_schema and pg_catalog on the owned
SQLAlchemy connection (asyncpg driver).  DDL is transactional, supports
named constraints and in-place type changes with ``USING CAST``.
"""

from db_sync.dialects.base import WIDENING_CASTS, BaseDialect
from db_sync.schema.models import (
    ColumnDefinition,
    ColumnSchema,
    ConstraintSchema,
    ForeignKeySchema,
    IndexSchema,
)


class PostgresDialect(BaseDialect):
    """PostgreSQL capability provider.

    Works with any PostgreSQL database (RDS, Supabase, local).  Objects are
    looked up in ``schema`` (default ``public``).
    """

    name = "postgres"
    quote_char = '"'
    supports_constraints = True
    supports_transactional_ddl = True

    TYPE_MAP = {
        "string": "VARCHAR(255)",
        "text": "TEXT",
        "integer": "INTEGER",
        "biginteger": "BIGINT",
        "float": "DOUBLE PRECISION",
        "decimal": "NUMERIC",
        "boolean": "BOOLEAN",
        "date": "DATE",
        "datetime": "TIMESTAMP WITH TIME ZONE",
        "json": "JSONB",
        "uuid": "UUID",
        "blob": "BYTEA",
    }

    RAW_TYPE_MAP = {
        "character varying": "string",
        "varchar": "string",
        "character": "string",
        "char": "string",
        "text": "text",
        "integer": "integer",
        "int": "integer",
        "int4": "integer",
        "smallint": "integer",
        "bigint": "biginteger",
        "int8": "biginteger",
        "double precision": "float",
        "real": "float",
        "float8": "float",
        "numeric": "decimal",
        "decimal": "decimal",
        "boolean": "boolean",
        "bool": "boolean",
        "date": "date",
        "timestamp with time zone": "datetime",
        "timestamp without time zone": "datetime",
        "timestamptz": "datetime",
        "timestamp": "datetime",
        "json": "json",
        "jsonb": "json",
        "uuid": "uuid",
        "bytea": "blob",
    }

    SAFE_CASTS = WIDENING_CASTS

    @property
    def schema_name(self) -> str:
        return self._schema or "public"

    def table_ref(self, table: str) -> str:
        return f"{self.quote(self.schema_name)}.{self.quote(table)}"

    def _column_type_sql(self, column: ColumnDefinition, for_create: bool) -> str:
        if column.autoincrement and for_create:
            return "BIGSERIAL" if column.type == "biginteger" else "SERIAL"
        return self.column_type(column.type)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_tables(self) -> list[str]:
        rows = await self._fetch(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = :schema
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            {"schema": self.schema_name},
            fatal=True,
        )
        return [row[0] for row in rows]

    async def get_columns(self, table: str) -> list[ColumnSchema]:
        rows = await self._fetch(
            """
            SELECT
                c.column_name,
                c.data_type,
                c.is_nullable,
                c.column_default,
                EXISTS (
                    SELECT 1
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                        ON tc.constraint_name = kcu.constraint_name
                        AND tc.table_schema = kcu.table_schema
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                      AND tc.table_schema = c.table_schema
                      AND tc.table_name = c.table_name
                      AND kcu.column_name = c.column_name
                ) AS is_primary
            FROM information_schema.columns c
            WHERE c.table_schema = :schema
              AND c.table_name = :table
            ORDER BY c.ordinal_position
            """,
            {"schema": self.schema_name, "table": table},
        )
        return [
            ColumnSchema(
                name=col_name,
                data_type=self.normalize_type(data_type),
                raw_type=data_type,
                is_nullable=(is_nullable == "YES"),
                default=default,
                is_primary=bool(is_primary),
            )
            for col_name, data_type, is_nullable, default, is_primary in rows
        ]

    async def get_indices(self, table: str) -> list[IndexSchema]:
        rows = await self._fetch(
            """
            SELECT
                i.relname AS index_name,
                array_agg(a.attname ORDER BY x.ordinality) AS columns,
                ix.indisunique AS is_unique,
                ix.indisprimary AS is_primary,
                EXISTS (
                    SELECT 1 FROM pg_constraint con
                    WHERE con.conindid = ix.indexrelid
                      AND con.contype IN ('u', 'p', 'x')
                ) AS is_constraint
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
            WHERE n.nspname = :schema
              AND t.relname = :table
              AND ix.indexprs IS NULL
            GROUP BY i.relname, ix.indexrelid, ix.indisunique, ix.indisprimary
            ORDER BY i.relname
            """,
            {"schema": self.schema_name, "table": table},
        )
        return [
            IndexSchema(
                name=name,
                columns=list(columns),
                is_unique=is_unique,
                is_primary=is_primary,
                is_constraint=is_constraint,
            )
            for name, columns, is_unique, is_primary, is_constraint in rows
        ]

    async def get_foreign_keys(self, table: str) -> list[ForeignKeySchema]:
        rows = await self._fetch(
            """
            SELECT
                tc.constraint_name,
                kcu.column_name,
                ccu.table_name AS references_table,
                ccu.column_name AS references_column,
                rc.delete_rule,
                rc.update_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
                AND tc.table_schema = ccu.constraint_schema
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
                AND tc.table_schema = rc.constraint_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = :schema
              AND tc.table_name = :table
            ORDER BY tc.constraint_name, kcu.ordinal_position
            """,
            {"schema": self.schema_name, "table": table},
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
        column = self.quote(name)
        ddl_type = self.column_type(new_type)
        sql = (
            f"ALTER TABLE {self.table_ref(table)} "
            f"ALTER COLUMN {column} TYPE {ddl_type} USING CAST({column} AS {ddl_type})"
        )
        await self._execute_ddl(sql, table=table, column=name)

    async def add_constraint(self, table: str, constraint: ConstraintSchema) -> None:
        sql = f"ALTER TABLE {self.table_ref(table)} ADD {self.constraint_sql(constraint)}"
        column = constraint.columns[0] if len(constraint.columns) == 1 else None
        await self._execute_ddl(sql, table=table, column=column)

    async def drop_constraint(self, table: str, constraint_name: str) -> None:
        sql = f"ALTER TABLE {self.table_ref(table)} DROP CONSTRAINT {self.quote(constraint_name)}"
        await self._execute_ddl(sql, table=table)

    async def drop_index(self, table: str, index_name: str) -> None:
        sql = f"DROP INDEX {self.quote(self.schema_name)}.{self.quote(index_name)}"
        await self._execute_ddl(sql, table=table)
