"""Shared fixtures for db_sync tests.

``RecordingDialect`` is an in-memory dialect double: catalog answers are
canned and DDL statements are recorded instead of executed.  Statements
containing one of the ``fail_on`` markers raise ``DDLError``.
"""

import pytest

from db_sync.dialects.base import BaseDialect
from db_sync.errors import DDLError, IntrospectionUnsupported
from db_sync.model import Entity, EntityField, EntityModel, IndexDefinition, Relation
from db_sync.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    ForeignKeySchema,
    IndexSchema,
)


class RecordingDialect(BaseDialect):
    """Dialect double recording DDL and answering catalog queries from dicts."""

    name = "recording"
    supports_constraints = True
    supports_transactional_ddl = True

    def __init__(
        self,
        tables: list[str] | None = None,
        *,
        columns: dict[str, list[ColumnSchema]] | None = None,
        indices: dict[str, list[IndexSchema]] | None = None,
        foreign_keys: dict[str, list[ForeignKeySchema]] | None = None,
        unsupported: tuple[str, ...] = (),
        castable: set[tuple[str, str]] | None = None,
        fail_on: tuple[str, ...] = (),
    ) -> None:
        super().__init__(None)
        self.tables = tables or []
        self.columns = columns or {}
        self.indices = indices or {}
        self.foreign_keys = foreign_keys or {}
        self.unsupported = unsupported
        self.castable = castable or set()
        self.fail_on = fail_on
        self.statements: list[str] = []
        self.commits = 0
        self.rollbacks = 0

    async def list_tables(self) -> list[str]:
        return list(self.tables)

    async def get_columns(self, table: str) -> list[ColumnSchema]:
        if "columns" in self.unsupported:
            raise IntrospectionUnsupported("columns")
        return list(self.columns.get(table, []))

    async def get_indices(self, table: str) -> list[IndexSchema]:
        if "indices" in self.unsupported:
            raise IntrospectionUnsupported("indices")
        return list(self.indices.get(table, []))

    async def get_foreign_keys(self, table: str) -> list[ForeignKeySchema]:
        if "foreign_keys" in self.unsupported:
            raise IntrospectionUnsupported("foreign_keys")
        return list(self.foreign_keys.get(table, []))

    async def _execute_ddl(self, sql: str, *, table: str, column: str | None = None) -> None:
        if any(marker in sql for marker in self.fail_on):
            raise DDLError(table, column, RuntimeError(f"rejected: {sql}"))
        self.statements.append(sql)

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def cast_column_type(
        self, table: str, column: str, old_type: str, new_type: str
    ) -> bool:
        return (old_type, new_type) in self.castable

    async def change_column_type(
        self,
        table: str,
        name: str,
        old_type: str,
        new_type: str,
        *,
        nullable: bool = True,
    ) -> None:
        sql = f"ALTER TABLE {self.quote(table)} ALTER COLUMN {self.quote(name)} TYPE {new_type}"
        await self._execute_ddl(sql, table=table, column=name)

    async def add_constraint(self, table: str, constraint: ConstraintSchema) -> None:
        sql = f"ALTER TABLE {self.quote(table)} ADD {self.constraint_sql(constraint)}"
        await self._execute_ddl(sql, table=table)

    async def drop_constraint(self, table: str, constraint_name: str) -> None:
        sql = f"ALTER TABLE {self.quote(table)} DROP CONSTRAINT {self.quote(constraint_name)}"
        await self._execute_ddl(sql, table=table)


@pytest.fixture
def recording_dialect():
    """Factory for ``RecordingDialect`` instances."""
    return RecordingDialect


@pytest.fixture
def library_model() -> EntityModel:
    """Two related entities: authors and books."""
    return EntityModel(entities=[
        Entity(name="authors", fields=[
            EntityField(name="id", type="integer", primary_key=True, autoincrement=True),
            EntityField(name="name", type="string", nullable=False),
            EntityField(name="email", type="string", unique=True),
        ]),
        Entity(
            name="books",
            fields=[
                EntityField(name="id", type="integer", primary_key=True, autoincrement=True),
                EntityField(name="title", type="string"),
                EntityField(name="pages", type="integer"),
                EntityField(name="author_id", type="integer"),
            ],
            relations=[Relation(field="author_id", target="authors")],
            indexes=[IndexDefinition(fields=["title"])],
        ),
    ])
