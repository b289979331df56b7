"""Tests for the action planner."""

import logging

import pytest

from db_sync.model import Entity, EntityField, EntityModel, Relation
from db_sync.schema.comparator import Diff, DiffKind, compute_diff
from db_sync.schema.models import (
    ColumnSchema,
    ForeignKeySchema,
    IndexSchema,
    LiveSchema,
    TableSchema,
)
from db_sync.schema.planner import (
    PHASES,
    Action,
    ActionKind,
    SyncPlan,
    _topological_sort,
    plan_actions,
)


def _col(name: str, data_type: str = "integer") -> ColumnSchema:
    return ColumnSchema(name=name, data_type=data_type)


def _describe(plan: SyncPlan) -> list[str]:
    return [a.describe() for a in plan.actions]


def _live_books(**column_types: str) -> TableSchema:
    """Live books table in sync with the library model, except ``column_types``."""
    types = {"id": "integer", "title": "string", "pages": "integer", "author_id": "integer"}
    types.update(column_types)
    ix_title = IndexSchema(name="ix_books_title", columns=["title"])
    return TableSchema(
        name="books",
        columns={name: _col(name, t) for name, t in types.items()},
        indexes={"title": [ix_title]},
        foreign_keys={
            "author_id": ForeignKeySchema(
                name="fk_books_author_id", column="author_id", references_table="authors"
            ),
        },
    )


def _live_authors() -> TableSchema:
    return TableSchema(
        name="authors",
        columns={"id": _col("id"), "name": _col("name", "string"), "email": _col("email", "string")},
        indexes={"email": [IndexSchema(name="uq_authors_email", columns=["email"], is_unique=True)]},
    )


# ============================================================================
# Plan data classes
# ============================================================================


class TestAction:
    """Test Action defaults and descriptions."""

    def test_phase_defaults_to_kind(self) -> None:
        for kind, phase in PHASES.items():
            assert Action(kind=kind, table="t").phase == phase

    def test_explicit_phase_kept(self) -> None:
        action = Action(kind=ActionKind.REMOVE_COLUMN, table="t", column="c", phase=3)
        assert action.phase == 3

    def test_describe(self) -> None:
        assert Action(kind=ActionKind.REMOVE_COLUMN, table="users", column="legacy").describe() == (
            "REMOVE COLUMN users.legacy"
        )
        assert Action(
            kind=ActionKind.RENAME_COLUMN, table="users", column="mail", new_name="email"
        ).describe() == "RENAME COLUMN users.mail -> email"
        assert Action(kind=ActionKind.DROP_INDEX, table="users", index_name="ix").describe() == (
            "DROP INDEX users.ix"
        )

    def test_sync_plan_properties(self) -> None:
        plan = SyncPlan(actions=[
            Action(kind=ActionKind.ADD_COLUMN, table="t", column="a"),
            Action(kind=ActionKind.DROP_TABLE, table="old", destructive=True),
        ])
        assert plan.has_actions is True
        assert plan.destructive_count == 1
        assert SyncPlan().has_actions is False


class TestTopologicalSort:
    """Test FK-ordered table sorting."""

    def test_parents_first(self) -> None:
        deps = {"books": {"authors"}, "reviews": {"books", "users"}}
        order = _topological_sort(deps, ["reviews", "books", "authors", "users"])
        assert order.index("authors") < order.index("books") < order.index("reviews")
        assert order.index("users") < order.index("reviews")

    def test_cycles_and_self_references_terminate(self) -> None:
        deps = {"a": {"b"}, "b": {"a"}, "c": {"c"}}
        assert sorted(_topological_sort(deps, ["a", "b", "c"])) == ["a", "b", "c"]

    def test_unrelated_dependencies_ignored(self) -> None:
        assert _topological_sort({"books": {"authors"}}, ["books"]) == ["books"]


# ============================================================================
# Planning
# ============================================================================


class TestCreatePlan:
    """Test plans for new tables."""

    @pytest.mark.asyncio
    async def test_empty_database(self, library_model, recording_dialect) -> None:
        diffs = compute_diff(library_model, LiveSchema())
        plan = await plan_actions(diffs, recording_dialect())

        assert _describe(plan) == [
            "CREATE TABLE authors",
            "CREATE TABLE books",
            "ADD CONSTRAINT books.fk_books_author_id (FOREIGN KEY)",
            "ADD INDEX authors.uq_authors_email (email)",
            "ADD INDEX books.ix_books_title (title)",
        ]
        books = plan.actions[1].table_def
        assert [c.name for c in books.columns] == ["id", "title", "pages", "author_id"]
        assert books.foreign_keys == []
        assert plan.skipped == []

    @pytest.mark.asyncio
    async def test_inline_foreign_keys_without_constraint_support(
        self, library_model, recording_dialect
    ) -> None:
        dialect = recording_dialect()
        dialect.supports_constraints = False

        plan = await plan_actions(compute_diff(library_model, LiveSchema()), dialect)

        kinds = [a.kind for a in plan.actions]
        assert ActionKind.ADD_CONSTRAINT not in kinds
        (fk,) = plan.actions[1].table_def.foreign_keys
        assert fk.name == "fk_books_author_id"
        assert fk.references_table == "authors"
        assert fk.on_delete == "SET NULL"

    @pytest.mark.asyncio
    async def test_parents_created_first(self, recording_dialect) -> None:
        """Declaration order does not matter for creates."""
        model = EntityModel(entities=[
            Entity(
                name="books",
                fields=[EntityField(name="id", type="integer"), EntityField(name="author_id", type="integer")],
                relations=[Relation(field="author_id", target="authors")],
            ),
            Entity(name="authors", fields=[EntityField(name="id", type="integer")]),
        ])

        plan = await plan_actions(compute_diff(model, LiveSchema()), recording_dialect())

        assert _describe(plan)[:2] == ["CREATE TABLE authors", "CREATE TABLE books"]


class TestDestructivePlan:
    """Test confirmation gating and drop ordering."""

    @pytest.mark.asyncio
    async def test_withheld_without_confirm(self, library_model, recording_dialect, caplog) -> None:
        legacy = TableSchema(name="legacy", columns={"id": _col("id")})
        books = _live_books()
        books = books.model_copy(update={"columns": {**books.columns, "isbn": _col("isbn", "string")}})
        diffs = compute_diff(
            library_model,
            LiveSchema(tables={"authors": _live_authors(), "books": books, "legacy": legacy}),
        )

        with caplog.at_level(logging.WARNING, logger="db_sync"):
            plan = await plan_actions(diffs, recording_dialect())

        assert plan.actions == []
        assert [d.kind for d in plan.skipped] == [DiffKind.ENTITY_REMOVED, DiffKind.FIELD_REMOVED]
        assert plan.warnings == [
            "Skipped - table legacy: dropping a table requires confirm",
            "Skipped - column books.isbn (string): removing a column requires confirm",
        ]
        assert "dropping a table requires confirm" in caplog.text

    @pytest.mark.asyncio
    async def test_children_dropped_first(self, recording_dialect) -> None:
        parent = TableSchema(name="parent", columns={"id": _col("id")})
        child = TableSchema(
            name="child",
            columns={"id": _col("id"), "parent_id": _col("parent_id")},
            foreign_keys={
                "parent_id": ForeignKeySchema(name="fk_child_parent", column="parent_id", references_table="parent"),
            },
        )
        diffs = compute_diff(EntityModel(), LiveSchema(tables={"parent": parent, "child": child}))

        plan = await plan_actions(diffs, recording_dialect(), confirm=True)

        assert _describe(plan) == ["DROP TABLE child", "DROP TABLE parent"]
        assert plan.destructive_count == 2


class TestPhaseOrdering:
    """Test the global phase order across diff kinds."""

    @pytest.mark.asyncio
    async def test_mixed_diffs(self, recording_dialect) -> None:
        model = EntityModel(entities=[
            Entity(
                name="books",
                fields=[
                    EntityField(name="id", type="integer", primary_key=True),
                    EntityField(name="headline", type="string"),
                    EntityField(name="isbn", type="text"),
                    EntityField(name="owner_id", type="integer"),
                ],
                relations=[Relation(field="owner_id", target="users")],
            ),
        ])
        live = TableSchema(
            name="books",
            columns={
                "id": _col("id"),
                "title": _col("title", "string"),
                "owner_id": _col("owner_id"),
                "legacy": _col("legacy", "json"),
            },
            indexes={"legacy": [IndexSchema(name="ix_books_legacy", columns=["legacy"])]},
            foreign_keys={
                "owner_id": ForeignKeySchema(name="fk_owner", column="owner_id", references_table="people"),
            },
        )
        diffs = compute_diff(model, LiveSchema(tables={"books": live}))

        plan = await plan_actions(diffs, recording_dialect(), confirm=True)

        assert _describe(plan) == [
            "DROP CONSTRAINT books.fk_owner",
            "DROP INDEX books.ix_books_legacy",
            "ADD COLUMN books.isbn text",
            "RENAME COLUMN books.title -> headline",
            "ADD CONSTRAINT books.fk_books_owner_id (FOREIGN KEY)",
            "REMOVE COLUMN books.legacy",
        ]
        phases = [a.phase for a in plan.actions]
        assert phases == sorted(phases)

    @pytest.mark.asyncio
    async def test_constraint_backed_index_dropped_as_constraint(self, recording_dialect) -> None:
        entity = Entity(name="tags", fields=[EntityField(name="code", type="string")])
        live = TableSchema(
            name="tags",
            columns={"code": _col("code", "string")},
            indexes={"code": [
                IndexSchema(name="tags_code_key", columns=["code"], is_unique=True, is_constraint=True),
            ]},
        )
        diffs = compute_diff(EntityModel(entities=[entity]), LiveSchema(tables={"tags": live}))

        plan = await plan_actions(diffs, recording_dialect())

        assert _describe(plan) == ["DROP CONSTRAINT tags.tags_code_key"]


class TestTypeChangePlan:
    """Test in-place casts and the drop-and-recreate fallback."""

    @pytest.mark.asyncio
    async def test_castable_change_in_place(self, library_model, recording_dialect) -> None:
        diffs = compute_diff(
            library_model, LiveSchema(tables={"authors": _live_authors(), "books": _live_books(pages="string")})
        )
        dialect = recording_dialect(castable={("string", "integer")})

        plan = await plan_actions(diffs, dialect)

        assert _describe(plan) == ["CHANGE TYPE books.pages string -> integer"]
        assert plan.actions[0].nullable is True

    @pytest.mark.asyncio
    async def test_fallback_needs_confirm(self, library_model, recording_dialect) -> None:
        diffs = compute_diff(
            library_model, LiveSchema(tables={"authors": _live_authors(), "books": _live_books(pages="string")})
        )

        plan = await plan_actions(diffs, recording_dialect())

        assert plan.actions == []
        assert plan.warnings == [
            "Skipped ~ column books.pages: string -> integer: "
            "string -> integer needs drop and re-create, which requires confirm",
        ]

    @pytest.mark.asyncio
    async def test_fallback_recreates_dependents(self, library_model, recording_dialect) -> None:
        """Remove/add stay adjacent; the index and foreign key are re-created."""
        books = _live_books(title="text", author_id="biginteger")
        diffs = compute_diff(library_model, LiveSchema(tables={"authors": _live_authors(), "books": books}))

        plan = await plan_actions(diffs, recording_dialect(), confirm=True)

        assert _describe(plan) == [
            "DROP INDEX books.ix_books_title",
            "DROP CONSTRAINT books.fk_books_author_id",
            "REMOVE COLUMN books.title",
            "ADD COLUMN books.title string",
            "REMOVE COLUMN books.author_id",
            "ADD COLUMN books.author_id integer",
            "ADD INDEX books.ix_books_title (title)",
            "ADD CONSTRAINT books.fk_books_author_id (FOREIGN KEY)",
        ]
        remove = plan.actions[2]
        assert remove.destructive is True
        assert remove.phase == plan.actions[3].phase == 3
        assert plan.actions[-1].constraint.references_table == "authors"

    @pytest.mark.asyncio
    async def test_fallback_keeps_live_constraint_name(self, recording_dialect) -> None:
        entity = Entity(
            name="books",
            fields=[EntityField(name="author_id", type="biginteger")],
            relations=[Relation(field="author_id", target="authors")],
        )
        live = TableSchema(
            name="books",
            columns={"author_id": _col("author_id")},
            foreign_keys={
                "author_id": ForeignKeySchema(
                    name="books_author_id_fkey", column="author_id", references_table="authors"
                ),
            },
        )
        diff = compute_diff(EntityModel(entities=[entity]), LiveSchema(tables={"books": live}))[0]
        assert isinstance(diff, Diff)

        plan = await plan_actions([diff], recording_dialect(), confirm=True)

        assert plan.actions[0].constraint_name == "books_author_id_fkey"
        assert plan.actions[-1].constraint.name == "books_author_id_fkey"

    @pytest.mark.asyncio
    async def test_primary_key_never_recreated(self, recording_dialect, caplog) -> None:
        """An uncastable key column is skipped even with confirm."""
        entity = Entity(name="events", fields=[
            EntityField(name="id", type="biginteger", primary_key=True, autoincrement=True),
        ])
        live = TableSchema(
            name="events",
            columns={"id": ColumnSchema(name="id", data_type="integer", is_primary=True)},
        )
        diffs = compute_diff(EntityModel(entities=[entity]), LiveSchema(tables={"events": live}))

        with caplog.at_level(logging.WARNING, logger="db_sync"):
            plan = await plan_actions(diffs, recording_dialect(), confirm=True)

        assert plan.actions == []
        assert plan.skipped == diffs
        assert plan.warnings == [
            "Skipped ~ column events.id: integer -> biginteger: integer -> biginteger "
            "cannot be cast and a primary-key column is never re-created",
        ]

    @pytest.mark.asyncio
    async def test_primary_key_cast_in_place(self, recording_dialect) -> None:
        entity = Entity(name="events", fields=[
            EntityField(name="id", type="biginteger", primary_key=True),
        ])
        live = TableSchema(
            name="events",
            columns={"id": ColumnSchema(name="id", data_type="integer", is_primary=True)},
        )
        diffs = compute_diff(EntityModel(entities=[entity]), LiveSchema(tables={"events": live}))

        plan = await plan_actions(diffs, recording_dialect(castable={("integer", "biginteger")}))

        assert _describe(plan) == ["CHANGE TYPE events.id integer -> biginteger"]


# ============================================================================
# Ordering invariant
# ============================================================================


def _library_empty(library_model: EntityModel) -> tuple[EntityModel, LiveSchema]:
    return library_model, LiveSchema()


def _library_retyped(library_model: EntityModel) -> tuple[EntityModel, LiveSchema]:
    books = _live_books(title="text", author_id="biginteger")
    return library_model, LiveSchema(tables={"authors": _live_authors(), "books": books})


def _library_extended(library_model: EntityModel) -> tuple[EntityModel, LiveSchema]:
    """New columns carrying a unique index and a relation."""
    model = library_model.model_copy(deep=True)
    books = model.get("books")
    books.fields.append(EntityField(name="isbn", type="string", unique=True))
    books.fields.append(EntityField(name="editor_id", type="integer"))
    books.relations.append(Relation(field="editor_id", target="authors"))
    return model, LiveSchema(tables={"authors": _live_authors(), "books": _live_books()})


def _library_shrunk(library_model: EntityModel) -> tuple[EntityModel, LiveSchema]:
    """Undeclared columns still carrying an index and a foreign key."""
    books = _live_books()
    books = books.model_copy(update={
        "columns": {**books.columns, "legacy": _col("legacy"), "owner_id": _col("owner_id")},
        "indexes": {**books.indexes, "legacy": [IndexSchema(name="ix_books_legacy", columns=["legacy"])]},
        "foreign_keys": {
            **books.foreign_keys,
            "owner_id": ForeignKeySchema(name="fk_books_owner", column="owner_id", references_table="authors"),
        },
    })
    return library_model, LiveSchema(tables={"authors": _live_authors(), "books": books})


class TestOrderingInvariant:
    """Additions follow the column they need; drops precede its removal."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "scenario", [_library_empty, _library_retyped, _library_extended, _library_shrunk]
    )
    async def test_dependents_ordered_around_columns(
        self, scenario, library_model, recording_dialect
    ) -> None:
        model, schema = scenario(library_model)
        plan = await plan_actions(compute_diff(model, schema), recording_dialect(), confirm=True)
        actions = plan.actions

        def added_at(table: str, column: str) -> list[int]:
            return [
                i for i, a in enumerate(actions)
                if a.table == table
                and (
                    (a.kind == ActionKind.ADD_COLUMN and column in a.columns)
                    or a.kind == ActionKind.CREATE_TABLE
                )
            ]

        def removed_at(table: str, column: str) -> list[int]:
            return [
                i for i, a in enumerate(actions)
                if a.kind == ActionKind.REMOVE_COLUMN and a.table == table and column in a.columns
            ]

        checked = 0
        for i, action in enumerate(actions):
            for column in action.columns:
                if action.kind in (ActionKind.ADD_CONSTRAINT, ActionKind.ADD_INDEX):
                    added = added_at(action.table, column)
                    assert all(j < i for j in added), action.describe()
                    checked += len(added)
                elif action.kind in (ActionKind.DROP_CONSTRAINT, ActionKind.DROP_INDEX):
                    removed = removed_at(action.table, column)
                    assert all(i < j for j in removed), action.describe()
                    checked += len(removed)

        assert checked > 0
