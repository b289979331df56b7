"""Action planner -- turn diffs into an ordered list of DDL actions.

Each ``Diff`` maps to one or more atomic ``Action`` objects.  Actions are
ordered by a stable sort on ``(phase, rank)``:

1. DropConstraint / DropIndex
2. CreateTable / AddColumn
3. RenameColumn / ChangeColumnType (and the drop-and-recreate fallback)
4. AddConstraint / AddIndex
5. RemoveColumn / DropTable

``rank`` only matters for tables: creates run parents first and drops run
children first (topological order over foreign keys).

Destructive work (dropping a table or column, re-creating a column whose
type cannot be cast) is only planned with ``confirm=True``.  Without it the
diff is recorded in ``SyncPlan.skipped`` with a warning.
A primary-key column whose type cannot be cast is never re-created; that
diff is always skipped with a warning.

Usage:
    from db_sync.schema.planner import plan_actions

    diffs = compute_diff(model, schema)
    plan = await plan_actions(diffs, dialect, confirm=False)
    for action in plan.actions:
        print(action.describe())
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, model_validator

from db_sync.dialects.base import BaseDialect
from db_sync.model import Entity, EntityField, IndexDefinition, Relation
from db_sync.schema.comparator import Diff, DiffKind
from db_sync.schema.models import (
    ColumnDefinition,
    ConstraintSchema,
    ForeignKeySchema,
    IndexSchema,
    TableDefinition,
)

logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    CREATE_TABLE = "CreateTable"
    DROP_TABLE = "DropTable"
    ADD_COLUMN = "AddColumn"
    REMOVE_COLUMN = "RemoveColumn"
    RENAME_COLUMN = "RenameColumn"
    CHANGE_COLUMN_TYPE = "ChangeColumnType"
    ADD_CONSTRAINT = "AddConstraint"
    DROP_CONSTRAINT = "DropConstraint"
    ADD_INDEX = "AddIndex"
    DROP_INDEX = "DropIndex"


PHASES: dict[ActionKind, int] = {
    ActionKind.DROP_CONSTRAINT: 1,
    ActionKind.DROP_INDEX: 1,
    ActionKind.CREATE_TABLE: 2,
    ActionKind.ADD_COLUMN: 2,
    ActionKind.RENAME_COLUMN: 3,
    ActionKind.CHANGE_COLUMN_TYPE: 3,
    ActionKind.ADD_CONSTRAINT: 4,
    ActionKind.ADD_INDEX: 4,
    ActionKind.REMOVE_COLUMN: 5,
    ActionKind.DROP_TABLE: 5,
}


# ------------------------------------------------------------------
# Plan data classes
# ------------------------------------------------------------------


class Action(BaseModel):
    """One atomic schema mutation.

    Only the parameters the dialect primitive for ``kind`` needs are set.
    ``phase`` defaults to the kind's phase in ``PHASES``.

    Example:
        action = Action(kind=ActionKind.REMOVE_COLUMN, table="users", column="legacy")
        action.describe()
        # 'REMOVE COLUMN users.legacy'
    """

    kind: ActionKind
    table: str
    column: str | None = None
    new_name: str | None = None
    definition: ColumnDefinition | None = None
    old_type: str | None = None
    new_type: str | None = None
    nullable: bool = True
    constraint: ConstraintSchema | None = None
    constraint_name: str | None = None
    index: IndexSchema | None = None
    index_name: str | None = None
    table_def: TableDefinition | None = None
    phase: int = 0
    destructive: bool = False

    @model_validator(mode="after")
    def _default_phase(self) -> "Action":
        if not self.phase:
            self.phase = PHASES[self.kind]
        return self

    @property
    def columns(self) -> list[str]:
        """Columns this action touches."""
        if self.constraint is not None:
            return list(self.constraint.columns)
        if self.index is not None:
            return list(self.index.columns)
        if self.definition is not None:
            return [self.definition.name]
        return [self.column] if self.column else []

    def describe(self) -> str:
        """One-line human-readable description."""
        kind = self.kind
        if kind == ActionKind.CREATE_TABLE:
            return f"CREATE TABLE {self.table}"
        if kind == ActionKind.DROP_TABLE:
            return f"DROP TABLE {self.table}"
        if kind == ActionKind.ADD_COLUMN:
            return f"ADD COLUMN {self.table}.{self.definition.name} {self.definition.type}"
        if kind == ActionKind.REMOVE_COLUMN:
            return f"REMOVE COLUMN {self.table}.{self.column}"
        if kind == ActionKind.RENAME_COLUMN:
            return f"RENAME COLUMN {self.table}.{self.column} -> {self.new_name}"
        if kind == ActionKind.CHANGE_COLUMN_TYPE:
            return f"CHANGE TYPE {self.table}.{self.column} {self.old_type} -> {self.new_type}"
        if kind == ActionKind.ADD_CONSTRAINT:
            return (
                f"ADD CONSTRAINT {self.table}.{self.constraint.name} "
                f"({self.constraint.constraint_type})"
            )
        if kind == ActionKind.DROP_CONSTRAINT:
            return f"DROP CONSTRAINT {self.table}.{self.constraint_name}"
        if kind == ActionKind.ADD_INDEX:
            return f"ADD INDEX {self.table}.{self.index.name} ({', '.join(self.index.columns)})"
        return f"DROP INDEX {self.table}.{self.index_name}"


@dataclass
class SyncPlan:
    """Ordered actions resolving a diff.

    Attributes:
        actions: Actions in execution order.
        skipped: Diffs withheld because they need ``confirm=True``.
        warnings: One message per withheld diff.
    """

    actions: list[Action] = field(default_factory=list)
    skipped: list[Diff] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_actions(self) -> bool:
        """True if there is anything to apply."""
        return bool(self.actions)

    @property
    def destructive_count(self) -> int:
        """Number of actions that can lose row data."""
        return sum(1 for a in self.actions if a.destructive)


# ------------------------------------------------------------------
# Descriptor builders
# ------------------------------------------------------------------


def column_definition(f: EntityField) -> ColumnDefinition:
    """Dialect-neutral column definition for a declared field."""
    return ColumnDefinition(
        name=f.name,
        type=f.type,
        nullable=f.nullable,
        default=f.default,
        primary_key=f.primary_key,
        autoincrement=f.autoincrement,
    )


def foreign_key_constraint(table: str, relation: Relation) -> ConstraintSchema:
    """Foreign-key constraint ``fk_<table>_<field>`` for a relation."""
    return ConstraintSchema(
        name=f"fk_{table}_{relation.field}",
        constraint_type="FOREIGN KEY",
        columns=[relation.field],
        references_table=relation.target,
        references_columns=[relation.target_field],
        on_delete=relation.on_delete,
        on_update=relation.on_update,
    )


def index_schema(table: str, index: IndexDefinition) -> IndexSchema:
    """Index to create for a declared index."""
    return IndexSchema(
        name=index.index_name(table),
        columns=list(index.fields),
        is_unique=index.unique,
    )


def table_definition(entity: Entity, dialect: BaseDialect) -> TableDefinition:
    """Table to create for an entity.

    Dialects without constraint support get the entity's foreign keys
    inline, since they cannot be added later.
    """
    foreign_keys = []
    if not dialect.supports_constraints:
        foreign_keys = [foreign_key_constraint(entity.name, r) for r in entity.relations]
    return TableDefinition(
        name=entity.name,
        columns=[column_definition(f) for f in entity.fields],
        foreign_keys=foreign_keys,
    )


def _topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Cycles and self-references are broken by keeping input order.
    """
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


# ------------------------------------------------------------------
# Planning
# ------------------------------------------------------------------


async def plan_actions(
    diffs: list[Diff],
    dialect: BaseDialect,
    *,
    confirm: bool = False,
) -> SyncPlan:
    """Translate diffs into an ordered action plan.

    Args:
        diffs: Output of ``compute_diff()``.
        dialect: Dialect the plan will run against; consulted for
            ``cast_column_type`` and constraint support.
        confirm: Allow destructive actions.

    Returns:
        ``SyncPlan`` with actions in execution order.
    """
    plan = SyncPlan()
    ranked: list[tuple[int, int, Action]] = []

    created = {d.entity: d.entity_def for d in diffs if d.kind == DiffKind.ENTITY_ADDED}
    create_order = _topological_sort(
        {name: {r.target for r in e.relations} for name, e in created.items()},
        list(created),
    )
    create_rank = {name: i for i, name in enumerate(create_order)}

    dropped = {d.entity: d.table for d in diffs if d.kind == DiffKind.ENTITY_REMOVED}
    drop_order = list(reversed(_topological_sort(
        {name: {fk.references_table for fk in t.foreign_keys.values()} for name, t in dropped.items()},
        list(dropped),
    )))
    drop_rank = {name: i for i, name in enumerate(drop_order)}

    def add(action: Action, rank: int = 0) -> None:
        ranked.append((action.phase, rank, action))

    def skip(diff: Diff, reason: str) -> None:
        message = f"Skipped {diff.describe()}: {reason}"
        logger.warning(message)
        plan.skipped.append(diff)
        plan.warnings.append(message)

    for diff in diffs:
        kind = diff.kind
        table = diff.entity

        if kind == DiffKind.ENTITY_ADDED:
            add(
                Action(
                    kind=ActionKind.CREATE_TABLE,
                    table=table,
                    table_def=table_definition(diff.entity_def, dialect),
                ),
                create_rank[table],
            )

        elif kind == DiffKind.ENTITY_REMOVED:
            if not confirm:
                skip(diff, "dropping a table requires confirm")
                continue
            add(Action(kind=ActionKind.DROP_TABLE, table=table, destructive=True), drop_rank[table])

        elif kind == DiffKind.FIELD_ADDED:
            add(
                Action(
                    kind=ActionKind.ADD_COLUMN,
                    table=table,
                    column=diff.field,
                    definition=column_definition(diff.declared),
                )
            )

        elif kind == DiffKind.FIELD_REMOVED:
            if not confirm:
                skip(diff, "removing a column requires confirm")
                continue
            add(
                Action(
                    kind=ActionKind.REMOVE_COLUMN,
                    table=table,
                    column=diff.field,
                    destructive=True,
                )
            )

        elif kind == DiffKind.FIELD_RENAMED:
            add(
                Action(
                    kind=ActionKind.RENAME_COLUMN,
                    table=table,
                    column=diff.field,
                    new_name=diff.renamed_to,
                )
            )

        elif kind == DiffKind.FIELD_TYPE_CHANGED:
            old_type, new_type = diff.live.data_type, diff.declared.type
            if await dialect.cast_column_type(table, diff.field, old_type, new_type):
                add(
                    Action(
                        kind=ActionKind.CHANGE_COLUMN_TYPE,
                        table=table,
                        column=diff.field,
                        old_type=old_type,
                        new_type=new_type,
                        nullable=diff.declared.nullable,
                    )
                )
            elif diff.live.is_primary or diff.declared.primary_key:
                skip(diff, f"{old_type} -> {new_type} cannot be cast and a primary-key column is never re-created")
            elif not confirm:
                skip(diff, f"{old_type} -> {new_type} needs drop and re-create, which requires confirm")
            else:
                for action in _recreate_column(diff):
                    add(action)

        elif kind == DiffKind.RELATION_ADDED:
            if table in created and not dialect.supports_constraints:
                # Declared inline by CreateTable
                continue
            add(
                Action(
                    kind=ActionKind.ADD_CONSTRAINT,
                    table=table,
                    constraint=foreign_key_constraint(table, diff.relation),
                )
            )

        elif kind == DiffKind.RELATION_REMOVED:
            add(
                Action(
                    kind=ActionKind.DROP_CONSTRAINT,
                    table=table,
                    column=diff.field,
                    constraint_name=diff.foreign_key.name,
                )
            )

        elif kind == DiffKind.INDEX_ADDED:
            add(Action(kind=ActionKind.ADD_INDEX, table=table, index=index_schema(table, diff.index)))

        elif kind == DiffKind.INDEX_REMOVED:
            add(_drop_index_action(table, diff.live_index))

    ranked.sort(key=lambda item: (item[0], item[1]))
    plan.actions = [action for _, _, action in ranked]

    logger.debug(
        "Planned %d actions (%d skipped) for %d diffs",
        len(plan.actions), len(plan.skipped), len(diffs),
    )
    return plan


def _drop_index_action(table: str, index: IndexSchema) -> Action:
    if index.is_constraint:
        return Action(
            kind=ActionKind.DROP_CONSTRAINT,
            table=table,
            constraint_name=index.name,
            index=index,
        )
    return Action(kind=ActionKind.DROP_INDEX, table=table, index_name=index.name, index=index)


def _recreate_column(diff: Diff) -> list[Action]:
    """Drop-and-recreate fallback for a type change that cannot be cast.

    The column's surviving dependents are dropped first (phase 1) and
    re-created last (phase 4); the remove/add pair itself runs in phase 3
    so the two statements stay adjacent.
    """
    table = diff.entity
    fk: ForeignKeySchema | None = diff.foreign_key
    actions: list[Action] = []

    if fk is not None:
        actions.append(
            Action(
                kind=ActionKind.DROP_CONSTRAINT,
                table=table,
                column=diff.field,
                constraint_name=fk.name,
            )
        )
    actions.extend(_drop_index_action(table, ix) for ix in diff.dependent_indexes)

    actions.append(
        Action(
            kind=ActionKind.REMOVE_COLUMN,
            table=table,
            column=diff.field,
            phase=3,
            destructive=True,
        )
    )
    actions.append(
        Action(
            kind=ActionKind.ADD_COLUMN,
            table=table,
            column=diff.field,
            definition=column_definition(diff.declared),
            phase=3,
        )
    )

    if fk is not None and diff.relation is not None:
        constraint = foreign_key_constraint(table, diff.relation).model_copy(update={"name": fk.name})
        actions.append(Action(kind=ActionKind.ADD_CONSTRAINT, table=table, constraint=constraint))
    actions.extend(
        Action(
            kind=ActionKind.ADD_INDEX,
            table=table,
            index=IndexSchema(name=ix.name, columns=list(ix.columns), is_unique=ix.is_unique),
        )
        for ix in diff.dependent_indexes
    )
    return actions
