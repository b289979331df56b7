"""Synchronizer -- drive introspection, diff, planning and execution.

Usage:
    from db_sync.schema.sync import ApplyOptions, Synchronizer

    synchronizer = Synchronizer(engine, model)

    diffs = await synchronizer.diff()
    result = await synchronizer.apply(diffs, ApplyOptions(confirm=True))
    if not result.success:
        print(f"Failed at {result.failed_action.describe()}: {result.error}")

Execution is strictly sequential: each action is awaited before the next
one starts.  The first failure stops the run; actions already applied stay
applied (unless the run is transactional and the dialect supports it).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from db_sync.config.models import SyncSettings
from db_sync.dialects import get_dialect_class, has_dialect
from db_sync.dialects.base import BaseDialect
from db_sync.errors import ActionFailedError, DDLError, OperationNotSupported, SyncError
from db_sync.model import EntityModel
from db_sync.schema.comparator import Diff, compute_diff
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.models import LiveSchema
from db_sync.schema.planner import Action, ActionKind, SyncPlan, plan_actions

logger = logging.getLogger(__name__)

# Unsupported constraint/index primitives are skipped; anything else is fatal
SKIPPABLE_KINDS = frozenset({
    ActionKind.ADD_CONSTRAINT,
    ActionKind.DROP_CONSTRAINT,
    ActionKind.ADD_INDEX,
    ActionKind.DROP_INDEX,
})


class ApplyOptions(BaseModel):
    """Options for ``apply()``.

    Attributes:
        dry_run: Plan only; report the actions without executing them.
        confirm: Allow destructive actions (drop table, remove column,
            drop-and-recreate type changes).
        transactional: Commit the whole plan once, rolling everything back
            on failure.  Only honoured by dialects with transactional DDL.
    """

    dry_run: bool = False
    confirm: bool = False
    transactional: bool = False


class ApplyResult(BaseModel):
    """Result of applying a plan.

    Attributes:
        success: True if every planned action was applied or skipped.
        dry_run: True if nothing was executed.
        rolled_back: True if a transactional run was rolled back.
        applied: Actions applied, in order.
        planned: Every action in the plan, in order.
        skipped: Actions skipped because the dialect does not support them.
        withheld: Diffs the planner withheld for lack of confirmation.
        warnings: One message per skipped action or withheld diff.
        failed_action: The action that failed, if any.
        error: Error message if the run failed.
        exception: The underlying ``DDLError``/``OperationNotSupported``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool = False
    dry_run: bool = False
    rolled_back: bool = False
    applied: list[Action] = Field(default_factory=list)
    planned: list[Action] = Field(default_factory=list)
    skipped: list[Action] = Field(default_factory=list)
    withheld: list[Diff] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    failed_action: Action | None = None
    error: str | None = None
    exception: BaseException | None = Field(default=None, exclude=True)

    def raise_for_error(self) -> None:
        """Raise ``ActionFailedError`` if an action failed."""
        if self.failed_action is not None:
            raise ActionFailedError(self.failed_action, list(self.applied), self.exception)


# ------------------------------------------------------------------
# Execution
# ------------------------------------------------------------------


async def execute_action(dialect: BaseDialect, action: Action) -> None:
    """Run the dialect primitive for one action."""
    kind = action.kind
    table = action.table
    if kind == ActionKind.CREATE_TABLE:
        await dialect.create_table(action.table_def)
    elif kind == ActionKind.DROP_TABLE:
        await dialect.drop_table(table)
    elif kind == ActionKind.ADD_COLUMN:
        await dialect.add_column(table, action.definition)
    elif kind == ActionKind.REMOVE_COLUMN:
        await dialect.remove_column(table, action.column)
    elif kind == ActionKind.RENAME_COLUMN:
        await dialect.rename_column(table, action.column, action.new_name)
    elif kind == ActionKind.CHANGE_COLUMN_TYPE:
        await dialect.change_column_type(
            table, action.column, action.old_type, action.new_type, nullable=action.nullable
        )
    elif kind == ActionKind.ADD_CONSTRAINT:
        await dialect.add_constraint(table, action.constraint)
    elif kind == ActionKind.DROP_CONSTRAINT:
        await dialect.drop_constraint(table, action.constraint_name)
    elif kind == ActionKind.ADD_INDEX:
        await dialect.add_index(table, action.index)
    elif kind == ActionKind.DROP_INDEX:
        await dialect.drop_index(table, action.index_name)
    else:
        raise ValueError(f"Unknown action kind: {kind}")


async def apply_plan(
    dialect: BaseDialect,
    plan: SyncPlan,
    options: ApplyOptions | None = None,
) -> ApplyResult:
    """Apply a plan one action at a time.

    Never raises for action failures: the first ``DDLError`` (or
    ``OperationNotSupported`` on a column/table action, or any database
    error while executing or committing) stops the run and is reported in
    the result together with the actions applied before it.
    ``OperationNotSupported`` on constraint/index actions is a skip with a
    warning.

    Args:
        dialect: Connected dialect.
        plan: Plan from ``plan_actions()``.
        options: Apply options (default: non-transactional, no dry run).

    Returns:
        ``ApplyResult`` with outcome.

    Example:
        result = await apply_plan(dialect, plan, ApplyOptions(dry_run=True))
        for action in result.planned:
            print(action.describe())
    """
    options = options or ApplyOptions()
    result = ApplyResult(
        dry_run=options.dry_run,
        planned=list(plan.actions),
        withheld=list(plan.skipped),
        warnings=list(plan.warnings),
    )

    # Dry run just returns the plan info
    if options.dry_run:
        result.success = True
        return result

    transactional = options.transactional
    if transactional and not dialect.supports_transactional_ddl:
        message = f"The {dialect.name} dialect has no transactional DDL; committing per action"
        logger.warning(message)
        result.warnings.append(message)
        transactional = False

    for action in plan.actions:
        try:
            await execute_action(dialect, action)
            if not transactional:
                await dialect.commit()
        except OperationNotSupported as e:
            if action.kind in SKIPPABLE_KINDS:
                message = f"Skipped {action.describe()}: {e}"
                logger.warning(message)
                result.skipped.append(action)
                result.warnings.append(message)
                continue
            await _fail(dialect, result, action, e, transactional)
            return result
        except (SyncError, SQLAlchemyError) as e:
            await _fail(dialect, result, action, _as_sync_error(action, e), transactional)
            return result

        result.applied.append(action)
        logger.info("Applied %s", action.describe())

    if transactional and result.applied:
        try:
            await dialect.commit()
        except SQLAlchemyError as e:
            last = result.applied[-1]
            await _fail(dialect, result, last, _as_sync_error(last, e), transactional)
            return result

    result.success = True
    return result


def _as_sync_error(action: Action, error: Exception) -> Exception:
    if isinstance(error, SQLAlchemyError):
        return DDLError(action.table, action.column, error)
    return error


async def _fail(
    dialect: BaseDialect,
    result: ApplyResult,
    action: Action,
    error: Exception,
    transactional: bool,
) -> None:
    logger.error("Failed %s: %s", action.describe(), error)
    result.failed_action = action
    result.error = str(error)
    result.exception = error

    # Clears the failed statement; in transactional mode it undoes the run
    try:
        await dialect.rollback()
    except SQLAlchemyError as e:
        logger.error("Rollback after %s failed: %s", action.describe(), e)
    if transactional:
        result.rolled_back = True
        result.applied = []


# ------------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------------


class Synchronizer:
    """Keeps a live database in line with an entity model.

    The dialect is chosen once, from ``dialect_name`` or the engine's
    SQLAlchemy dialect name.  Each call acquires its own connection from the
    engine and releases it when done.

    Args:
        engine: Async engine for the target database.
        model: Declared entity model.
        settings: Synchronization settings (schema, excluded tables, ...).
        dialect_name: Override the engine's dialect name.

    Raises:
        UnsupportedDialectError: If no dialect is registered for the engine.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        model: EntityModel,
        *,
        settings: SyncSettings | None = None,
        dialect_name: str | None = None,
    ) -> None:
        self.engine = engine
        self.model = model
        self.settings = settings or SyncSettings()
        self.dialect_class = get_dialect_class(dialect_name or engine.dialect.name)

    @staticmethod
    def has_dialect(name: str) -> bool:
        """Whether a dialect exists for engine ``name``."""
        return has_dialect(name)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BaseDialect]:
        """Dialect bound to a freshly acquired connection."""
        async with self.engine.connect() as conn:
            yield self.dialect_class(
                conn,
                schema=self.settings.schema_name,
                log_sql=self.settings.log_sql,
            )

    def _introspector(self, dialect: BaseDialect) -> SchemaIntrospector:
        excluded = self.settings.excluded_tables
        return SchemaIntrospector(dialect, set(excluded) if excluded is not None else None)

    async def introspect(self) -> LiveSchema:
        """Capture a snapshot of the live schema."""
        async with self.session() as dialect:
            return await self._introspector(dialect).introspect()

    async def diff(self) -> list[Diff]:
        """Differences between the live schema and the model.

        Read-only.  Raises ``DatabaseConnectionError`` if the schema cannot
        be introspected.
        """
        async with self.session() as dialect:
            schema = await self._introspector(dialect).introspect()
        return compute_diff(self.model, schema, storage_type=dialect.storage_type)

    async def plan(self, diffs: list[Diff] | None = None, *, confirm: bool = False) -> SyncPlan:
        """Plan actions for ``diffs`` (computed fresh when omitted)."""
        if diffs is None:
            diffs = await self.diff()
        async with self.session() as dialect:
            return await plan_actions(diffs, dialect, confirm=confirm)

    def _options(self, options: ApplyOptions | None) -> ApplyOptions:
        """Fill ``transactional`` from the settings unless set explicitly."""
        if options is None:
            return ApplyOptions(transactional=self.settings.transactional)
        if "transactional" not in options.model_fields_set:
            return options.model_copy(update={"transactional": self.settings.transactional})
        return options

    async def apply(self, diffs: list[Diff], options: ApplyOptions | None = None) -> ApplyResult:
        """Plan and apply ``diffs`` on one connection.

        ``SyncSettings.transactional`` applies unless ``options`` sets
        ``transactional`` itself.
        """
        options = self._options(options)
        async with self.session() as dialect:
            plan = await plan_actions(diffs, dialect, confirm=options.confirm)
            return await apply_plan(dialect, plan, options)

    async def sync(self, options: ApplyOptions | None = None) -> ApplyResult:
        """Diff, then apply whatever differs."""
        options = self._options(options)
        diffs = await self.diff()
        if not diffs:
            logger.info("Schema in sync, nothing to apply")
            return ApplyResult(success=True, dry_run=options.dry_run)

        result = await self.apply(diffs, options)
        logger.info("Applied %d actions", len(result.applied))
        return result
