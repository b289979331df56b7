"""Exception hierarchy for schema synchronization.

Every error raised by ``db_sync`` derives from ``SyncError``.  Two of them
also subclass the matching builtin so callers can catch them generically:

- ``DatabaseConnectionError`` is a ``ConnectionError``
- ``OperationNotSupported`` is a ``NotImplementedError``

Usage:
    from db_sync.errors import DDLError, OperationNotSupported

    try:
        await dialect.add_constraint("books", constraint)
    except OperationNotSupported:
        logger.warning("constraints not supported, skipping")
    except DDLError as e:
        print(e.table, e.column, e.cause)
"""

from typing import Any


class SyncError(Exception):
    """Base class for all schema synchronization errors."""


class DatabaseConnectionError(SyncError, ConnectionError):
    """Raised when the database connection is unusable.

    Fatal to a whole synchronization run.
    """


class IntrospectionUnsupported(SyncError):
    """Raised when a dialect cannot answer a catalog question.

    The introspector recovers from it by assuming an empty answer.
    """


class UnsupportedDialectError(SyncError, ValueError):
    """Raised when no dialect is registered for a database engine name."""


class DDLError(SyncError):
    """A single schema mutation was rejected by the database.

    Attributes:
        table: Table the statement targeted.
        column: Column the statement targeted, if any.
        cause: Underlying driver/SQLAlchemy exception.
    """

    def __init__(self, table: str, column: str | None, cause: BaseException) -> None:
        self.table = table
        self.column = column
        self.cause = cause
        target = f"{table}.{column}" if column else table
        super().__init__(f"DDL failed on {target}: {cause}")


class OperationNotSupported(SyncError, NotImplementedError):
    """The dialect does not implement a requested primitive.

    Attributes:
        dialect: Dialect name (e.g. ``"sqlite"``).
        operation: Primitive name (e.g. ``"add_constraint"``).
    """

    def __init__(self, dialect: str, operation: str) -> None:
        self.dialect = dialect
        self.operation = operation
        super().__init__(f"'{operation}' is not supported by the {dialect} dialect")


class ActionFailedError(SyncError):
    """An action failed while applying a plan.

    Raised by ``ApplyResult.raise_for_error()``.

    Attributes:
        action: The action that failed.
        applied: Actions applied before the failure.
        cause: The underlying ``DDLError`` or ``OperationNotSupported``.
    """

    def __init__(self, action: Any, applied: list[Any], cause: BaseException | None) -> None:
        self.action = action
        self.applied = applied
        self.cause = cause
        super().__init__(
            f"Action failed after {len(applied)} applied: {action.describe()}: {cause}"
        )
