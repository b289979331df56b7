"""Dialect adapters and the dialect registry.

Dialects are registered by engine name.  Lookup is case-insensitive and
accepts the usual aliases (``postgresql``, ``mariadb``).

Usage:
    from db_sync.dialects import get_dialect_class, has_dialect

    if has_dialect("postgres"):
        dialect = get_dialect_class("postgres")(conn)
"""

from db_sync.dialects.base import BaseDialect
from db_sync.dialects.mysql import MySQLDialect
from db_sync.dialects.postgres import PostgresDialect
from db_sync.dialects.sqlite import SQLiteDialect
from db_sync.errors import UnsupportedDialectError

_DIALECTS: dict[str, type[BaseDialect]] = {
    "postgres": PostgresDialect,
    "postgresql": PostgresDialect,  # alias
    "mysql": MySQLDialect,
    "mariadb": MySQLDialect,  # alias
    "sqlite": SQLiteDialect,
}


def get_dialect_class(name: str) -> type[BaseDialect]:
    """Get a dialect class by engine name.

    Args:
        name: Engine name such as ``'postgres'``, ``'mysql'`` or ``'sqlite'``.

    Returns:
        The registered ``BaseDialect`` subclass.

    Raises:
        UnsupportedDialectError: If no dialect is registered for ``name``.
    """
    key = name.lower().strip()
    if key not in _DIALECTS:
        raise UnsupportedDialectError(
            f"Unknown dialect '{name}'. Supported: {supported_dialects()}"
        )
    return _DIALECTS[key]


def has_dialect(name: str) -> bool:
    """Whether a dialect is registered for ``name``."""
    return name.lower().strip() in _DIALECTS


def register_dialect(name: str, dialect: type[BaseDialect]) -> None:
    """Register a custom dialect implementation.

    Useful for third-party engines or test doubles.

    Args:
        name: Lookup key (lower-cased automatically).
        dialect: ``BaseDialect`` subclass.
    """
    _DIALECTS[name.lower()] = dialect


def supported_dialects() -> list[str]:
    """Sorted names of all registered dialects, aliases included."""
    return sorted(_DIALECTS)


__all__ = [
    "BaseDialect",
    "PostgresDialect",
    "MySQLDialect",
    "SQLiteDialect",
    "get_dialect_class",
    "has_dialect",
    "register_dialect",
    "supported_dialects",
]
