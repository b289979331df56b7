"""db-sync: keep a live database schema in sync with a declared entity model.

Introspects Postgres, MySQL and SQLite schemas through one dialect
interface, diffs them against the entity model, and applies an ordered,
dependency-safe DDL plan.

Usage:
    from db_sync import EntityModel, Entity, EntityField, Relation
    from db_sync import Synchronizer, ApplyOptions, get_synchronizer
    from db_sync import compute_diff, format_diff_report, has_dialect
"""

__version__ = "0.1.0"

# Errors
from db_sync.errors import (
    ActionFailedError,
    DatabaseConnectionError,
    DDLError,
    IntrospectionUnsupported,
    OperationNotSupported,
    SyncError,
    UnsupportedDialectError,
)

# Entity model
from db_sync.model import Entity, EntityField, EntityModel, IndexDefinition, Relation

# Dialects
from db_sync.dialects import (
    BaseDialect,
    MySQLDialect,
    PostgresDialect,
    SQLiteDialect,
    get_dialect_class,
    has_dialect,
    register_dialect,
)

# Schema
from db_sync.schema.comparator import Diff, DiffKind, compute_diff, format_diff_report
from db_sync.schema.introspector import SchemaIntrospector
from db_sync.schema.models import LiveSchema
from db_sync.schema.planner import Action, ActionKind, SyncPlan, plan_actions
from db_sync.schema.sync import ApplyOptions, ApplyResult, Synchronizer, apply_plan

# Config
from db_sync.config.loader import load_db_config
from db_sync.config.models import DatabaseConfig, DatabaseProfile, SyncSettings

# Factory
from db_sync.factory import (
    ProfileNotFoundError,
    get_engine,
    get_synchronizer,
    resolve_url,
    try_connection,
)

__all__ = [
    # Errors
    "SyncError",
    "DatabaseConnectionError",
    "IntrospectionUnsupported",
    "UnsupportedDialectError",
    "DDLError",
    "OperationNotSupported",
    "ActionFailedError",
    # Entity model
    "EntityModel",
    "Entity",
    "EntityField",
    "Relation",
    "IndexDefinition",
    # Dialects
    "BaseDialect",
    "PostgresDialect",
    "MySQLDialect",
    "SQLiteDialect",
    "get_dialect_class",
    "has_dialect",
    "register_dialect",
    # Schema
    "SchemaIntrospector",
    "LiveSchema",
    "compute_diff",
    "format_diff_report",
    "Diff",
    "DiffKind",
    "plan_actions",
    "Action",
    "ActionKind",
    "SyncPlan",
    "Synchronizer",
    "apply_plan",
    "ApplyOptions",
    "ApplyResult",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    "SyncSettings",
    # Factory
    "get_engine",
    "get_synchronizer",
    "resolve_url",
    "try_connection",
    "ProfileNotFoundError",
]
