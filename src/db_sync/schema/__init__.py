"""Live schema snapshots, structural diff, planning and synchronization.

Provides the live-schema models, the diff engine (``compute_diff``), and
in submodules the introspector, action planner and synchronizer.

Usage:
    from db_sync.schema import compute_diff, format_diff_report, LiveSchema
    from db_sync.schema.introspector import SchemaIntrospector
    from db_sync.schema.planner import plan_actions
    from db_sync.schema.sync import Synchronizer, ApplyOptions
"""

from db_sync.schema.comparator import Diff, DiffKind, compute_diff, format_diff_report
from db_sync.schema.models import (
    ColumnDefinition,
    ColumnSchema,
    ConstraintSchema,
    ForeignKeySchema,
    IndexSchema,
    LiveSchema,
    TableDefinition,
    TableSchema,
)

__all__ = [
    "compute_diff",
    "format_diff_report",
    "Diff",
    "DiffKind",
    "LiveSchema",
    "TableSchema",
    "ColumnSchema",
    "IndexSchema",
    "ForeignKeySchema",
    "ColumnDefinition",
    "ConstraintSchema",
    "TableDefinition",
]
