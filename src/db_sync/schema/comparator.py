"""Structural diff between the declared entity model and a live schema.

Pure logic -- no I/O, no database connections.

Passes run in a fixed order (entities, fields, relations, indexes).  Within
a pass, entities are visited in model order and fields in field order, so
identical inputs always produce the identical diff sequence.

Usage:
    from db_sync.schema.comparator import compute_diff, format_diff_report

    schema = await SchemaIntrospector(dialect).introspect()
    diffs = compute_diff(model, schema, storage_type=dialect.storage_type)
    if diffs:
        print(format_diff_report(diffs))
"""

from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, Field

from db_sync.model import Entity, EntityField, EntityModel, IndexDefinition, Relation
from db_sync.schema.models import (
    ColumnSchema,
    ForeignKeySchema,
    IndexSchema,
    LiveSchema,
    TableSchema,
)


class DiffKind(str, Enum):
    ENTITY_ADDED = "EntityAdded"
    ENTITY_REMOVED = "EntityRemoved"
    FIELD_ADDED = "FieldAdded"
    FIELD_REMOVED = "FieldRemoved"
    FIELD_TYPE_CHANGED = "FieldTypeChanged"
    FIELD_RENAMED = "FieldRenamed"
    RELATION_ADDED = "RelationAdded"
    RELATION_REMOVED = "RelationRemoved"
    INDEX_ADDED = "IndexAdded"
    INDEX_REMOVED = "IndexRemoved"


class Diff(BaseModel):
    """One discrepancy between the entity model and the live schema.

    Which payload fields are set depends on ``kind``:

    - EntityAdded: ``entity_def``
    - EntityRemoved: ``table``
    - FieldAdded: ``declared``
    - FieldRemoved: ``live``
    - FieldTypeChanged: ``declared`` and ``live``, plus the column's kept
      dependents (``relation``/``foreign_key`` and ``dependent_indexes``)
    - FieldRenamed: ``field`` is the live name, ``renamed_to`` the declared
      one; ``declared`` and ``live`` are both set
    - RelationAdded: ``relation``
    - RelationRemoved: ``foreign_key``
    - IndexAdded: ``index``
    - IndexRemoved: ``live_index``

    Example:
        >>> d = Diff(kind=DiffKind.ENTITY_ADDED, entity="books")
        >>> d.describe()
        '+ table books'
    """

    kind: DiffKind
    entity: str
    field: str | None = None
    renamed_to: str | None = None
    declared: EntityField | None = None
    live: ColumnSchema | None = None
    entity_def: Entity | None = None
    table: TableSchema | None = None
    relation: Relation | None = None
    foreign_key: ForeignKeySchema | None = None
    index: IndexDefinition | None = None
    live_index: IndexSchema | None = None
    dependent_indexes: list[IndexSchema] = Field(default_factory=list)

    @property
    def destructive(self) -> bool:
        """Whether resolving this diff can lose row data."""
        return self.kind in (DiffKind.ENTITY_REMOVED, DiffKind.FIELD_REMOVED)

    def describe(self) -> str:
        """One-line human-readable description."""
        kind = self.kind
        if kind == DiffKind.ENTITY_ADDED:
            return f"+ table {self.entity}"
        if kind == DiffKind.ENTITY_REMOVED:
            return f"- table {self.entity}"
        if kind == DiffKind.FIELD_ADDED:
            return f"+ column {self.entity}.{self.field} ({self.declared.type})"
        if kind == DiffKind.FIELD_REMOVED:
            return f"- column {self.entity}.{self.field} ({self.live.data_type})"
        if kind == DiffKind.FIELD_TYPE_CHANGED:
            return (
                f"~ column {self.entity}.{self.field}: "
                f"{self.live.data_type} -> {self.declared.type}"
            )
        if kind == DiffKind.FIELD_RENAMED:
            return f"~ column {self.entity}.{self.field} renamed to {self.renamed_to}"
        if kind == DiffKind.RELATION_ADDED:
            return (
                f"+ relation {self.entity}.{self.field} -> "
                f"{self.relation.target}.{self.relation.target_field}"
            )
        if kind == DiffKind.RELATION_REMOVED:
            return (
                f"- relation {self.entity}.{self.field} -> "
                f"{self.foreign_key.references_table} ({self.foreign_key.name})"
            )
        if kind == DiffKind.INDEX_ADDED:
            unique = " unique" if self.index.unique else ""
            return (
                f"+ index {self.entity}.{self.index.index_name(self.entity)} "
                f"({', '.join(self.index.fields)}){unique}"
            )
        unique = " unique" if self.live_index.is_unique else ""
        return (
            f"- index {self.entity}.{self.live_index.name} "
            f"({', '.join(self.live_index.columns)}){unique}"
        )


def compute_diff(
    model: EntityModel,
    schema: LiveSchema,
    *,
    storage_type: Callable[[str], str] | None = None,
) -> list[Diff]:
    """Compare the entity model against a live schema snapshot.

    Args:
        model: Declared entity model.
        schema: Snapshot from ``SchemaIntrospector.introspect()``.
        storage_type: Maps a declared type to the type the live column
            reads back as (``BaseDialect.storage_type``).  Declared types
            are compared as-is when omitted.

    Returns:
        Ordered list of ``Diff``; empty when the live schema matches.

    Examples:
        >>> from db_sync.model import Entity, EntityField, EntityModel
        >>> model = EntityModel(entities=[
        ...     Entity(name="users", fields=[EntityField(name="id", type="integer")]),
        ... ])
        >>> [d.kind.value for d in compute_diff(model, LiveSchema())]
        ['EntityAdded']
    """
    stored = storage_type or (lambda t: t)
    renames = {
        entity.name: _rename_pairs(entity, schema.tables[entity.name], stored)
        for entity in model.entities
        if entity.name in schema.tables
    }

    diffs: list[Diff] = []
    diffs.extend(_entity_pass(model, schema))
    for entity in model.entities:
        table = schema.tables.get(entity.name)
        if table is not None:
            diffs.extend(_field_pass(entity, table, renames[entity.name], stored))
    for entity in model.entities:
        diffs.extend(_relation_pass(entity, schema.tables.get(entity.name), renames.get(entity.name, {})))
    for entity in model.entities:
        diffs.extend(_index_pass(entity, schema.tables.get(entity.name), renames.get(entity.name, {})))
    return diffs


def format_diff_report(diffs: list[Diff]) -> str:
    """Format diffs as a human-readable report."""
    if not diffs:
        return "Schema in sync"

    lines = [f"Schema drift ({len(diffs)} difference(s)):"]
    current = None
    for diff in diffs:
        if diff.entity != current:
            current = diff.entity
            lines.append(f"\n  {current}:")
        lines.append(f"    {diff.describe()}")
    return "\n".join(lines)


# ============================================================================
# Passes
# ============================================================================


def _entity_pass(model: EntityModel, schema: LiveSchema) -> list[Diff]:
    diffs = [
        Diff(kind=DiffKind.ENTITY_ADDED, entity=entity.name, entity_def=entity)
        for entity in model.entities
        if entity.name not in schema.tables
    ]
    declared = set(model.entity_names)
    diffs.extend(
        Diff(kind=DiffKind.ENTITY_REMOVED, entity=name, table=table)
        for name, table in schema.tables.items()
        if name not in declared
    )
    return diffs


def _rename_pairs(
    entity: Entity, table: TableSchema, stored: Callable[[str], str]
) -> dict[str, str]:
    """Map declared field name -> live column name for detected renames.

    A model-only field and a live-only column pair up only when their
    normalized types are identical and the pairing is unambiguous: exactly
    one model-only field and exactly one live-only column of that type.
    """
    model_only = [f for f in entity.fields if f.name not in table.columns]
    live_only = [c for c in table.columns.values() if entity.get_field(c.name) is None]

    pairs: dict[str, str] = {}
    for f in model_only:
        same_type_fields = [x for x in model_only if stored(x.type) == stored(f.type)]
        same_type_columns = [c for c in live_only if c.data_type == stored(f.type)]
        if len(same_type_fields) == 1 and len(same_type_columns) == 1:
            pairs[f.name] = same_type_columns[0].name
    return pairs


def _field_pass(
    entity: Entity,
    table: TableSchema,
    renames: dict[str, str],
    stored: Callable[[str], str],
) -> list[Diff]:
    diffs: list[Diff] = []
    for f in entity.fields:
        column = table.columns.get(f.name)
        if column is not None:
            if column.data_type != stored(f.type):
                diffs.append(_type_change(entity, table, f, column))
        elif f.name in renames:
            old_name = renames[f.name]
            diffs.append(
                Diff(
                    kind=DiffKind.FIELD_RENAMED,
                    entity=entity.name,
                    field=old_name,
                    renamed_to=f.name,
                    declared=f,
                    live=table.columns[old_name],
                )
            )
        else:
            diffs.append(
                Diff(kind=DiffKind.FIELD_ADDED, entity=entity.name, field=f.name, declared=f)
            )

    renamed_columns = set(renames.values())
    for name, column in table.columns.items():
        if entity.get_field(name) is None and name not in renamed_columns:
            diffs.append(
                Diff(kind=DiffKind.FIELD_REMOVED, entity=entity.name, field=name, live=column)
            )
    return diffs


def _type_change(
    entity: Entity, table: TableSchema, f: EntityField, column: ColumnSchema
) -> Diff:
    """FieldTypeChanged carrying the dependents that must survive a re-create."""
    relation = entity.get_relation(f.name)
    fk = table.foreign_keys.get(f.name)
    if relation is None or fk is None or fk.references_table != relation.target:
        relation, fk = None, None

    fk_names = {k.name for k in table.foreign_keys.values()}
    declared_keys = {(tuple(ix.fields), ix.unique) for ix in entity.declared_indexes()}
    dependents = [
        ix
        for ix in table.indexes.get(f.name, [])
        if not ix.is_primary
        and ix.name not in fk_names
        and (tuple(ix.columns), ix.is_unique) in declared_keys
    ]
    return Diff(
        kind=DiffKind.FIELD_TYPE_CHANGED,
        entity=entity.name,
        field=f.name,
        declared=f,
        live=column,
        relation=relation,
        foreign_key=fk,
        dependent_indexes=dependents,
    )


def _relation_pass(
    entity: Entity, table: TableSchema | None, renames: dict[str, str]
) -> list[Diff]:
    live_fks = table.foreign_keys if table is not None else {}
    live_to_declared = {old: new for new, old in renames.items()}

    diffs: list[Diff] = []
    for relation in entity.relations:
        fk = live_fks.get(renames.get(relation.field, relation.field))
        if fk is not None and fk.references_table == relation.target:
            continue
        if fk is not None:
            # Same column, different target: replace the constraint
            diffs.append(
                Diff(
                    kind=DiffKind.RELATION_REMOVED,
                    entity=entity.name,
                    field=fk.column,
                    foreign_key=fk,
                )
            )
        diffs.append(
            Diff(
                kind=DiffKind.RELATION_ADDED,
                entity=entity.name,
                field=relation.field,
                relation=relation,
            )
        )

    for column, fk in live_fks.items():
        if entity.get_relation(live_to_declared.get(column, column)) is None:
            diffs.append(
                Diff(
                    kind=DiffKind.RELATION_REMOVED,
                    entity=entity.name,
                    field=column,
                    foreign_key=fk,
                )
            )
    return diffs


def _index_pass(
    entity: Entity, table: TableSchema | None, renames: dict[str, str]
) -> list[Diff]:
    live_indexes = table.index_list() if table is not None else []
    fk_names = {fk.name for fk in table.foreign_keys.values()} if table is not None else set()
    live_to_declared = {old: new for new, old in renames.items()}

    def live_key(ix: IndexSchema) -> tuple[tuple[str, ...], bool]:
        return tuple(live_to_declared.get(c, c) for c in ix.columns), ix.is_unique

    live_keys = {live_key(ix) for ix in live_indexes}
    declared = entity.declared_indexes()
    declared_keys = {(tuple(ix.fields), ix.unique) for ix in declared}

    diffs = [
        Diff(kind=DiffKind.INDEX_ADDED, entity=entity.name, index=ix)
        for ix in declared
        if (tuple(ix.fields), ix.unique) not in live_keys
    ]
    for ix in live_indexes:
        # Primary-key and foreign-key backing indexes are implied, never removed
        if ix.is_primary or ix.name in fk_names:
            continue
        if live_key(ix) not in declared_keys:
            diffs.append(Diff(kind=DiffKind.INDEX_REMOVED, entity=entity.name, live_index=ix))
    return diffs
