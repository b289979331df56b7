"""Declared entity model.

The entity model is supplied by the hosting application and is read-only
to this package.  Entities are kept in declaration order, and fields in
field order, so diff output is reproducible.

Usage:
    from db_sync.model import Entity, EntityField, EntityModel, Relation

    model = EntityModel(entities=[
        Entity(name="authors", fields=[
            EntityField(name="id", type="integer", primary_key=True, autoincrement=True),
            EntityField(name="name", type="string", nullable=False),
        ]),
        Entity(name="books", fields=[
            EntityField(name="id", type="integer", primary_key=True, autoincrement=True),
            EntityField(name="title", type="string"),
            EntityField(name="author_id", type="integer"),
        ], relations=[
            Relation(field="author_id", target="authors"),
        ]),
    ])
"""

from pydantic import BaseModel, Field, field_validator

from db_sync.types import normalize_semantic_type


class EntityField(BaseModel):
    """A declared column within an entity.

    Example:
        >>> f = EntityField(name="email", type="varchar")
        >>> f.type
        'string'
        >>> f.nullable
        True
    """

    name: str
    type: str
    nullable: bool = True
    default: str | int | float | bool | None = None
    primary_key: bool = False
    unique: bool = False
    autoincrement: bool = False

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_semantic_type(value)


class Relation(BaseModel):
    """Foreign-key reference from one of the entity's fields to another entity."""

    field: str                      # FK column in this entity
    target: str                     # referenced entity
    target_field: str = "id"        # referenced column
    on_delete: str = "SET NULL"
    on_update: str = "CASCADE"


class IndexDefinition(BaseModel):
    """A declared index over one or more fields."""

    fields: list[str]
    unique: bool = False
    name: str | None = None

    def index_name(self, table: str) -> str:
        """Explicit name, or ``ix_<table>_<fields>`` / ``uq_<table>_<fields>``."""
        if self.name:
            return self.name
        prefix = "uq" if self.unique else "ix"
        return f"{prefix}_{table}_{'_'.join(self.fields)}"


class Entity(BaseModel):
    """A declared table."""

    name: str
    fields: list[EntityField] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)
    indexes: list[IndexDefinition] = Field(default_factory=list)

    def get_field(self, name: str) -> EntityField | None:
        """Return the field called *name*, or None."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def primary_key(self) -> list[str]:
        """Names of the primary-key fields, in field order."""
        return [f.name for f in self.fields if f.primary_key]

    def get_relation(self, field_name: str) -> Relation | None:
        """Return the relation declared on *field_name*, or None."""
        for relation in self.relations:
            if relation.field == field_name:
                return relation
        return None

    def declared_indexes(self) -> list[IndexDefinition]:
        """All index requirements of the entity.

        Explicit ``indexes`` first, then one unique index per ``unique``
        field.  Primary-key fields are skipped: the primary key already
        implies uniqueness.
        """
        result = list(self.indexes)
        covered = {(tuple(ix.fields), ix.unique) for ix in result}
        for f in self.fields:
            if f.unique and not f.primary_key and ((f.name,), True) not in covered:
                result.append(IndexDefinition(fields=[f.name], unique=True))
        return result


class EntityModel(BaseModel):
    """Ordered set of entities.

    Field-name uniqueness and relation targets are the provider's
    responsibility and are not re-validated here.
    """

    entities: list[Entity] = Field(default_factory=list)

    def get(self, name: str) -> Entity | None:
        """Return the entity called *name*, or None."""
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    @property
    def entity_names(self) -> list[str]:
        """Entity names in declaration order."""
        return [e.name for e in self.entities]
