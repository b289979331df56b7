"""Semantic column types shared by the entity model and every dialect.

The entity model declares fields with a small, engine-neutral vocabulary.
Dialects translate these names into DDL types and translate raw catalog
types back, so a live column and a declared field can be compared by
plain string equality.

Usage:
    >>> from db_sync.types import normalize_semantic_type
    >>> normalize_semantic_type("Number")
    'integer'
    >>> normalize_semantic_type("varchar")
    'string'
"""

STRING = "string"
TEXT = "text"
INTEGER = "integer"
BIGINTEGER = "biginteger"
FLOAT = "float"
DECIMAL = "decimal"
BOOLEAN = "boolean"
DATE = "date"
DATETIME = "datetime"
JSON = "json"
UUID = "uuid"
BLOB = "blob"

SEMANTIC_TYPES: frozenset[str] = frozenset({
    STRING,
    TEXT,
    INTEGER,
    BIGINTEGER,
    FLOAT,
    DECIMAL,
    BOOLEAN,
    DATE,
    DATETIME,
    JSON,
    UUID,
    BLOB,
})

# Spellings accepted in entity definitions
TYPE_ALIASES: dict[str, str] = {
    "str": STRING,
    "varchar": STRING,
    "number": INTEGER,
    "int": INTEGER,
    "bigint": BIGINTEGER,
    "double": FLOAT,
    "real": FLOAT,
    "numeric": DECIMAL,
    "bool": BOOLEAN,
    "timestamp": DATETIME,
    "jsonb": JSON,
    "binary": BLOB,
    "bytes": BLOB,
}


def normalize_semantic_type(name: str) -> str:
    """Resolve a declared type name to its canonical semantic type.

    Args:
        name: Type name as written in the entity definition.

    Returns:
        One of ``SEMANTIC_TYPES``.

    Raises:
        ValueError: If the name is neither a semantic type nor an alias.
    """
    key = name.strip().lower()
    key = TYPE_ALIASES.get(key, key)
    if key not in SEMANTIC_TYPES:
        raise ValueError(
            f"Unknown field type '{name}'. "
            f"Supported: {', '.join(sorted(SEMANTIC_TYPES))}"
        )
    return key
