"""Pydantic models for database profiles and synchronization settings."""

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml.

    A profile either gives a full ``url`` or describes the connection with
    ``type`` plus connection fields.  SQLite profiles only need ``storage``.

    Example:
        >>> p = DatabaseProfile(type="sqlite", storage="app.sqlite")
        >>> p.type
        'sqlite'
    """

    url: str | None = None
    type: str | None = None  # postgres, mysql, sqlite
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = None
    storage: str = "database.sqlite"  # SQLite file, relative to the config file
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution

    @model_validator(mode="after")
    def _require_url_or_type(self) -> "DatabaseProfile":
        if not self.url and not self.type:
            raise ValueError("Profile needs either 'url' or 'type'")
        return self


class SyncSettings(BaseModel):
    """Synchronization settings from the ``[sync]`` table of db.toml."""

    model_config = ConfigDict(populate_by_name=True)

    schema_name: str | None = Field(default=None, alias="schema")  # Postgres only
    excluded_tables: list[str] | None = None  # None = introspector defaults
    transactional: bool = False
    log_sql: bool = False


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    sync: SyncSettings = Field(default_factory=SyncSettings)
