"""Engine and synchronizer factory.

Resolves a db.toml profile (or an explicit URL) into an async SQLAlchemy
engine for the matching driver, and wraps it in a ``Synchronizer``.

Profile selection:
1. Explicit ``profile_name`` argument
2. ``<env_prefix>DB_PROFILE`` environment variable
3. Raise ProfileNotFoundError

Usage:
    from db_sync.factory import get_synchronizer

    synchronizer = get_synchronizer(model, profile_name="local")
    diffs = await synchronizer.diff()
    await synchronizer.engine.dispose()
"""

import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import quote

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from db_sync.config.loader import load_db_config
from db_sync.config.models import DatabaseConfig, DatabaseProfile, SyncSettings
from db_sync.dialects import has_dialect
from db_sync.errors import DatabaseConnectionError, UnsupportedDialectError
from db_sync.model import EntityModel
from db_sync.schema.sync import Synchronizer

logger = logging.getLogger(__name__)

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"

# Engine type / URL scheme -> async SQLAlchemy driver
ASYNC_DRIVERS: dict[str, str] = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "mariadb": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured or it does not exist."""

    pass


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the environment.

    Args:
        env_prefix: Prefix for the variable name (``"APP_"`` reads
            ``APP_DB_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_var}=<name> db-sync diff --model model.json"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, DatabaseProfile, DatabaseConfig]:
    """Get active profile name, profile and full configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured or it is missing
            from db.toml
        FileNotFoundError: If db.toml doesn't exist
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    config = load_db_config(config_path)

    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name], config


# ============================================================================
# URL Resolution
# ============================================================================


def normalize_async_url(url: str) -> str:
    """Rewrite a plain database URL to use the async driver.

    URLs that already name a driver (``scheme+driver://``) are kept.

    Example:
        >>> normalize_async_url("postgres://u:p@localhost/app")
        'postgresql+asyncpg://u:p@localhost/app'
    """
    scheme, sep, rest = url.partition("://")
    if not sep or "+" in scheme:
        return url
    driver = ASYNC_DRIVERS.get(scheme.lower())
    if driver is None:
        return url
    return f"{driver}://{rest}"


def resolve_url(profile: DatabaseProfile, base_path: Path | None = None) -> str:
    """Resolve a profile to an async connection URL.

    Args:
        profile: Database profile from config
        base_path: Directory relative SQLite storage paths resolve against
            (default: current directory)

    Returns:
        Connection URL with password substituted and async driver set

    Raises:
        UnsupportedDialectError: If the profile ``type`` has no driver
    """
    if profile.url:
        url = profile.url
        if profile.db_password and PASSWORD_PLACEHOLDER in url:
            url = url.replace(PASSWORD_PLACEHOLDER, quote(profile.db_password, safe=""))
        return normalize_async_url(url)

    engine_type = profile.type.lower()
    if engine_type not in ASYNC_DRIVERS:
        raise UnsupportedDialectError(
            f"Unknown database type '{profile.type}'. "
            f"Supported: {', '.join(sorted(ASYNC_DRIVERS))}"
        )
    driver = ASYNC_DRIVERS[engine_type]

    if driver.startswith("sqlite"):
        storage = Path(profile.storage)
        if not storage.is_absolute():
            storage = (base_path or Path.cwd()) / storage
        return f"{driver}:///{storage}"

    return URL.create(
        driver,
        username=profile.username,
        password=profile.password or profile.db_password,
        host=profile.host,
        port=profile.port,
        database=profile.database,
    ).render_as_string(hide_password=False)


def dialect_name_from_url(url: str) -> str:
    """Backend name of a URL, checked against the dialect registry.

    Raises:
        UnsupportedDialectError: If no dialect handles the backend
    """
    name = make_url(url).get_backend_name()
    if not has_dialect(name):
        raise UnsupportedDialectError(f"No dialect for database backend '{name}'")
    return name


# ============================================================================
# Engine Factory
# ============================================================================


def create_async_engine_pooled(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings for server databases:

    - ``pool_size=5``: Reasonable default for typical workloads.
    - ``max_overflow=10``: Allow burst connections.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    SQLite engines get no pool tuning.

    Args:
        database_url: Async connection URL.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {"echo": False}
    if make_url(database_url).get_backend_name() != "sqlite":
        defaults.update(
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=300,
        )
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


def get_engine(
    profile_name: str | None = None,
    database_url: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> AsyncEngine:
    """Create an engine from an explicit URL or the active profile.

    Raises:
        ProfileNotFoundError: If no profile is configured
        UnsupportedDialectError: If the database engine has no dialect
    """
    if database_url is None:
        _, profile, _ = get_active_profile(profile_name, env_prefix, config_path)
        base_path = config_path.parent if config_path is not None else None
        database_url = resolve_url(profile, base_path)
    else:
        database_url = normalize_async_url(database_url)

    # Refuse unsupported engines before any connection attempt
    dialect_name_from_url(database_url)
    return create_async_engine_pooled(database_url)


def get_synchronizer(
    model: EntityModel,
    profile_name: str | None = None,
    database_url: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
    settings: SyncSettings | None = None,
) -> Synchronizer:
    """Create a ``Synchronizer`` for the active profile or an explicit URL.

    Sync settings come from ``settings``, else from the ``[sync]`` table of
    db.toml when a profile is used, else defaults.

    Example:
        >>> synchronizer = get_synchronizer(model, database_url="sqlite:///app.db")
        >>> synchronizer.dialect_class.name
        'sqlite'
    """
    if database_url is None:
        _, profile, config = get_active_profile(profile_name, env_prefix, config_path)
        base_path = config_path.parent if config_path is not None else None
        database_url = resolve_url(profile, base_path)
        if settings is None:
            settings = config.sync

    engine = get_engine(database_url=database_url)
    return Synchronizer(engine, model, settings=settings)


async def try_connection(database_url: str) -> None:
    """Open a connection and run ``SELECT 1``.

    Raises:
        DatabaseConnectionError: If the database cannot be reached
    """
    engine = create_async_engine_pooled(normalize_async_url(database_url))
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e
    finally:
        await engine.dispose()
    logger.debug("Connection check passed")
