"""Typed configuration models for every store driver.

All models are frozen pydantic v2 models: they are validated once when a
store is constructed and never mutated afterwards.  A YAML file holding
``driver:`` plus the driver's settings can be loaded with
:func:`load_config`.

Classes
-------
- SessionIdPolicy  — accepted character set and length of identifiers
- StoreConfig      — settings shared by all drivers
- FilesConfig      — FilesStore settings
- ColumnNames      — column mapping for DatabaseStore
- DatabaseConfig   — DatabaseStore settings
- CacheConfig      — lock settings shared by the cache drivers
- RedisConfig      — RedisStore settings
- MemcachedServer  — one entry of a Memcached server pool
- MemcachedConfig  — MemcachedStore settings

Functions
---------
- load_config      — read ``(driver, config)`` from a YAML file
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from session_store.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Identifier policy
# ---------------------------------------------------------------------------

_BITS_CHARSETS: dict[int, str] = {
    4: "[0-9a-f]",
    5: "[0-9a-v]",
    6: "[0-9a-zA-Z,-]",
}


class SessionIdPolicy(BaseModel):
    """Character set and length accepted for session identifiers.

    Parameters
    ----------
    bits_per_character:
        4 (``0-9a-f``), 5 (``0-9a-v``) or 6 (``0-9a-zA-Z,-``).
    length:
        Exact identifier length.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    bits_per_character: Literal[4, 5, 6] = 4
    length: int = Field(default=32, ge=22, le=256)

    @property
    def pattern(self) -> re.Pattern[str]:
        """Compiled full-match pattern for this policy."""
        charset = _BITS_CHARSETS[self.bits_per_character]
        return re.compile(rf"{charset}{{{self.length}}}")

    def matches(self, session_id: str) -> bool:
        return self.pattern.fullmatch(session_id) is not None


# ---------------------------------------------------------------------------
# Shared settings
# ---------------------------------------------------------------------------


class StoreConfig(BaseModel):
    """Settings common to every driver.

    Parameters
    ----------
    max_lifetime:
        Seconds after which an unrefreshed record may be collected.  Cache
        drivers use it as the data key TTL.
    match_ip:
        Bind each record to the client IP address.
    match_ua:
        Bind each record to the client User-Agent.
    id_policy:
        Identifier validation policy used by ``validate_id``.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    max_lifetime: int = Field(default=1440, gt=0)
    match_ip: bool = False
    match_ua: bool = False
    id_policy: SessionIdPolicy = Field(default_factory=SessionIdPolicy)

    def describe(self) -> dict[str, Any]:
        """Return the settings as plain data with secrets masked."""
        return self.model_dump(mode="json")


class FilesConfig(StoreConfig):
    """FilesStore settings.

    Parameters
    ----------
    directory:
        Existing directory that holds the shard subdirectories.
    prefix:
        Optional subdirectory of ``directory`` used as the real root.  It
        is created with ``0700`` permissions when missing.
    """

    directory: Path
    prefix: str = ""

    @field_validator("directory")
    @classmethod
    def _directory_must_exist(cls, value: Path) -> Path:
        if not str(value):
            raise ValueError("directory must not be empty")
        if not value.is_dir():
            raise ValueError(f"directory does not exist: {value}")
        return value

    @field_validator("prefix")
    @classmethod
    def _prefix_is_a_name(cls, value: str) -> str:
        if value and (value in {".", ".."} or "/" in value or "\\" in value):
            raise ValueError(f"prefix must be a plain directory name, got {value!r}")
        return value

    @property
    def root(self) -> Path:
        """Directory under which shard subdirectories live."""
        return self.directory / self.prefix if self.prefix else self.directory


class ColumnNames(BaseModel):
    """Column names used by DatabaseStore."""

    model_config = {"frozen": True, "extra": "forbid"}

    id: str = "id"
    data: str = "data"
    timestamp: str = "timestamp"
    ip: str = "ip"
    ua: str = "ua"
    owner_id: str = "user_id"


class DatabaseConfig(StoreConfig):
    """DatabaseStore settings.

    Parameters
    ----------
    url:
        SQLAlchemy database URL, e.g. ``mysql+pymysql://u:p@db/app``.
    table:
        Session table name.
    columns:
        Column name mapping.
    save_ip / save_ua:
        Store the client IP / User-Agent on insert even when not matching.
    save_owner_id:
        Store the owner id supplied by the host on every write.
    lock_timeout:
        Seconds to wait for the named lock of one identifier.
    lock_sleep:
        Poll interval for dialects without a blocking named lock.
    """

    url: str
    table: str = "Sessions"
    columns: ColumnNames = Field(default_factory=ColumnNames)
    save_ip: bool = False
    save_ua: bool = False
    save_owner_id: bool = False
    lock_timeout: float = Field(default=30.0, gt=0)
    lock_sleep: float = Field(default=0.1, gt=0)

    @field_validator("url")
    @classmethod
    def _url_is_parseable(cls, value: str) -> str:
        if not value:
            raise ValueError("url must not be empty")
        try:
            make_url(value)
        except ArgumentError as exc:
            raise ValueError(str(exc)) from exc
        return value

    def describe(self) -> dict[str, Any]:
        data = super().describe()
        data["url"] = make_url(self.url).render_as_string(hide_password=True)
        return data


class CacheConfig(StoreConfig):
    """Lock settings shared by RedisStore and MemcachedStore.

    Parameters
    ----------
    prefix:
        String prepended to every key.
    lock_attempts:
        Maximum number of tries to acquire an identifier lock.
    lock_sleep:
        Seconds to sleep between lock attempts.
    lock_ttl:
        Seconds a lock key lives without being refreshed.
    """

    prefix: str = ""
    lock_attempts: int = Field(default=60, ge=1)
    lock_sleep: float = Field(default=1.0, ge=0)
    lock_ttl: int = Field(default=600, gt=0)


class RedisConfig(CacheConfig):
    """RedisStore settings."""

    host: str = "127.0.0.1"
    port: int = Field(default=6379, gt=0, lt=65536)
    timeout: float | None = None
    password: SecretStr | None = None
    database: int | None = Field(default=None, ge=0)

    @field_validator("host")
    @classmethod
    def _host_required(cls, value: str) -> str:
        if not value:
            raise ValueError("host must not be empty")
        return value


class MemcachedServer(BaseModel):
    """One Memcached server of the pool."""

    model_config = {"frozen": True, "extra": "forbid"}

    host: str = Field(min_length=1)
    port: int = Field(default=11211, gt=0, lt=65536)
    weight: int = Field(default=0, ge=0)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class MemcachedConfig(CacheConfig):
    """MemcachedStore settings.

    Parameters
    ----------
    servers:
        Server pool.  Duplicate ``host:port`` entries are skipped.
    timeout:
        Socket read/write timeout in seconds.
    connect_timeout:
        Socket connect timeout in seconds.
    """

    servers: tuple[MemcachedServer, ...] = Field(
        default=(MemcachedServer(host="127.0.0.1"),), min_length=1
    )
    timeout: float | None = None
    connect_timeout: float | None = None


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

CONFIG_CLASSES: dict[str, type[StoreConfig]] = {
    "files": FilesConfig,
    "database": DatabaseConfig,
    "redis": RedisConfig,
    "memcached": MemcachedConfig,
}


def build_config(driver: str, settings: dict[str, Any]) -> StoreConfig:
    """Validate ``settings`` against the config model of ``driver``.

    Raises
    ------
    ConfigurationError
        If the driver is unknown or the settings are invalid.
    """
    try:
        config_class = CONFIG_CLASSES[driver]
    except KeyError:
        raise ConfigurationError(
            f"Unknown session driver {driver!r}; expected one of {sorted(CONFIG_CLASSES)}"
        ) from None
    try:
        return config_class.model_validate(settings)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid {driver} session config: {exc}") from exc


def load_config(path: str | Path) -> tuple[str, StoreConfig]:
    """Load a driver name and its validated config from a YAML file.

    The file must be a mapping with a ``driver`` key; every other key is
    passed to the driver's config model.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or parsed, or the config is invalid.
    """
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Could not load session config {str(path)!r}: {exc}") from exc
    if not isinstance(raw, dict) or "driver" not in raw:
        raise ConfigurationError(f"Session config {str(path)!r} must be a mapping with a 'driver' key")
    settings = dict(raw)
    driver = str(settings.pop("driver"))
    return driver, build_config(driver, settings)
