"""Configuration loader for the lnreader data layer.

Settings come from the packaged ``config.yaml``, an optional YAML file named by
``LNREADER_CONFIG`` merged on top, and finally environment variables whose
names mirror the key path (``queue.max_retries`` -> ``QUEUE_MAX_RETRIES``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, MutableMapping

import yaml
from dotenv import load_dotenv

from lnreader.db.manager.types import DEFAULT_RETRY_ON, QueueOptions, RetryOptions

LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LNREADER_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

_cached: dict[str, Any] | None = None


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"{path} must define a mapping")
    return dict(data)


def _merge(target: MutableMapping[str, Any], layer: Mapping[str, Any]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, MutableMapping):
            _merge(current, value)
        else:
            target[key] = value


def _leaves(
    node: MutableMapping[str, Any], path: tuple[str, ...] = ()
) -> Iterator[tuple[MutableMapping[str, Any], str, str]]:
    for key, value in node.items():
        if isinstance(value, MutableMapping):
            yield from _leaves(value, path + (str(key),))
        else:
            yield node, key, "_".join(path + (str(key),)).upper()


def _coerce(raw: str, template: Any) -> Any:
    if isinstance(template, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(template, int):
        return int(raw)
    if isinstance(template, float):
        return float(raw)
    if isinstance(template, list):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw


def _overlay_environment(config: MutableMapping[str, Any]) -> None:
    for parent, key, env_name in list(_leaves(config)):
        raw = os.getenv(env_name)
        if raw is not None:
            parent[key] = _coerce(raw, parent[key])


def load_config(reload: bool = False) -> dict[str, Any]:
    """Return the merged settings mapping, cached after the first call."""
    global _cached
    if _cached is not None and not reload:
        return _cached

    load_dotenv()
    config = _read_yaml(DEFAULT_CONFIG_PATH)

    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        override_path = Path(override).expanduser().resolve()
        if not override_path.exists():
            raise FileNotFoundError(f"Configuration file not found at {override_path}")
        if override_path != DEFAULT_CONFIG_PATH:
            _merge(config, _read_yaml(override_path))

    _overlay_environment(config)
    _cached = config
    return config


def reset_config_cache() -> None:
    global _cached
    _cached = None


def _resolve_path(value: str | os.PathLike[str] | None, base: Path) -> Path:
    if value is None:
        return base
    candidate = Path(value).expanduser()
    return candidate if candidate.is_absolute() else (base / candidate).resolve()


_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}
_SYNCHRONOUS_MODES = {"OFF", "NORMAL", "FULL", "EXTRA"}
_TEMP_STORES = {"DEFAULT", "FILE", "MEMORY"}


def _choice(value: Any, allowed: set[str], *, label: str) -> str:
    candidate = str(value).strip().upper()
    if candidate not in allowed:
        raise ValueError(f"{label} must be one of {sorted(allowed)} (got {value!r})")
    return candidate


def _guard_directory(path: Path, *, label: str) -> Path:
    """Ensure ``path`` does not resolve to the filesystem root."""

    resolved = path.resolve()
    if resolved == Path(resolved.anchor):
        raise ValueError(f"{label} may not be the filesystem root ({resolved})")
    return path


@dataclass(slots=True)
class DatabaseConfig:
    """Runtime settings for the embedded store and its write queue."""

    db_path: Path
    storage_dir: Path
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"
    temp_store: str = "MEMORY"
    busy_timeout_ms: int = 5000
    cache_size: int = 10000
    foreign_keys: bool = True
    default_category_name: str = "Default"
    local_category_name: str = "Local"
    queue_max_retries: int = 2
    queue_backoff_ms: int = 50
    queue_retry_on: list[str] = field(default_factory=lambda: list(DEFAULT_RETRY_ON))
    debug: bool = False

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any], *, data_dir: Path) -> "DatabaseConfig":
        database = dict(config.get("database") or {})
        categories = dict(config.get("categories") or {})
        queue = dict(config.get("queue") or {})
        storage = dict(config.get("storage") or {})

        db_dir = _guard_directory(
            _resolve_path(database.get("location"), data_dir), label="DATABASE_LOCATION"
        )
        db_path = db_dir / str(database.get("name") or "lnreader.db")
        storage_dir = _guard_directory(
            _resolve_path(storage.get("novels"), data_dir), label="STORAGE_NOVELS"
        )

        return cls(
            db_path=db_path,
            storage_dir=storage_dir,
            journal_mode=_choice(
                database.get("journal_mode", "WAL"), _JOURNAL_MODES, label="DATABASE_JOURNAL_MODE"
            ),
            synchronous=_choice(
                database.get("synchronous", "NORMAL"), _SYNCHRONOUS_MODES, label="DATABASE_SYNCHRONOUS"
            ),
            temp_store=_choice(
                database.get("temp_store", "MEMORY"), _TEMP_STORES, label="DATABASE_TEMP_STORE"
            ),
            busy_timeout_ms=max(0, int(database.get("busy_timeout_ms", 5000))),
            cache_size=int(database.get("cache_size", 10000)),
            foreign_keys=bool(database.get("foreign_keys", True)),
            default_category_name=str(categories.get("default_name", "Default")),
            local_category_name=str(categories.get("local_name", "Local")),
            queue_max_retries=max(0, int(queue.get("max_retries", 2))),
            queue_backoff_ms=max(0, int(queue.get("backoff_ms", 50))),
            queue_retry_on=[
                str(item)
                for item in queue.get("retry_on_message_includes", DEFAULT_RETRY_ON)
            ],
            debug=bool(queue.get("debug", False)),
        )

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        default_data_dir = Path.cwd() / "data"
        data_dir = _guard_directory(
            _resolve_path(os.getenv("DATA_DIR"), default_data_dir), label="DATA_DIR"
        )
        config = cls.from_mapping(load_config(), data_dir=data_dir)
        LOGGER.debug("Resolved database path %s", config.db_path)
        return config

    def ensure_dirs(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def pragmas(self) -> list[str]:
        return [
            f"PRAGMA journal_mode = {self.journal_mode}",
            f"PRAGMA synchronous = {self.synchronous}",
            f"PRAGMA temp_store = {self.temp_store}",
            f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}",
            f"PRAGMA cache_size = {int(self.cache_size)}",
            f"PRAGMA foreign_keys = {'ON' if self.foreign_keys else 'OFF'}",
        ]

    def queue_options(self) -> QueueOptions:
        return QueueOptions(
            retry=RetryOptions(
                max_retries=self.queue_max_retries,
                backoff_ms=self.queue_backoff_ms,
                retry_on_message_includes=list(self.queue_retry_on),
            )
        )


__all__ = [
    "CONFIG_ENV_VAR",
    "DatabaseConfig",
    "load_config",
    "reset_config_cache",
]
