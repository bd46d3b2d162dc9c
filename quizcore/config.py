"""
Configuration management for quizcore stores.

The configuration is stored as a TOML file in the store directory.
It selects the storage backend and sets the ingestion limits.
"""

import os
import tomllib
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# tomli_w for writing TOML (tomllib is read-only)
try:
    import tomli_w
except ImportError:
    tomli_w = None  # type: ignore


CONFIG_FILENAME = "quizcore.toml"
CONFIG_VERSION = 1
DEFAULT_STORE_DIR = ".quizcore"


@dataclass
class IngestLimits:
    """Size caps applied to ingestion requests and their records."""
    max_batch_standard: int = 100
    max_batch_privileged: int = 1000
    max_question_length: int = 1000
    max_answer_length: int = 500
    max_incorrect_answers: int = 4
    max_explanation_length: int = 2000
    max_source_length: int = 50
    max_category_length: int = 100
    max_label_length: int = 30
    max_labels: int = 50

    def max_batch(self, is_privileged: bool) -> int:
        return self.max_batch_privileged if is_privileged else self.max_batch_standard


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    backend: str = "sqlite"
    limits: IngestLimits = field(default_factory=IngestLimits)
    audit_enabled: bool = True

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database for the sqlite backend."""
        return self.path / "items.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_store_path() -> Path:
    """Store directory: QUIZCORE_STORE_PATH, or ~/.quizcore."""
    env = os.environ.get("QUIZCORE_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / DEFAULT_STORE_DIR


def _parse_limits(section: dict[str, Any]) -> IngestLimits:
    known = {f.name for f in fields(IngestLimits)}
    values = {k: int(v) for k, v in section.items() if k in known}
    return IngestLimits(**values)


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    try:
        limits = _parse_limits(data.get("limits", {}))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid [limits] in {config_path}: {e}") from e

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", "sqlite"),
        limits=limits,
        audit_enabled=bool(data.get("audit", {}).get("enabled", True)),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    if tomli_w is None:
        raise RuntimeError("tomli_w is required to save config. Install with: pip install tomli-w")

    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "limits": {f.name: getattr(config.limits, f.name) for f in fields(IngestLimits)},
        "audit": {"enabled": config.audit_enabled},
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
