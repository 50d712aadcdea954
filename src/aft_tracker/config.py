"""Project-scoped tracker configuration in .aft/config.yaml.

Example::

    database:
      path: .aft/aft.db
    status:
      strict: false
      default_variant: standard
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ruamel.yaml import YAML

CONFIG_DIRNAME = ".aft"
CONFIG_FILENAME = "config.yaml"
DEFAULT_DB_PATH = Path(CONFIG_DIRNAME) / "aft.db"


class TrackerConfigError(RuntimeError):
    """Raised when tracker configuration is invalid."""


@dataclass(slots=True)
class TrackerConfig:
    """Settings read from .aft/config.yaml; every key is optional."""

    db_path: Path = DEFAULT_DB_PATH
    strict_status: bool = False
    default_variant: str = "standard"

    def to_dict(self) -> dict[str, object]:
        return {
            "database": {"path": str(self.db_path)},
            "status": {
                "strict": self.strict_status,
                "default_variant": self.default_variant,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, object] | None) -> "TrackerConfig":
        if not isinstance(data, dict):
            return cls()

        db_path = DEFAULT_DB_PATH
        database = data.get("database")
        if isinstance(database, dict):
            raw_path = database.get("path")
            if isinstance(raw_path, str) and raw_path.strip():
                db_path = Path(raw_path.strip())

        strict_status = False
        default_variant = "standard"
        status = data.get("status")
        if isinstance(status, dict):
            strict_raw = status.get("strict", False)
            if not isinstance(strict_raw, bool):
                raise TrackerConfigError(
                    f"status.strict must be true or false, got {strict_raw!r}"
                )
            strict_status = strict_raw
            variant_raw = status.get("default_variant")
            if isinstance(variant_raw, str) and variant_raw.strip():
                default_variant = variant_raw.strip()

        return cls(
            db_path=db_path,
            strict_status=strict_status,
            default_variant=default_variant,
        )

    def resolve_db_path(self, project_root: Path) -> Path:
        """Absolute database path; relative paths are taken from *project_root*."""
        if self.db_path.is_absolute():
            return self.db_path
        return project_root / self.db_path


def locate_project_root(start: Path) -> Path | None:
    """Walk up from *start* to the first directory containing .aft/."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / CONFIG_DIRNAME).is_dir():
            return candidate
    return None


def _config_path(project_root: Path) -> Path:
    return project_root / CONFIG_DIRNAME / CONFIG_FILENAME


def load_config(project_root: Path) -> TrackerConfig:
    """Load config from .aft/config.yaml, falling back to defaults if absent."""
    config_path = _config_path(project_root)
    if not config_path.exists():
        return TrackerConfig()

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle) or {}
    except Exception as exc:
        raise TrackerConfigError(f"Failed to parse {config_path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise TrackerConfigError(f"{config_path} must contain a mapping")
    return TrackerConfig.from_dict(payload)


def save_config(project_root: Path, config: TrackerConfig) -> None:
    """Persist config into .aft/config.yaml, preserving unrelated sections."""
    config_path = _config_path(project_root)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    yaml = YAML()
    yaml.preserve_quotes = True

    payload: dict = {}
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.load(handle) or {}
        if isinstance(loaded, dict):
            payload = loaded

    payload.update(config.to_dict())

    with config_path.open("w", encoding="utf-8") as handle:
        yaml.dump(payload, handle)
