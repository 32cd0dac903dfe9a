"""Application configuration defaults and the JSON settings file."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict

from notefinder.embedding.base import ProviderConfig
from notefinder.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

DATA_DIR_NAME = ".notefinder"
SETTINGS_FILE = "settings.json"


@dataclass(slots=True)
class AppConfig:
    vault_path: Path | None = None
    data_dir: Path | None = None
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    snapshot_name: str = "chunks.npz"
    hashes_name: str = "file-hashes.json"
    usage_name: str = "usage-stats.json"
    batch_size: int = 10
    interval: float = 1.0
    autosave_minutes: float = 5.0
    error_cooldown: float = 60.0
    similar_limit: int = 5
    include_frontmatter: bool = False
    exclude_folder_patterns: list[str] = field(default_factory=list)
    exclude_regex_patterns: list[str] = field(default_factory=list)

    def resolve_vault_path(self, base_dir: Path | None = None) -> Path:
        vault = Path(self.vault_path) if self.vault_path is not None else Path(".")
        if vault.is_absolute() or base_dir is None:
            return vault
        return base_dir / vault

    def resolve_data_dir(self, base_dir: Path | None = None) -> Path:
        """Data lives in ``<vault>/.notefinder`` unless set explicitly."""
        if self.data_dir is None:
            return self.resolve_vault_path(base_dir) / DATA_DIR_NAME
        data_dir = Path(self.data_dir)
        if data_dir.is_absolute() or base_dir is None:
            return data_dir
        return base_dir / data_dir

    def with_provider(self, **changes: Any) -> "AppConfig":
        return replace(self, provider=replace(self.provider, **changes))

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["provider"] = asdict(self.provider)
        for key in ("vault_path", "data_dir"):
            if data[key] is not None:
                data[key] = str(data[key])
        # API keys stay out of the settings file.
        data["provider"].pop("api_key", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        unknown = sorted(set(data) - known)
        if unknown:
            LOGGER.debug("Ignoring unknown settings: %s", ", ".join(unknown))

        provider = values.pop("provider", None) or {}
        if not isinstance(provider, dict):
            raise ConfigurationError("'provider' must be an object")
        provider_fields = {f.name for f in fields(ProviderConfig)}
        values["provider"] = ProviderConfig(
            **{key: value for key, value in provider.items() if key in provider_fields}
        )
        for key in ("vault_path", "data_dir"):
            if values.get(key) is not None:
                values[key] = Path(values[key])
        return cls(**values)

    @classmethod
    def load(cls, path: Path) -> "AppConfig":
        """Read settings from ``path``; a missing file yields the defaults."""
        if not path.exists():
            LOGGER.debug("No settings file at %s, using defaults", path)
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Cannot read settings file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a JSON object")
        return cls.from_dict(data)

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
