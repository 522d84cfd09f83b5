"""Configuration loading helpers for the headline harvester."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from .models import GlobalConfig

GLOBAL_CONFIG_FILENAME = "harvester.yaml"
HOME_ENV_VAR = "HEADLINE_HARVESTER_HOME"
API_KEY_ENV_VAR = "HEADLINE_HARVESTER_API_KEY"


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV_VAR)
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path.cwd()).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO and schema validation.

    A missing config file is created with defaults on first load. Relative
    database paths are anchored at the project root, and the provider API key
    from ``HEADLINE_HARVESTER_API_KEY`` wins over the one in the file.
    """

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            payload = _read_file(path)
            global_cfg = GlobalConfig.model_validate(payload)
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        global_cfg = self._apply_environment(global_cfg)
        self._global_cache = global_cfg.resolve_paths(self.locator.project_root)
        return self._global_cache

    def save_global_config(self, config: GlobalConfig) -> None:
        path = self.locator.global_config_path()
        payload = config.model_dump(mode="json")
        _write_file(path, payload)
        self._global_cache = None

    def reload(self) -> GlobalConfig:
        self._global_cache = None
        return self.load_global_config()

    @staticmethod
    def _apply_environment(config: GlobalConfig) -> GlobalConfig:
        api_key = os.environ.get(API_KEY_ENV_VAR)
        if not api_key:
            return config
        provider = config.provider.model_copy(update={"api_key": api_key})
        return config.model_copy(update={"provider": provider})


__all__ = [
    "API_KEY_ENV_VAR",
    "ConfigLocator",
    "ConfigRepository",
    "HOME_ENV_VAR",
]
