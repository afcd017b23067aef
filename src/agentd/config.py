import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"

MODEL_ALIASES = {
    "sonnet": "claude-sonnet-4-20250514",
    "opus": "claude-opus-4-20250514",
    "haiku": "claude-3-5-haiku-20241022",
    "4o": "gpt-4o",
    "4": "gpt-4-turbo",
    "flash": "gemini/gemini-2.5-flash",
    "deepseek": "deepseek/deepseek-chat",
}

ENV_OVERRIDES = {
    "AGENTD_WATCH_INTERVAL": ("watch_poll_interval", float),
    "AGENTD_MAX_WORKERS": ("max_workers", int),
    "AGENTD_MODEL": ("default_model", str),
    "AGENTD_OBSERVE_PORT": ("observe_port", int),
}


class ConfigError(Exception):
    pass


def resolve_model_alias(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


@dataclass
class DaemonConfig:
    root: Path = field(default_factory=lambda: Path(get_optional_env("AGENTD_ROOT", ".")))
    watch_poll_interval: float = 5.0
    max_workers: int = 1
    default_model: str = "gpt-4o"
    max_tokens: int = 4096
    temperature: float = 0.0
    observe_port: int | None = None
    lock_timeout: float = 5.0

    @property
    def agents_dir(self) -> Path:
        return self.root / "agents"

    @property
    def proc_dir(self) -> Path:
        return self.agents_dir / "proc"

    @property
    def sessions_dir(self) -> Path:
        return self.agents_dir / "sessions"

    @property
    def templates_dir(self) -> Path:
        return self.agents_dir / "templates"

    @classmethod
    def load(cls, root: str | Path | None = None) -> "DaemonConfig":
        config = cls() if root is None else cls(root=Path(root))
        config._apply_file(config.root / CONFIG_FILENAME)
        config._apply_env()
        config.validate()
        return config

    def _apply_file(self, path: Path) -> None:
        if not path.exists():
            logger.debug(f"No {path}, using defaults")
            return
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid {path}: expected a mapping")

        section: Any = data.get("daemon") or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Invalid {path}: 'daemon' must be a mapping")

        known = {f.name for f in fields(self)} - {"root"}
        for key, value in section.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key daemon.{key}")
                continue
            setattr(self, key, value)

    def _apply_env(self) -> None:
        for env_name, (attr, cast) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                setattr(self, attr, cast(raw))
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_name}: {raw!r}") from e

    def validate(self) -> None:
        try:
            self.watch_poll_interval = float(self.watch_poll_interval)
            self.max_workers = int(self.max_workers)
            self.max_tokens = int(self.max_tokens)
            self.temperature = float(self.temperature)
            self.lock_timeout = float(self.lock_timeout)
            if self.observe_port is not None:
                self.observe_port = int(self.observe_port)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e
        if self.watch_poll_interval < 0:
            raise ConfigError("watch_poll_interval must be >= 0")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be >= 1")
        self.default_model = resolve_model_alias(str(self.default_model))
