"""Loading of the *procwatch* configuration file (YAML or JSON)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

__all__ = [
    "ConfigError",
    "ScriptNotFoundError",
    "ScriptConfig",
    "WatcherConfig",
    "LoggerConfig",
    "ProcwatchConfig",
    "find_config_file",
    "load_config",
    "parse_config",
]

logger = logging.getLogger(__name__)

ENV_CONFIG = "PROCWATCH_CONFIG"

CONFIG_FILENAMES = (
    "procwatch.yml",
    "procwatch.yaml",
    "procwatch.json",
    "scripts.yml",
    "scripts.yaml",
    "scripts.json",
)


class ConfigError(ValueError):
    """The configuration file is missing, unreadable or malformed."""


class ScriptNotFoundError(KeyError):
    """Requested script is not defined in the configuration."""

    def __init__(self, script: str) -> None:
        super().__init__(script)
        self.script = script

    def __str__(self) -> str:
        return f"Script '{self.script}' is not defined"


@dataclass
class ScriptConfig:
    cmd: list[str]
    watch: bool | None = None
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None


@dataclass
class WatcherConfig:
    match: list[str] = field(default_factory=lambda: ["."])
    skip: list[str] = field(default_factory=lambda: ["*/.git/*"])
    exts: list[str] = field(default_factory=list)
    interval: float = 0.35


@dataclass
class LoggerConfig:
    fullscreen: bool = False


@dataclass
class ProcwatchConfig:
    scripts: dict[str, ScriptConfig] = field(default_factory=dict)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    logger: LoggerConfig = field(default_factory=LoggerConfig)
    watch: bool = True
    path: Path | None = None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _str_list(value: Any, what: str) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"{what} must be a string or a list of strings")


def _parse_script(name: str, raw: Any) -> ScriptConfig:
    if isinstance(raw, (str, list)):
        return ScriptConfig(cmd=_str_list(raw, f"scripts.{name}"))
    if not isinstance(raw, dict):
        raise ConfigError(f"scripts.{name} must be a command or a mapping")
    if "cmd" not in raw:
        raise ConfigError(f"scripts.{name} is missing 'cmd'")

    watch = raw.get("watch")
    if watch is not None and not isinstance(watch, bool):
        raise ConfigError(f"scripts.{name}.watch must be a boolean")

    env = raw.get("env")
    if env is None:
        env = {}
    if not isinstance(env, dict):
        raise ConfigError(f"scripts.{name}.env must be a mapping")

    cwd = raw.get("cwd")
    return ScriptConfig(
        cmd=_str_list(raw["cmd"], f"scripts.{name}.cmd"),
        watch=watch,
        env={str(k): str(v) for k, v in env.items()},
        cwd=str(cwd) if cwd is not None else None,
    )


def _parse_watcher(raw: Any) -> WatcherConfig:
    if raw is None:
        return WatcherConfig()
    if not isinstance(raw, dict):
        raise ConfigError("watcher must be a mapping")

    cfg = WatcherConfig()
    if "match" in raw:
        cfg.match = _str_list(raw["match"], "watcher.match")
    if "skip" in raw:
        cfg.skip = _str_list(raw["skip"], "watcher.skip")
    if "exts" in raw:
        cfg.exts = [e.lstrip(".") for e in _str_list(raw["exts"], "watcher.exts")]
    if "interval" in raw:
        try:
            cfg.interval = float(raw["interval"])
        except (TypeError, ValueError) as exc:
            raise ConfigError("watcher.interval must be a number") from exc
        if cfg.interval < 0:
            raise ConfigError("watcher.interval must not be negative")
    return cfg


def parse_config(raw: Any, path: Path | None = None) -> ProcwatchConfig:
    """Turn the decoded YAML/JSON document *raw* into a :class:`ProcwatchConfig`."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("top level of the configuration must be a mapping")

    scripts_raw = raw.get("scripts")
    if scripts_raw is None:
        scripts_raw = {}
    if not isinstance(scripts_raw, dict):
        raise ConfigError("scripts must be a mapping")

    watch = raw.get("watch", True)
    if not isinstance(watch, bool):
        raise ConfigError("watch must be a boolean")

    logger_raw = raw.get("logger")
    if logger_raw is None:
        logger_raw = {}
    if not isinstance(logger_raw, dict):
        raise ConfigError("logger must be a mapping")

    return ProcwatchConfig(
        scripts={
            str(name): _parse_script(str(name), value)
            for name, value in scripts_raw.items()
        },
        watcher=_parse_watcher(raw.get("watcher")),
        logger=LoggerConfig(fullscreen=bool(logger_raw.get("fullscreen", False))),
        watch=watch,
        path=path,
    )


# ---------------------------------------------------------------------------
# File lookup
# ---------------------------------------------------------------------------


def find_config_file(directory: Path | None = None) -> Path | None:
    """Return the config file to use, honouring *PROCWATCH_CONFIG*."""
    if os.environ.get(ENV_CONFIG):
        return Path(os.environ[ENV_CONFIG]).expanduser()

    base = directory or Path.cwd()
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path | None = None) -> ProcwatchConfig:
    """Load the configuration at *path* (or the discovered one).

    A missing config is not an error when no explicit path was requested –
    ad-hoc commands can still be supervised with the defaults.
    """
    explicit = path is not None
    if path is None:
        path = find_config_file()
    if path is None:
        logger.debug("No configuration file found, using defaults")
        return ProcwatchConfig()

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        if explicit:
            raise ConfigError(f"Configuration file '{path}' does not exist") from exc
        raise ConfigError(f"Configuration file '{path}' disappeared") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file '{path}': {exc}") from exc

    try:
        if path.suffix == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot parse configuration file '{path}': {exc}") from exc

    logger.debug("Loaded configuration from %s", path)
    return parse_config(raw, path=path)
