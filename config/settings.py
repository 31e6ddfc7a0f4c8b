"""
Configuration loader for the event flow engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class ExecutorSettings:
    dispatch_timeout: float = 30.0      # seconds, used when neither task nor flow sets one
    max_steps: int = 1000               # per instance, guards against endless cycles


@dataclass
class PluginSettings:
    packages: list[str] = field(default_factory=list)   # extra packages scanned for plugins


@dataclass
class EngineSettings:
    app_name: str = "EventFlowEngine"
    debug: bool = False
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    plugins: PluginSettings = field(default_factory=PluginSettings)
    flows: list[str] = field(default_factory=list)      # flow definition YAML files


_settings: Optional[EngineSettings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> EngineSettings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "FLOW_ENGINE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = EngineSettings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "executor" in raw:
            ex = raw["executor"] or {}
            settings.executor = ExecutorSettings(
                dispatch_timeout=float(ex.get("dispatch_timeout", settings.executor.dispatch_timeout)),
                max_steps=int(ex.get("max_steps", settings.executor.max_steps)),
            )

        if "plugins" in raw:
            pl = raw["plugins"] or {}
            settings.plugins = PluginSettings(packages=list(pl.get("packages") or []))

        # Flow files are resolved relative to the config file
        base_dir = Path(config_path).parent
        for entry in raw.get("flows") or []:
            path = Path(entry)
            settings.flows.append(str(path if path.is_absolute() else base_dir / path))

    _settings = settings
    return settings


def get_settings() -> EngineSettings:
    """Get cached settings (loads on first call)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
