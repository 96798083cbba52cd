"""Configuration loading for the SDNext benchmark worker."""

from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Tuple

import yaml


ENV_CONFIG_PATH = "SDNEXT_BENCHMARK_CONFIG"


DEFAULT_CONFIG: Dict[str, Any] = {
    "sdnext": {
        "url": "http://localhost:7860",
        "probe_timeout": 10.0,
        "refiner_checkpoint": None,
    },
    "benchmark": {
        "size": 10,
        "batch_size": 4,
        "output_dir": "images",
        "summary_dir": None,
        "drain_timeout": 60.0,
    },
    "readiness": {
        "max_attempts": 300,
        "max_failures": 10,
        "interval_seconds": 1.0,
        "startup_marker": "Startup time:",
    },
    "job": {
        "prompt": "cat",
        "steps": 35,
        "width": 1216,
        "height": 896,
        "cfg_scale": 0.7,
        "send_images": True,
        "refiner_steps": None,
        "refiner_start": None,
    },
    "queue": {
        "url": None,
        "name": None,
        "poll_interval": 1.0,
        "timeout": 30.0,
    },
    "reporting": {
        "url": None,
        "benchmark_id": None,
        "timeout": 30.0,
    },
    "auth": {
        "header": "X-Api-Key",
        "key": None,
    },
    "logging": {
        "console_level": "INFO",
        "file_level": "DEBUG",
        "json_logs": False,
        "color": True,
        "log_dir": None,
    },
}

# Environment variable -> (section, key)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "SDNEXT_URL": ("sdnext", "url"),
    "REFINER_CHECKPOINT": ("sdnext", "refiner_checkpoint"),
    "OUTPUT_DIR": ("benchmark", "output_dir"),
    "BENCHMARK_SIZE": ("benchmark", "size"),
    "BATCH_SIZE": ("benchmark", "batch_size"),
    "SUMMARY_DIR": ("benchmark", "summary_dir"),
    "REPORTING_URL": ("reporting", "url"),
    "BENCHMARK_ID": ("reporting", "benchmark_id"),
    "REPORTING_AUTH_HEADER": ("auth", "header"),
    "REPORTING_API_KEY": ("auth", "key"),
    "QUEUE_URL": ("queue", "url"),
    "QUEUE_NAME": ("queue", "name"),
    "LOG_LEVEL": ("logging", "console_level"),
    "LOG_DIR": ("logging", "log_dir"),
}


@dataclass(frozen=True)
class ConfigLoadResult:
    """Container for the merged configuration."""

    config: Dict[str, Any]
    sources: Tuple[str, ...]


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, MutableMapping):
        raise ValueError(f"Configuration file {path} must contain a mapping at the root")
    return dict(data)


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MutableMapping)
            and isinstance(value, MutableMapping)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _coerce(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the default value."""

    if isinstance(default, bool):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def _env_overlay(environ: Mapping[str, str]) -> Dict[str, Any]:
    overlay: Dict[str, Dict[str, Any]] = {}
    for variable, (section, key) in ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw is None:
            continue
        if raw.strip() == "":
            value: Any = None
        else:
            try:
                value = _coerce(raw, DEFAULT_CONFIG[section][key])
            except ValueError as exc:
                raise ValueError(f"Invalid value for {variable}: {raw!r}") from exc
        overlay.setdefault(section, {})[key] = value
    return overlay


def load_config(
    path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    include_sources: bool = False,
) -> ConfigLoadResult | Dict[str, Any]:
    """Merge defaults, an optional YAML file, and environment overrides."""

    env = os.environ if environ is None else environ
    config = deepcopy(DEFAULT_CONFIG)
    sources: List[str] = []

    config_path = path or env.get(ENV_CONFIG_PATH)
    if config_path:
        resolved = Path(config_path).expanduser()
        config = _deep_merge(config, _load_yaml(resolved))
        sources.append(str(resolved.resolve()))

    overlay = _env_overlay(env)
    if overlay:
        config = _deep_merge(config, overlay)
        sources.append("<environment>")

    result = ConfigLoadResult(config=config, sources=tuple(sources))
    if include_sources:
        return result
    return result.config


__all__ = ["DEFAULT_CONFIG", "ENV_OVERRIDES", "ConfigLoadResult", "load_config"]
