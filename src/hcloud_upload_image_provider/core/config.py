"""
Runtime configuration for the provider CLI.

Layers, lowest to highest precedence:
  1) built-in defaults
  2) the first YAML file found (project dir, user config dir, /etc)
  3) environment: HUIP_<SECTION>__<KEY>=value (a .env file is honoured)
  4) CLI overrides

String values may reference the environment as "${VAR}", also inline
("${HOME}/bin/hcloud-upload-image").
"""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv


class ConfigError(ValueError):
    """Raised when runtime configuration cannot be resolved."""


@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False
    timeout_sec: Optional[float] = None   # overall deadline per operation


@dataclass
class HcloudSection:
    endpoint: str = "https://api.hetzner.cloud/v1"
    timeout_sec: float = 30.0
    retries: int = 3
    backoff_base_sec: float = 0.5


@dataclass
class UploaderSection:
    binary: str = "hcloud-upload-image"


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"
    file_level: str = "DEBUG"


_SECTIONS = {
    "app": AppSection,
    "hcloud": HcloudSection,
    "uploader": UploaderSection,
    "logging": LoggingSection,
}


@dataclass
class AppConfig:
    app: AppSection
    hcloud: HcloudSection
    uploader: UploaderSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """Stable for the lifetime of the config; generated on first use."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


DEFAULT_FILES: Tuple[str, ...] = (
    "./hcloud-upload-image-provider.yml",
    os.path.expanduser("~/.config/hcloud-upload-image-provider/config.yml"),
    "/etc/hcloud-upload-image-provider/config.yml",
)


def _to_bool(x: Any) -> bool:
    if isinstance(x, bool):
        return x
    return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}


def _opt_float(x: Any) -> Optional[float]:
    return None if x is None or x == "" else float(x)


# dotted path -> converter; anything not listed stays a string
_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "app.dry_run": _to_bool,
    "app.timeout_sec": _opt_float,
    "hcloud.timeout_sec": float,
    "hcloud.retries": int,
    "hcloud.backoff_base_sec": float,
}

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _defaults() -> Dict[str, Dict[str, Any]]:
    return {name: dict(vars(cls())) for name, cls in _SECTIONS.items()}


def _merge(*layers: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Section-wise merge; later layers win key by key."""
    out: Dict[str, Dict[str, Any]] = {}
    for layer in layers:
        for section, values in (layer or {}).items():
            if not isinstance(values, dict):
                raise ConfigError(f"Section '{section}' must be a mapping")
            out.setdefault(section, {}).update(values)
    return out


def _file_layer(files: Tuple[str, ...]) -> Dict[str, Any]:
    path = next((p for p in files if os.path.exists(p)), None)
    if path is None:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _env_layer(prefix: str) -> Dict[str, Dict[str, Any]]:
    """HUIP_HCLOUD__RETRIES=5 -> {"hcloud": {"retries": "5"}}; unknown sections are ignored."""
    out: Dict[str, Dict[str, Any]] = {}
    for name, value in os.environ.items():
        if not name.startswith(prefix):
            continue
        section, sep, key = name[len(prefix):].lower().partition("__")
        if sep and section in _SECTIONS:
            out.setdefault(section, {})[key] = value
    return out


def _interpolate(value: Any) -> Any:
    if isinstance(value, str):
        return _VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    return value


def _resolve(merged: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    resolved: Dict[str, Dict[str, Any]] = {}
    for section, values in merged.items():
        for key, raw in values.items():
            value = _interpolate(raw)
            convert = _CONVERTERS.get(f"{section}.{key}")
            if convert is not None and value is not None:
                try:
                    value = convert(value)
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"Invalid value for {section}.{key}: {raw!r}") from e
            resolved.setdefault(section, {})[key] = value
    return resolved


def _validate(cfg: Dict[str, Dict[str, Any]]) -> None:
    problems = []
    if not cfg["hcloud"].get("endpoint"):
        problems.append("hcloud.endpoint is required")
    if not cfg["uploader"].get("binary"):
        problems.append("uploader.binary is required")
    if not cfg["hcloud"].get("timeout_sec") or cfg["hcloud"]["timeout_sec"] <= 0:
        problems.append("hcloud.timeout_sec must be > 0")
    if cfg["hcloud"].get("retries", 0) < 0:
        problems.append("hcloud.retries must be >= 0")
    deadline = cfg["app"].get("timeout_sec")
    if deadline is not None and deadline <= 0:
        problems.append("app.timeout_sec must be > 0")
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))


def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = DEFAULT_FILES,
    env_prefix: str = "HUIP_",
    *,
    use_dotenv: bool = True,
) -> AppConfig:
    """Build an AppConfig; see the module docstring for precedence."""
    if use_dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    unknown = set(cli_overrides or {}) - set(_SECTIONS)
    file_cfg = _file_layer(files)
    unknown |= set(file_cfg) - set(_SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}")

    merged = _resolve(_merge(_defaults(), file_cfg, _env_layer(env_prefix), cli_overrides))
    _validate(merged)

    try:
        return AppConfig(**{name: cls(**merged[name]) for name, cls in _SECTIONS.items()})
    except TypeError as e:
        raise ConfigError(f"Unknown configuration key: {e}") from e
