"""Configuration management for scrollshot.

Configuration priority (highest to lowest):
1. CLI overrides (passed to load_config)
2. Environment variables (SCROLLSHOT_*)
3. Config file (~/.config/scrollshot/config.yaml)
4. Built-in defaults
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Any

import yaml
from platformdirs import user_config_dir

APP_NAME = "scrollshot"
ENV_PREFIX = "SCROLLSHOT"
CONFIG_DIR = Path(user_config_dir(APP_NAME))
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yaml"


@dataclass
class Config:
    """scrollshot configuration."""

    # Binary paths
    wayland_capture: str = "wayland-capture"
    capture_timeout_s: int = 10

    # Output settings
    output_dir: Path = field(default_factory=lambda: Path.home() / "Pictures" / "screenshots")
    silent_output_dir: Path = field(default_factory=lambda: Path("/tmp"))
    default_format: str = "png"
    default_quality: int = 90
    enable_clipboard: bool = True

    # Capture loop
    capture_interval_ms: int = 400
    max_frames: int = 200
    end_after_duplicates: int = 3

    # Stitching
    match_threshold: float = 0.99
    max_search_rows: int = 1200
    min_overlap_rows: int = 4
    column_step: int = 1
    initial_capacity_rows: int = 4096

    # Paths
    lock_file: Path = field(default_factory=lambda: Path("/tmp/scrollshot.lock"))
    hooks_dir: Optional[Path] = field(default_factory=lambda: CONFIG_DIR / "hooks")

    def __post_init__(self):
        # Convert string paths to Path objects
        for key in PATH_KEYS:
            value = getattr(self, key)
            if isinstance(value, str):
                setattr(self, key, Path(value))


DEFAULT_FORMATS = {"png", "jpg", "jpeg", "webp"}
PATH_KEYS = {"output_dir", "silent_output_dir", "lock_file", "hooks_dir"}
INT_KEYS = {
    "capture_timeout_s",
    "default_quality",
    "capture_interval_ms",
    "max_frames",
    "end_after_duplicates",
    "max_search_rows",
    "min_overlap_rows",
    "column_step",
    "initial_capacity_rows",
}
FLOAT_KEYS = {"match_threshold"}
BOOL_KEYS = {"enable_clipboard"}

# key -> (minimum, maximum); None leaves a side open
RANGES = {
    "capture_timeout_s": (1, None),
    "default_quality": (1, 100),
    "capture_interval_ms": (0, None),
    "max_frames": (1, None),
    "end_after_duplicates": (1, None),
    "match_threshold": (0.0, 1.0),
    "max_search_rows": (0, None),
    "min_overlap_rows": (1, None),
    "column_step": (1, None),
    "initial_capacity_rows": (0, None),
}


def _env(name: str) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}_{name}")


def _config_path_from_env() -> Optional[Path]:
    value = _env("CONFIG") or _env("CONFIG_PATH")
    if value:
        return Path(value).expanduser()
    return None


def _load_config_file(path: Path, strict: bool = False) -> dict:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        if strict:
            raise ValueError(f"Failed to parse config file {path}: {exc}")
        return {}

    if not isinstance(data, dict):
        if strict:
            raise ValueError(f"Config file {path} must be a mapping")
        return {}

    if strict:
        return data
    # Unknown keys are reported by validate_config_file, never passed to Config
    known = {f.name for f in fields(Config)}
    return {k: v for k, v in data.items() if k in known}


def _expand_path(value: Any) -> Any:
    if value is None:
        return value
    return str(Path(value).expanduser())


def config_defaults() -> dict:
    return config_to_dict(Config())


def _load_env_overrides() -> dict:
    config: dict[str, Any] = {}

    for f in fields(Config):
        value = _env(f.name.upper())
        if value is None:
            continue
        key = f.name
        if key in PATH_KEYS:
            config[key] = _expand_path(value)
        elif key in INT_KEYS:
            try:
                config[key] = int(value)
            except ValueError:
                continue
        elif key in FLOAT_KEYS:
            try:
                config[key] = float(value)
            except ValueError:
                continue
        elif key in BOOL_KEYS:
            config[key] = value.lower() in ("true", "1", "yes", "on")
        else:
            config[key] = value

    return config


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    return config_path or _config_path_from_env() or DEFAULT_CONFIG_PATH


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[dict] = None,
    strict: bool = False,
) -> Config:
    """Load configuration from all sources."""
    resolved_path = resolve_config_path(config_path)

    config_dict = config_defaults()
    config_dict.update(_load_config_file(resolved_path, strict=strict))
    config_dict.update(_load_env_overrides())

    if overrides:
        for key, value in overrides.items():
            if value is not None:
                config_dict[key] = value

    for key in PATH_KEYS:
        if key in config_dict and config_dict[key] is not None:
            config_dict[key] = _expand_path(config_dict[key])

    return Config(**config_dict)


# Global config instance (lazy loaded)
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def config_schema() -> dict:
    def _bounded(json_type: str, key: str) -> dict:
        entry: dict[str, Any] = {"type": json_type}
        low, high = RANGES.get(key, (None, None))
        if low is not None:
            entry["minimum"] = low
        if high is not None:
            entry["maximum"] = high
        return entry

    properties: dict[str, Any] = {
        "wayland_capture": {"type": "string"},
        "output_dir": {"type": "string"},
        "silent_output_dir": {"type": "string"},
        "default_format": {"type": "string", "enum": sorted(DEFAULT_FORMATS)},
        "enable_clipboard": {"type": "boolean"},
        "lock_file": {"type": "string"},
        "hooks_dir": {"type": ["string", "null"]},
    }
    for key in sorted(INT_KEYS):
        properties[key] = _bounded("integer", key)
    for key in sorted(FLOAT_KEYS):
        properties[key] = _bounded("number", key)

    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
    }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config_dict(data: Any) -> list[str]:
    errors: list[str] = []
    if not isinstance(data, dict):
        return ["Config must be a mapping/object"]

    props = config_schema().get("properties", {})

    for key in data.keys():
        if key not in props:
            errors.append(f"Unknown config key: {key}")

    for key, value in data.items():
        if key not in props:
            continue
        expected = props[key].get("type")
        if isinstance(expected, list):
            if value is None and "null" in expected:
                continue
            if "string" in expected and isinstance(value, str):
                continue
            errors.append(f"{key} must be one of types: {', '.join(expected)}")
            continue

        if expected == "string" and not isinstance(value, str):
            errors.append(f"{key} must be a string")
            continue
        if expected == "integer" and not _is_int(value):
            errors.append(f"{key} must be an integer")
            continue
        if expected == "number" and not _is_number(value):
            errors.append(f"{key} must be a number")
            continue
        if expected == "boolean" and not isinstance(value, bool):
            errors.append(f"{key} must be a boolean")
            continue

        if key == "default_format" and value not in DEFAULT_FORMATS:
            errors.append(f"default_format must be one of: {', '.join(sorted(DEFAULT_FORMATS))}")

        low, high = RANGES.get(key, (None, None))
        if low is not None and high is not None and not low <= value <= high:
            errors.append(f"{key} must be between {low} and {high}")
        elif low is not None and value < low:
            errors.append(f"{key} must be >= {low}")

    return errors


def validate_config_file(config_path: Optional[Path] = None) -> list[str]:
    path = resolve_config_path(config_path)
    if not path.exists():
        return []
    data = _load_config_file(path, strict=True)
    return validate_config_dict(data)


def config_to_dict(config: Config) -> dict:
    def _format(value: Any) -> Any:
        if isinstance(value, Path):
            return str(value)
        return value

    return {f.name: _format(getattr(config, f.name)) for f in fields(Config)}
