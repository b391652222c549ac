"""The main configuration and its loading from YAML or JSON files."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import yaml

from .logger import LogConfig

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}
_SEARCH_EXTS = ("json", "yaml", "yml")
_SUPPORTED_EXTS = {"json", "yaml", "yml"}


@dataclass
class PluginConfig:
    """One plugin entry: an optional tag, its type and its arguments."""

    tag: str = ""
    type: str = ""
    args: Any = None


@dataclass
class APIConfig:
    """The address of the HTTP API server; empty disables it."""

    http: str = ""


@dataclass
class Config:
    log: LogConfig = field(default_factory=LogConfig)
    include: List[str] = field(default_factory=list)
    plugins: List[PluginConfig] = field(default_factory=list)
    api: APIConfig = field(default_factory=APIConfig)


Converter = Callable[[Any, str], Any]


def _to_str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, bytes):
        return value.decode()
    raise ValueError(f"'{where}' expected a string, got {type(value).__name__}")


def _to_bool(value: Any, where: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value == "" or value in _FALSE:
            return False
        if value in _TRUE:
            return True
        raise ValueError(f"cannot parse '{where}' as bool: {value!r}")
    raise ValueError(f"'{where}' expected a bool, got {type(value).__name__}")


def _list_of(item: Converter) -> Converter:
    def convert(value: Any, where: str) -> list:
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [item(v, f"{where}[{i}]") for i, v in enumerate(value)]
        return [item(value, f"{where}[0]")]

    return convert


def _decode_struct(
    data: Any, where: str, converters: Dict[str, Optional[Converter]]
) -> Dict[str, Any]:
    """Decode a mapping field by field; a ``None`` converter keeps the raw value."""
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"'{where}' expected a map, got {type(data).__name__}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        normalized[str(key).lower()] = value
    unused = sorted(set(normalized) - set(converters))
    if unused:
        raise ValueError(f"'{where}' has invalid keys: {', '.join(unused)}")
    prefix = f"{where}." if where else ""
    decoded: Dict[str, Any] = {}
    for key, value in normalized.items():
        convert = converters[key]
        decoded[key] = value if convert is None else convert(value, prefix + key)
    return decoded


def _log_config(value: Any, where: str) -> LogConfig:
    return LogConfig(
        **_decode_struct(
            value, where, {"level": _to_str, "file": _to_str, "production": _to_bool}
        )
    )


def _plugin_config(value: Any, where: str) -> PluginConfig:
    return PluginConfig(
        **_decode_struct(value, where, {"tag": _to_str, "type": _to_str, "args": None})
    )


def _api_config(value: Any, where: str) -> APIConfig:
    return APIConfig(**_decode_struct(value, where, {"http": _to_str}))


def config_from_dict(data: Any) -> Config:
    """Build a :class:`Config` from parsed data.

    Keys are case-insensitive; unknown keys are rejected. Scalars are
    converted weakly (numbers to strings, "true" to True, a single value
    to a one-element list). Raises ValueError on invalid data.
    """
    return Config(
        **_decode_struct(
            data,
            "",
            {
                "log": _log_config,
                "include": _list_of(_to_str),
                "plugins": _list_of(_plugin_config),
                "api": _api_config,
            },
        )
    )


def _search_config(directory: str) -> str:
    base = os.path.abspath(directory)
    for ext in _SEARCH_EXTS:
        candidate = os.path.join(base, f"config.{ext}")
        if os.path.isfile(candidate):
            return candidate
    raise FileNotFoundError(f'config file "config" not found in [{base}]')


def _parse(text: str, ext: str) -> Any:
    try:
        if ext == "json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise ValueError(f"failed to read config: {e}") from e


def load_config(file_path: str = "") -> Tuple[Config, str]:
    """Load a configuration file; return it and the path used.

    With an empty ``file_path`` a file named "config.json", "config.yaml"
    or "config.yml" is searched in the current directory. Raises
    FileNotFoundError if no file is found and ValueError if its type is
    unsupported or its content invalid.
    """
    path = file_path if file_path else _search_config(".")
    ext = os.path.splitext(path)[1].lstrip(".").lower()
    if ext not in _SUPPORTED_EXTS:
        raise ValueError(f'failed to read config: unsupported config type "{ext}"')
    with open(path, encoding="utf-8") as f:
        text = f.read()
    data = _parse(text, ext)
    try:
        cfg = config_from_dict(data)
    except ValueError as e:
        raise ValueError(f"failed to unmarshal config: {e}") from e
    return cfg, path