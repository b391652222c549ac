"""Plugin type registry, preset plugins and the per-plugin handle."""

from __future__ import annotations

import dataclasses
import threading
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Union

if TYPE_CHECKING:
    import logging

    from .server import Mosdns

NewPluginArgsFunc = Callable[[], Any]
NewPluginFunc = Callable[["BP", Any], Any]
NewPresetPluginFunc = Callable[["BP"], Any]

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

_SIMPLE_TYPES: Dict[str, Any] = {
    "int": int,
    "str": str,
    "bool": bool,
    "float": float,
    "object": object,
    "list": list,
    "dict": dict,
    "None": type(None),
    "NoneType": type(None),
    "Any": Any,
    "typing.Any": Any,
}
_LIST_NAMES = {"List", "list", "typing.List", "Sequence", "typing.Sequence"}
_DICT_NAMES = {"Dict", "dict", "typing.Dict", "Mapping", "typing.Mapping"}
_OPTIONAL_NAMES = {"Optional", "typing.Optional"}
_UNION_NAMES = {"Union", "typing.Union"}


@dataclass(frozen=True)
class PluginTypeInfo:
    """How to build a plugin type: its constructor and its args factory."""

    new_plugin: NewPluginFunc
    new_args: NewPluginArgsFunc


_type_lock = threading.RLock()
_plugin_types: Dict[str, PluginTypeInfo] = {}

_preset_lock = threading.Lock()
_preset_funcs: Dict[str, NewPresetPluginFunc] = {}


def reg_new_plugin_func(
    typ: str, init_func: NewPluginFunc, args_type: NewPluginArgsFunc
) -> None:
    """Register a plugin type. Raises ValueError if it is already registered."""
    with _type_lock:
        if typ in _plugin_types:
            raise ValueError(f"duplicate plugin type [{typ}]")
        _plugin_types[typ] = PluginTypeInfo(new_plugin=init_func, new_args=args_type)


def del_plugin_type(typ: str) -> None:
    """Forget a plugin type; does nothing if it is not registered."""
    with _type_lock:
        _plugin_types.pop(typ, None)


def get_plugin_type(typ: str) -> Optional[PluginTypeInfo]:
    """Return the registered type info, or None if ``typ`` is unknown."""
    with _type_lock:
        return _plugin_types.get(typ)


def get_all_plugin_types() -> List[str]:
    """Return the names of all registered plugin types."""
    with _type_lock:
        return list(_plugin_types)


def reg_new_preset_plugin_func(tag: str, f: NewPresetPluginFunc) -> None:
    """Register a plugin created at start-up under ``tag``.

    Raises ValueError if the tag is already registered.
    """
    with _preset_lock:
        if tag in _preset_funcs:
            raise ValueError(f"preset plugin {tag} has already been registered")
        _preset_funcs[tag] = f


def load_new_preset_plugin_funcs() -> Dict[str, NewPresetPluginFunc]:
    """Return a copy of the preset plugin registry."""
    with _preset_lock:
        return dict(_preset_funcs)


def _split_top(text: str, sep: str) -> List[str]:
    """Split ``text`` at ``sep`` where it is not nested in brackets."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        if ch == sep and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append("".join(current).strip())
    return parts


def _resolve_type(tp: Any) -> Any:
    """Turn a field annotation, possibly a string, into a usable type."""
    if not isinstance(tp, str):
        return tp
    text = tp.strip().strip("'\"")
    alternatives = _split_top(text, "|")
    if len(alternatives) > 1:
        return Union[tuple(_resolve_type(a) for a in alternatives)]
    if text.endswith("]") and "[" in text:
        bracket = text.index("[")
        name = text[:bracket].strip()
        args = [_resolve_type(a) for a in _split_top(text[bracket + 1 : -1], ",")]
        if name in _LIST_NAMES:
            return List[args[0]]
        if name in _DICT_NAMES:
            return Dict[args[0], args[1] if len(args) > 1 else Any]
        if name in _OPTIONAL_NAMES:
            return Optional[args[0]]
        if name in _UNION_NAMES:
            return Union[tuple(args)]
        return Any
    return _SIMPLE_TYPES.get(text, Any)


def _convert(value: Any, tp: Any, where: str) -> Any:
    if tp is Any or tp is object:
        return value
    origin = typing.get_origin(tp)
    type_args = typing.get_args(tp)
    if origin is Union:
        if value is None and type(None) in type_args:
            return None
        errors = []
        for candidate in type_args:
            if candidate is type(None):
                continue
            try:
                return _convert(value, candidate, where)
            except (ValueError, TypeError) as e:
                errors.append(str(e))
        raise ValueError("; ".join(errors) or f"'{where}' cannot be decoded")
    if origin in (list, List):
        item_type = type_args[0] if type_args else Any
        if value is None:
            return []
        items = value if isinstance(value, (list, tuple)) else [value]
        return [_convert(v, item_type, f"{where}[{i}]") for i, v in enumerate(items)]
    if origin in (dict, Dict):
        value_type = type_args[1] if len(type_args) > 1 else Any
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError(f"'{where}' expected a map, got {type(value).__name__}")
        return {k: _convert(v, value_type, f"{where}[{k}]") for k, v in value.items()}
    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        try:
            obj = tp()
        except TypeError as e:
            raise ValueError(f"'{where}' cannot be built: {e}") from e
        _fill_dataclass(obj, value, where)
        return obj
    if tp is bool:
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
    if tp is int:
        if value is None:
            return 0
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value, 0) if value else 0
            except ValueError:
                pass
        raise ValueError(f"cannot parse '{where}' as int: {value!r}")
    if tp is float:
        if value is None:
            return 0.0
        if isinstance(value, (bool, int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value) if value else 0.0
            except ValueError:
                pass
        raise ValueError(f"cannot parse '{where}' as float: {value!r}")
    if tp is str:
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
        raise ValueError(f"'{where}' expected a string, got {type(value).__name__}")
    if isinstance(tp, type):
        if isinstance(value, tp):
            return value
        raise ValueError(f"'{where}' expected {tp.__name__}, got {type(value).__name__}")
    return value


def _fill_dataclass(obj: Any, data: Any, where: str) -> None:
    if data is None:
        return
    if not isinstance(data, Mapping):
        raise ValueError(f"'{where}' expected a map, got {type(data).__name__}")
    obj_fields = dataclasses.fields(obj)
    fields = {f.name.lower(): f.name for f in obj_fields}
    hints = {f.name: _resolve_type(f.type) for f in obj_fields}
    normalized = {str(k).lower(): v for k, v in data.items()}
    unused = sorted(set(normalized) - set(fields))
    if unused:
        raise ValueError(f"'{where}' has invalid keys: {', '.join(unused)}")
    prefix = f"{where}." if where else ""
    for key, value in normalized.items():
        name = fields[key]
        setattr(obj, name, _convert(value, hints.get(name, Any), prefix + name))


def decode_args(raw: Any, args: Any) -> Any:
    """Decode raw configuration data into ``args`` and return the result.

    A dataclass instance is filled in place: keys are matched to field
    names case-insensitively, unknown keys are rejected and scalars are
    converted weakly. A dict is updated from a mapping. Raises ValueError
    if the data does not fit.
    """
    if raw is None:
        return args
    if args is None:
        return raw
    if dataclasses.is_dataclass(args) and not isinstance(args, type):
        _fill_dataclass(args, raw, "")
        return args
    if isinstance(args, dict):
        if not isinstance(raw, Mapping):
            raise ValueError(f"expected a map, got {type(raw).__name__}")
        args.update(raw)
        return args
    return _convert(raw, type(args), "")


class BP:
    """The handle a plugin receives: its tag, its logger and the server."""

    def __init__(self, tag: str, m: "Mosdns") -> None:
        self.tag = tag
        self.m = m
        self.logger: "logging.Logger" = m.logger.getChild(tag)

    def reg_api(self, handler: Callable) -> None:
        """Mount a WSGI application under /plugins/<tag>. Call it once only."""
        self.m.reg_plugin_api(self.tag, handler)