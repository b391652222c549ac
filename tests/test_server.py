import itertools
from dataclasses import dataclass
from wsgiref.util import setup_testing_defaults

import pytest

from dnsrelay.config import Config, PluginConfig
from dnsrelay.plugin import del_plugin_type, reg_new_plugin_func, reg_new_preset_plugin_func
from dnsrelay.server import Mosdns, PluginLoadError

_names = itertools.count()


@dataclass
class EchoArgs:
    size: int = 0


class Closable:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def echo_type():
    name = f"test_server_echo_{next(_names)}"
    reg_new_plugin_func(name, lambda bp, args: (bp.tag, args), EchoArgs)
    yield name
    del_plugin_type(name)


@pytest.fixture
def closable_type():
    name = f"test_server_closable_{next(_names)}"
    reg_new_plugin_func(name, lambda bp, args: Closable(), dict)
    yield name
    del_plugin_type(name)


@pytest.fixture
def failing_type():
    name = f"test_server_failing_{next(_names)}"

    def init(bp, args):
        raise RuntimeError("boom")

    reg_new_plugin_func(name, init, dict)
    yield name
    del_plugin_type(name)


def call(app, method, path):
    environ = {}
    setup_testing_defaults(environ)
    environ["REQUEST_METHOD"] = method
    environ["PATH_INFO"] = path
    environ["QUERY_STRING"] = ""
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status

    body = b"".join(app(environ, start_response))
    return captured["status"], body


def test_for_test_get_plugin():
    p = object()
    m = Mosdns.for_test({"a": p})
    assert m.get_plugin("a") is p
    assert m.get_plugin("missing") is None


def test_new_plugin_decodes_args(echo_type):
    m = Mosdns.for_test({})
    m.new_plugin(PluginConfig(tag="e", type=echo_type, args={"size": "7"}))
    tag, args = m.get_plugin("e")
    assert tag == "e"
    assert args == EchoArgs(size=7)


def test_new_plugin_same_type_args_passed_through(echo_type):
    m = Mosdns.for_test({})
    given = EchoArgs(size=3)
    m.new_plugin(PluginConfig(tag="e", type=echo_type, args=given))
    assert m.get_plugin("e")[1] is given


def test_new_plugin_anonymous_tag(echo_type):
    m = Mosdns.for_test({})
    m.new_plugin(PluginConfig(type=echo_type))
    assert m.get_plugin(f"anonymouse_{echo_type}_0") is not None
    assert m.get_plugin(f"anonymouse_{echo_type}_0")[0] == f"anonymouse_{echo_type}_0"


def test_new_plugin_errors(echo_type):
    m = Mosdns.for_test({"dup": object()})
    with pytest.raises(ValueError, match="duplicated plugin tag dup"):
        m.new_plugin(PluginConfig(tag="dup", type=echo_type))
    with pytest.raises(ValueError, match="not defined"):
        m.new_plugin(PluginConfig(tag="x", type="no_such_type_here"))
    with pytest.raises(ValueError, match="unable to decode plugin args"):
        m.new_plugin(PluginConfig(tag="y", type=echo_type, args={"bogus": 1}))


def test_new_plugin_init_failure(failing_type):
    m = Mosdns.for_test({})
    with pytest.raises(RuntimeError, match="failed to init plugin: boom"):
        m.new_plugin(PluginConfig(tag="f", type=failing_type))
    assert m.get_plugin("f") is None


def test_load_plugins_follows_include(tmp_path, echo_type):
    sub = tmp_path / "sub.yaml"
    sub.write_text(f"plugins:\n  - tag: inner\n    type: {echo_type}\n")
    m = Mosdns.for_test({})
    cfg = Config(include=[str(sub)], plugins=[PluginConfig(tag="outer", type=echo_type)])
    m.load_plugins_from_cfg(cfg, 0)
    assert m.get_plugin("inner")[0] == "inner"
    assert m.get_plugin("outer")[0] == "outer"


def test_load_plugins_include_depth(tmp_path):
    loop = tmp_path / "loop.yaml"
    loop.write_text(f"include:\n  - {loop}\n")
    m = Mosdns.for_test({})
    with pytest.raises(PluginLoadError, match="maximum include depth reached"):
        m.load_plugins_from_cfg(Config(include=[str(loop)]), 0)


def test_load_plugins_missing_include(tmp_path):
    m = Mosdns.for_test({})
    with pytest.raises(PluginLoadError, match="failed to read config from"):
        m.load_plugins_from_cfg(Config(include=[str(tmp_path / "none.yaml")]), 0)


def test_load_plugins_wraps_plugin_error(failing_type):
    m = Mosdns.for_test({})
    cfg = Config(plugins=[PluginConfig(tag="bad", type=failing_type)])
    with pytest.raises(PluginLoadError, match="failed to init plugin #0 bad"):
        m.load_plugins_from_cfg(cfg, 0)


def test_mosdns_loads_presets_and_closes_plugins(closable_type):
    preset_tag = f"test_server_preset_{next(_names)}"
    preset = object()
    reg_new_preset_plugin_func(preset_tag, lambda bp: preset)
    m = Mosdns(Config(plugins=[PluginConfig(tag="c", type=closable_type)]))
    assert m.get_plugin(preset_tag) is preset
    plugin = m.get_plugin("c")
    assert plugin.closed is False
    m.close_with_err(None)
    m.safe_close.wait_closed(None)
    assert plugin.closed is True


def test_mosdns_failure_closes_loaded_plugins(closable_type, failing_type):
    holder = {}

    def remember(bp, args):
        holder["p"] = Closable()
        return holder["p"]

    name = f"test_server_remember_{next(_names)}"
    reg_new_plugin_func(name, remember, dict)
    try:
        cfg = Config(
            plugins=[
                PluginConfig(tag="ok", type=name),
                PluginConfig(tag="bad", type=failing_type),
            ]
        )
        with pytest.raises(PluginLoadError, match="failed to init plugin #1 bad"):
            Mosdns(cfg)
        assert holder["p"].closed is True
    finally:
        del_plugin_type(name)


def test_api_invalid_request_lists_routes():
    m = Mosdns.for_test({})
    status, body = call(m, "GET", "/nope")
    text = body.decode()
    assert text.startswith("Invalid request GET /nope\n\nAvailable api urls:\n")
    assert "GET /metrics\n" in text


def test_api_metrics():
    m = Mosdns.for_test({"a": object()})
    status, body = call(m, "GET", "/metrics")
    assert status.startswith("200")
    assert b"dnsrelay_plugins 1\n" in body
    _, body = call(m, "POST", "/metrics")
    assert body.startswith(b"Invalid request POST /metrics")


def test_api_plugin_mount():
    seen = {}

    def app(environ, start_response):
        seen["path"] = environ["PATH_INFO"]
        seen["script"] = environ["SCRIPT_NAME"]
        start_response("200 OK", [])
        return [b"plugin"]

    m = Mosdns.for_test({})
    m.reg_plugin_api("p1", app)
    status, body = call(m, "GET", "/plugins/p1/flush")
    assert body == b"plugin"
    assert seen == {"path": "/flush", "script": "/plugins/p1"}
    with pytest.raises(ValueError):
        m.reg_plugin_api("p1", app)