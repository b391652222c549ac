"""The server instance: plugin loading, shutdown and the HTTP API."""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from .config import Config, PluginConfig, load_config
from .logger import new_logger, nop_logger
from .plugin import BP, decode_args, get_plugin_type, load_new_preset_plugin_funcs
from .safe_close import SafeClose

MAX_INCLUDE_DEPTH = 8

WSGIApp = Callable[[dict, Callable], Iterable[bytes]]


class PluginLoadError(Exception):
    """A plugin or an included configuration could not be loaded."""


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        pass


class _IPv6WSGIServer(WSGIServer):
    address_family = socket.AF_INET6


def _split_addr(addr: str):
    host, _, port = addr.rpartition(":")
    host = host.strip("[]")
    return host, int(port) if port else 80


class Mosdns:
    """A running server: its plugins, API routes and shutdown control.

    The instance is itself the WSGI application of the HTTP API.
    """

    def __init__(self, cfg: Config) -> None:
        try:
            logger = new_logger(cfg.log)
        except (ValueError, OSError) as e:
            raise ValueError(f"failed to init logger: {e}") from e
        self._setup(logger, {})

        if cfg.api.http:
            self._start_api_server(cfg.api.http)

        self._sc.attach(self._close_plugins_on_signal)

        try:
            self._load_preset_plugins()
            self.load_plugins_from_cfg(cfg, 0)
        except Exception as e:
            self._sc.send_close_signal(e)
            self._wait_quietly()
            raise
        self.logger.info("all plugins are loaded")

    def _setup(self, logger: logging.Logger, plugins: Dict[str, Any]) -> None:
        self.logger = logger
        self._plugins = plugins
        self._mounts: Dict[str, WSGIApp] = {}
        self._sc = SafeClose()
        self._start_time = time.time()

    @classmethod
    def for_test(cls, plugins: Dict[str, Any]) -> "Mosdns":
        """Return an instance holding ``plugins`` with a silent logger."""
        m = cls.__new__(cls)
        m._setup(nop_logger(), plugins)
        return m

    @property
    def safe_close(self) -> SafeClose:
        return self._sc

    def _wait_quietly(self) -> None:
        try:
            self._sc.wait_closed(None)
        except Exception:
            pass

    def close_with_err(self, err: Optional[BaseException]) -> None:
        """Ask the server to shut down, reporting ``err`` (None for a clean stop)."""
        self._sc.send_close_signal(err)

    def get_plugin(self, tag: str) -> Any:
        """Return the plugin registered under ``tag``, or None."""
        return self._plugins.get(tag)

    def reg_plugin_api(self, tag: str, handler: WSGIApp) -> None:
        """Mount a WSGI application under /plugins/<tag>.

        Raises ValueError if that path is already mounted.
        """
        if tag in self._mounts:
            raise ValueError(f"api for plugin {tag} is already mounted")
        self._mounts[tag] = handler

    def api_routes(self) -> List[str]:
        """Return the available API routes as "METHOD path" lines."""
        routes = ["GET /metrics"]
        routes.extend(f"* /plugins/{tag}/*" for tag in self._mounts)
        return routes

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        path = environ.get("PATH_INFO") or "/"
        method = environ.get("REQUEST_METHOD", "GET")
        if path == "/metrics":
            if method in ("GET", "HEAD"):
                return self._metrics(start_response)
            return self._invalid_request(environ, start_response)
        for tag, handler in self._mounts.items():
            prefix = f"/plugins/{tag}"
            if path == prefix or path.startswith(prefix + "/"):
                sub = dict(environ)
                sub["SCRIPT_NAME"] = environ.get("SCRIPT_NAME", "") + prefix
                sub["PATH_INFO"] = path[len(prefix):] or "/"
                return handler(sub, start_response)
        return self._invalid_request(environ, start_response)

    def _metrics(self, start_response: Callable) -> Iterable[bytes]:
        lines = [
            "# TYPE dnsrelay_process_start_time_seconds gauge",
            f"dnsrelay_process_start_time_seconds {self._start_time}",
            "# TYPE dnsrelay_plugins gauge",
            f"dnsrelay_plugins {len(self._plugins)}",
        ]
        body = ("\n".join(lines) + "\n").encode()
        start_response(
            "200 OK",
            [("Content-Type", "text/plain; version=0.0.4"), ("Content-Length", str(len(body)))],
        )
        return [body]

    def _invalid_request(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        uri = (environ.get("SCRIPT_NAME", "") + (environ.get("PATH_INFO") or "/"))
        query = environ.get("QUERY_STRING")
        if query:
            uri += "?" + query
        text = f"Invalid request {environ.get('REQUEST_METHOD', 'GET')} {uri}\n\n"
        text += "Available api urls:\n"
        text += "".join(route + "\n" for route in self.api_routes())
        body = text.encode()
        start_response(
            "200 OK",
            [("Content-Type", "text/plain; charset=utf-8"), ("Content-Length", str(len(body)))],
        )
        return [body]

    def _start_api_server(self, addr: str) -> None:
        def serve(done: Callable[[], None], _close_signal: Any) -> None:
            def run() -> None:
                try:
                    try:
                        host, port = _split_addr(addr)
                        server_class = _IPv6WSGIServer if ":" in host else WSGIServer
                        server = make_server(
                            host, port, self,
                            server_class=server_class, handler_class=_QuietHandler,
                        )
                    except (OSError, ValueError) as e:
                        self._sc.send_close_signal(e)
                        return
                    self.logger.info("starting api http server addr=%s", addr)
                    worker = threading.Thread(target=server.serve_forever, daemon=True)
                    worker.start()
                    self._sc.receive_close_signal().wait()
                    server.shutdown()
                    server.server_close()
                finally:
                    done()

            threading.Thread(target=run, daemon=True).start()

        self._sc.attach(serve)

    def _close_plugins_on_signal(self, done: Callable[[], None], _close_signal: Any) -> None:
        def run() -> None:
            try:
                self._sc.receive_close_signal().wait()
                self.logger.info("starting shutdown sequences")
                for tag, p in list(self._plugins.items()):
                    close = getattr(p, "close", None)
                    if callable(close):
                        self.logger.info("closing plugin tag=%s", tag)
                        try:
                            close()
                        except Exception:
                            pass
                self.logger.info("all plugins were closed")
            finally:
                done()

        threading.Thread(target=run, daemon=True).start()

    def _load_preset_plugins(self) -> None:
        for tag, f in load_new_preset_plugin_funcs().items():
            try:
                p = f(BP(tag, self))
            except Exception as e:
                raise PluginLoadError(f"failed to init preset plugin {tag}, {e}") from e
            self._plugins[tag] = p

    def new_plugin(self, plugin_config: PluginConfig) -> None:
        """Build the plugin described by ``plugin_config`` and register it.

        An empty tag gets a generated one. Raises ValueError for a
        duplicated tag, an unknown type or undecodable args, and
        RuntimeError if the plugin's constructor fails.
        """
        tag = plugin_config.tag or f"anonymouse_{plugin_config.type}_{len(self._plugins)}"
        if tag in self._plugins:
            raise ValueError(f"duplicated plugin tag {tag}")
        info = get_plugin_type(plugin_config.type)
        if info is None:
            raise ValueError(f"plugin type {plugin_config.type} not defined")

        args = info.new_args()
        if type(plugin_config.args) is type(args):
            args = plugin_config.args
        else:
            try:
                args = decode_args(plugin_config.args, args)
            except (ValueError, TypeError) as e:
                raise ValueError(f"unable to decode plugin args: {e}") from e

        self.logger.info("loading plugin tag=%s type=%s", tag, plugin_config.type)
        try:
            p = info.new_plugin(BP(tag, self), args)
        except Exception as e:
            raise RuntimeError(f"failed to init plugin: {e}") from e
        self._plugins[tag] = p

    def load_plugins_from_cfg(self, cfg: Config, include_depth: int = 0) -> None:
        """Load the plugins of ``cfg``, following its includes first.

        Raises PluginLoadError on any failure.
        """
        if include_depth > MAX_INCLUDE_DEPTH:
            raise PluginLoadError("maximum include depth reached")
        include_depth += 1

        for s in cfg.include:
            try:
                sub_cfg, path = load_config(s)
            except (OSError, ValueError) as e:
                raise PluginLoadError(f"failed to read config from {s}, {e}") from e
            self.logger.info("load config file=%s", path)
            try:
                self.load_plugins_from_cfg(sub_cfg, include_depth)
            except PluginLoadError as e:
                raise PluginLoadError(f"failed to load config from {s}, {e}") from e

        for i, pc in enumerate(cfg.plugins):
            try:
                self.new_plugin(pc)
            except Exception as e:
                raise PluginLoadError(f"failed to init plugin #{i} {pc.tag}, {e}") from e