"""The command line entry point."""

from __future__ import annotations

import argparse
import os
import signal
from typing import List, Optional

from .config import load_config
from .logger import global_logger
from .server import Mosdns

VERSION = "dev/unknown"


def new_server(config_path: str = "", working_dir: str = "") -> Mosdns:
    """Change to ``working_dir`` if given, load the configuration and start.

    Raises OSError if the directory cannot be entered or the configuration
    file cannot be read, and ValueError if the configuration is invalid.
    """
    if working_dir:
        try:
            os.chdir(working_dir)
        except OSError as e:
            raise OSError(
                f"failed to change the current working directory, {e}"
            ) from e
        global_logger().info("working directory changed path=%s", working_dir)

    try:
        cfg, file_used = load_config(config_path)
    except OSError as e:
        raise OSError(f"fail to load config, {e}") from e
    except ValueError as e:
        raise ValueError(f"fail to load config, {e}") from e
    global_logger().info("main config loaded file=%s", file_used)
    return Mosdns(cfg)


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser with the start and version commands."""
    parser = argparse.ArgumentParser(prog="dnsrelay")
    sub = parser.add_subparsers(dest="command")

    start = sub.add_parser("start", help="Start the main program.")
    start.add_argument("-c", "--config", default="", help="config file")
    start.add_argument("-d", "--dir", default="", help="working dir")

    sub.add_parser("version", help="Print out version info and exit.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line; return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "version":
        print(VERSION)
        return 0

    logger = global_logger()
    try:
        m = new_server(args.config, args.dir)
    except Exception as e:
        logger.error("%s", e)
        return 1

    def on_signal(signum: int, _frame: object) -> None:
        m.logger.warning("signal received signal=%s", signal.Signals(signum).name)
        m.close_with_err(None)

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    try:
        err = m.safe_close.wait_closed(None)
    except Exception as e:
        err = e
    if isinstance(err, BaseException):
        logger.error("%s", err)
        return 1
    return 0