from __future__ import annotations

import argparse
import asyncio
import logging
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .config import ConfigError, ProcwatchConfig, ScriptNotFoundError, load_config
from .console import print_rule
from .daemon import Daemon
from .logging_utils import CLI_LOGGER, setup_logging
from .process_types import ExitEvent, Outcome, ReloadEvent, StartEvent
from .runner import AdhocBuilder, CommandBuilder
from .utils import get_default_data_dir
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


@dataclass
class RunAction:
    """Supervise *script* (a configured script name or an ad-hoc command)."""

    script: str
    run_args: list[str] = field(default_factory=list)
    config_path: Path | None = None
    data_dir: Path = field(default_factory=get_default_data_dir)
    verbose: int = 0
    watch: bool | None = None


@dataclass
class ListAction:
    """Print the scripts defined in the configuration."""

    config_path: Path | None = None
    data_dir: Path = field(default_factory=get_default_data_dir)
    verbose: int = 0


CLIAction = RunAction | ListAction

SUBCOMMANDS = ("run", "list")

# Options that consume the following token as their value
_OPTIONS_WITH_VALUE = {"-c", "--config", "--data-dir"}


def _first_positional(argv: list[str]) -> int | None:
    skip = False
    for i, tok in enumerate(argv):
        if skip:
            skip = False
            continue
        if tok in _OPTIONS_WITH_VALUE:
            skip = True
            continue
        if not tok.startswith("-"):
            return i
    return None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procwatch",
        description="Run a script and restart it whenever watched files change",
    )

    def add_common_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "-c",
            "--config",
            type=Path,
            default=None,
            help="Configuration file (default: procwatch.yml/.yaml/.json in the current directory)",
        )
        p.add_argument("--data-dir", type=Path, default=get_default_data_dir())
        p.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="Increase verbosity; you can use -vv for more",
        )
        p.add_argument(
            "-q",
            "--quiet",
            action="store_true",
            help="Only show warnings and errors",
        )

    subparsers = parser.add_subparsers(dest="command")

    p_run = subparsers.add_parser(
        "run", help="Run a script (or a command) and restart it on changes"
    )
    p_run.add_argument(
        "script",
        help="Name of a script from the configuration, or a program to run",
    )
    p_run.add_argument("args", nargs=argparse.REMAINDER, help="Arguments to the program")
    watch_group = p_run.add_mutually_exclusive_group()
    watch_group.add_argument(
        "--watch",
        dest="watch",
        action="store_true",
        default=None,
        help="Wait for file changes after the main process ends",
    )
    watch_group.add_argument(
        "--no-watch",
        dest="watch",
        action="store_false",
        help="Exit once the main process ends",
    )
    add_common_args(p_run)

    p_list = subparsers.add_parser("list", help="List configured scripts")
    add_common_args(p_list)

    return parser


def parse_cli(argv: list[str]) -> tuple[CLIAction, Path]:
    """Parse *argv* (without the program name) into an action.

    A first positional argument that is not a known sub-command is an implicit
    ``run``: ``procwatch dev`` is ``procwatch run dev``.
    """
    parser = _build_parser()

    first_pos = _first_positional(argv)
    if first_pos is None:
        parser.print_help(sys.stderr)
        raise SystemExit(2)

    # Options given before the sub-command belong to the sub-command.
    leading, command = argv[:first_pos], argv[first_pos]
    if command in SUBCOMMANDS:
        argv = [command, *leading, *argv[first_pos + 1 :]]
    else:
        argv = ["run", *leading, *argv[first_pos:]]

    args = parser.parse_args(argv)
    verbose = -1 if args.quiet else args.verbose
    log_path = setup_logging(verbose, args.data_dir)

    if args.command == "list":
        return (
            ListAction(config_path=args.config, data_dir=args.data_dir, verbose=verbose),
            log_path,
        )

    script, run_args = args.script, list(args.args)
    # A quoted composite command such as "python app.py" is split like a shell.
    if " " in script and not run_args:
        parts = shlex.split(script)
        script, run_args = parts[0], parts[1:]

    return (
        RunAction(
            script=script,
            run_args=run_args,
            config_path=args.config,
            data_dir=args.data_dir,
            verbose=verbose,
            watch=args.watch,
        ),
        log_path,
    )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def _make_builder(action: RunAction, config: ProcwatchConfig):
    builder = CommandBuilder(config)
    if builder.has_script(action.script) and not action.run_args:
        if action.watch is not None:
            sc = config.scripts[action.script]
            sc.watch = action.watch
        return builder

    watch = config.watch if action.watch is None else action.watch
    CLI_LOGGER.info(
        "(implicit run) Running command: %s",
        shlex.join([action.script, *action.run_args]),
    )
    return AdhocBuilder(argv=[action.script, *action.run_args], watch=watch)


async def _consume(daemon: Daemon) -> Outcome | None:
    outcome: Outcome | None = None
    async for event in daemon:
        if isinstance(event, StartEvent):
            print_rule("procwatch: starting")
        elif isinstance(event, ReloadEvent):
            paths = sorted({e.path for e in event.change})
            print_rule(f"procwatch: reloading ({len(paths)} changed)")
            logger.debug("Changed paths: %s", ", ".join(paths))
        elif isinstance(event, ExitEvent):
            outcome = event.outcome
            print_rule("procwatch: exiting")
    return outcome


async def _run_async(action: RunAction, config: ProcwatchConfig) -> int:
    builder = _make_builder(action, config)
    watcher = ChangeWatcher(config.watcher)
    daemon = Daemon(builder, action.script, watcher, config=config)
    try:
        outcome = await _consume(daemon)
    finally:
        await watcher.aclose()
    return 1 if outcome is Outcome.FAILURE else 0


def run_action(action: RunAction) -> int:
    try:
        config = load_config(action.config_path)
    except ConfigError as exc:
        CLI_LOGGER.error("%s", exc)
        return 1

    try:
        return asyncio.run(_run_async(action, config))
    except ScriptNotFoundError as exc:
        CLI_LOGGER.error("%s", exc)
        return 1
    except FileNotFoundError as exc:
        CLI_LOGGER.error("Command not found: %s", exc.filename or exc)
        return 1
    except PermissionError as exc:
        CLI_LOGGER.error("Permission denied: %s", exc.filename or exc)
        return 1
    except KeyboardInterrupt:
        # Only reachable before the signal handler is installed, i.e. while
        # sequential commands are still running.
        CLI_LOGGER.info("Interrupted")
        return 130


def list_action(action: ListAction) -> int:
    try:
        config = load_config(action.config_path)
    except ConfigError as exc:
        CLI_LOGGER.error("%s", exc)
        return 1

    if not config.scripts:
        CLI_LOGGER.info("No scripts configured")
        return 0

    builder = CommandBuilder(config)
    for name, sc in config.scripts.items():
        watch = "watch" if builder.options_for(name).watch else "no-watch"
        print(f"{name} ({watch}): {' && '.join(sc.cmd)}")
    return 0


def cli(argv: list[str] | None = None) -> int:
    action, log_path = parse_cli(sys.argv[1:] if argv is None else argv)
    logger.debug("Verbose log written to %s", log_path)

    if isinstance(action, ListAction):
        return list_action(action)
    return run_action(action)
