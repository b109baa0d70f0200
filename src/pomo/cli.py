from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .contracts.v1 import IpcRequest
from .daemon.instance import run_invocation
from .daemon.server import DaemonPaths, default_paths
from .daemon_main import read_pid, run_resident, spawn_background
from .kernel.config import CONFIG_KEYS, update_config
from .kernel.store import Store


def _paths(args: argparse.Namespace) -> DaemonPaths:
    return default_paths(getattr(args, "data_dir", None))


def _start_options(args: argparse.Namespace) -> Dict[str, Optional[str]]:
    opts: Dict[str, Optional[str]] = {}
    for flag, value in (
        ("--work", args.work),
        ("--break", args.break_minutes),
        ("--long", args.long),
        ("--cycles", args.cycles),
    ):
        if value is not None:
            opts[flag] = str(value)
    for flag in args.switches or []:
        opts[flag] = None
    if args.force:
        opts["--force"] = None
    return opts


def build_request(args: argparse.Namespace) -> IpcRequest:
    cmd = str(args.cmd)
    if cmd == "start":
        return IpcRequest(command="start", options=_start_options(args), positionals=list(args.intent_words or []))
    if cmd == "intent":
        return IpcRequest(command="intent", positionals=list(args.words or []))
    return IpcRequest(command=cmd)


def cmd_forward(args: argparse.Namespace) -> int:
    return run_invocation(
        build_request(args),
        paths=_paths(args),
        run_resident=run_resident,
        spawn_background=spawn_background,
    )


def cmd_where(args: argparse.Namespace) -> int:
    paths = _paths(args)
    store = Store(paths.home)
    print(f"DataDir: {store.data_dir}")
    print(f"Config:  {store.config_path}")
    print(f"State:   {store.state_path}")
    print(f"Log:     {store.log_path}")
    print(f"Intent:  {store.intent_path}")
    print(f"Socket:  {paths.sock_path}")
    pid = read_pid(paths)
    if pid > 0:
        print(f"Resident pid: {pid}")
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    store = Store(_paths(args).home)
    rest: List[str] = list(args.rest or [])

    if not rest:
        print(json.dumps(store.load_or_create_config().to_wire(), ensure_ascii=False, indent=2))
        return 0

    if len(rest) != 3 or rest[0].lower() != "set":
        print(f"usage: pom config set <key> <value>  (keys: {'/'.join(CONFIG_KEYS)})", file=sys.stderr)
        return 1

    _, key, value = rest
    result = update_config(store.load_or_create_config(), key, value)
    if not result.ok or result.config is None:
        print(result.error, file=sys.stderr)
        return 1
    store.save_config(result.config)
    print("Updated config.")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    print(__version__)
    return 0


class _Parser(argparse.ArgumentParser):
    """Usage errors exit 1, like every other failed command."""

    def error(self, message: str) -> Any:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--data-dir", dest="data_dir", default=argparse.SUPPRESS, help="Data directory (default: $POMO_HOME or ~/.pomodoro)")

    p = _Parser(
        prog="pom",
        description="Pomodoro timer with a single resident background process",
        epilog="Run without a command to start the resident in this terminal (or reach the running one).",
    )
    p.add_argument("--data-dir", dest="data_dir", default=None, help="Data directory (default: $POMO_HOME or ~/.pomodoro)")
    p.add_argument("--background", action="store_true", help=argparse.SUPPRESS)
    sub = p.add_subparsers(dest="cmd")

    p_start = sub.add_parser("start", parents=[common], help="Start a session (starts the resident if needed)")
    p_start.add_argument("--work", metavar="N", default=None, help="Work minutes")
    p_start.add_argument("--break", dest="break_minutes", metavar="N", default=None, help="Break minutes")
    p_start.add_argument("--long", metavar="N", default=None, help="Long-break minutes")
    p_start.add_argument("--cycles", metavar="N", default=None, help="Work sessions before the long break")
    for on, off, what in (
        ("--auto", "--no-auto", "auto-advance to the next phase"),
        ("--popup", "--no-popup", "popup notifications"),
        ("--sound", "--no-sound", "sound notifications"),
    ):
        g = p_start.add_mutually_exclusive_group()
        g.add_argument(on, dest="switches", action="append_const", const=on, help=f"Enable {what}")
        g.add_argument(off, dest="switches", action="append_const", const=off, help=f"Disable {what}")
    p_start.add_argument("--force", action="store_true", help="Replace a running session")
    p_start.add_argument("intent_words", nargs="*", metavar="INTENT", help="Optional intent for this session (what you are working on)")
    p_start.set_defaults(func=cmd_forward, switches=[])

    for name, help_text in (
        ("pause", "Pause the current phase"),
        ("resume", "Resume a paused phase"),
        ("stop", "Stop and clear the session"),
        ("skip", "End the current phase now and advance"),
        ("status", "Show the session status"),
        ("open", "Open (activate) the running instance"),
        ("exit", "Exit the resident process"),
    ):
        sp = sub.add_parser(name, parents=[common], help=help_text)
        sp.set_defaults(func=cmd_forward)

    p_intent = sub.add_parser("intent", parents=[common], help="Current intent: show | set TEXT | clear | pin TEXT | unpin TEXT")
    p_intent.add_argument("words", nargs="*", help="Action and text")
    p_intent.set_defaults(func=cmd_forward)

    p_config = sub.add_parser("config", parents=[common], help="Show config, or: config set <key> <value>")
    p_config.add_argument("rest", nargs="*", help=f"set <key> <value> (keys: {', '.join(CONFIG_KEYS)})")
    p_config.set_defaults(func=cmd_config)

    p_where = sub.add_parser("where", parents=[common], help="Show data directory paths")
    p_where.set_defaults(func=cmd_where)

    p_help = sub.add_parser("help", help="Show this help")
    p_help.set_defaults(func=lambda _args: _print_help(p))

    p_ver = sub.add_parser("version", help="Show version")
    p_ver.set_defaults(func=cmd_version)

    return p


def _print_help(parser: argparse.ArgumentParser) -> int:
    parser.print_help()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args: Any = parser.parse_args(argv)

    if args.cmd is None:
        return run_invocation(
            None,
            paths=_paths(args),
            background=bool(args.background),
            run_resident=run_resident,
            spawn_background=spawn_background,
        )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
