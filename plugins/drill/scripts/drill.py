#!/usr/bin/env python3
"""
Ledger Drill

Scripted driver for a game/ledger backend CLI. Creates a run of synthetic
actors and pushes them through the office-election or squad-playoff
protocol, one actor at a time, narrating every decision.

Watch a run with: tail -f <live log>
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import yaml

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("drill")

# Add script directory to path for relative imports (enables running from any directory)
SCRIPT_DIR = Path(__file__).parent.resolve()
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

from config import Protocol, load_protocol
from election import run_election
from invoker import Invoker, make_invoker
from models import ConfigurationError, RunAborted, RunConfig, RunState
from parsers import classify_result
from phases import run_phase
from playoffs import run_playoffs
from sequencer import FIRST_SUFFIX, actor_names
from steps import build_run_state
from utils import banner, narrate, render, set_live_log, validate_prefix, validate_suffix

EXIT_OK = 0
EXIT_ERROR = 1

DRIVERS = {
    "election": run_election,
    "playoffs": run_playoffs,
}


def build_config(args: argparse.Namespace) -> RunConfig:
    """Build and validate the run configuration from parsed arguments."""
    config = RunConfig(
        cli=args.cli,
        account=args.account,
        pubkey=args.pubkey,
        variant=args.variant,
        prefix=args.prefix,
        count=args.count,
        faction=args.faction,
        seed=args.seed,
        start=args.start,
        backoff=args.backoff,
        timeout=args.timeout,
        work_rounds=getattr(args, "work_rounds", 0),
    )
    config.validate()
    return config


def load_run_protocol(path: Optional[str]) -> Protocol:
    try:
        return load_protocol(Path(path) if path else None)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(str(e)) from e


def log_actor_summary(state: RunState) -> None:
    banner("ACTORS")
    for actor in state.actors:
        s = state.state(actor)
        narrate(
            f"{actor}: character={s.char_id} role={s.role} "
            f"balance={s.balance} squad={s.squad_id}"
        )


def run_drill(args: argparse.Namespace, invoker: Optional[Invoker] = None) -> int:
    """Run one protocol variant. Returns a process exit code."""
    protocol = load_run_protocol(args.protocol)
    config = build_config(args)
    if invoker is None:
        timeout = config.timeout if config.timeout is not None else protocol.settings.command_timeout
        invoker = make_invoker(timeout)

    state = build_run_state(config, protocol, invoker)
    variant = protocol.variant(config.variant)
    banner(
        f"LEDGER DRILL {args.command} - {config.count} actors from {state.actors[0]}, "
        f"variant {config.variant} ({variant.name}), seed {config.seed}"
    )
    DRIVERS[args.command](state)
    log_actor_summary(state)
    banner(f"COMPLETED {len(state.results)} phases, {state.backend.calls} backend calls")
    return EXIT_OK


def run_repeat(args: argparse.Namespace, invoker: Optional[Invoker] = None) -> int:
    """Render a command for every actor name in a range and invoke it."""
    try:
        validate_prefix(args.prefix)
        validate_suffix(args.start)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    if args.count <= 0:
        raise ConfigurationError(f"Actor count must be positive, got {args.count}")

    protocol = load_run_protocol(args.protocol)
    policy = protocol.policy("repeat")
    if invoker is None:
        invoker = make_invoker(args.timeout)

    def action(actor: str):
        output, exit_status = invoker(render(args.template, actor))
        return classify_result(output, exit_status, policy)

    run_phase("Repeat", actor_names(args.prefix, args.count, args.start), action)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Ledger Drill")
    ap.add_argument("--protocol", help="Protocol YAML (default: bundled protocol.yaml)")
    ap.add_argument("--live-log", help="Append narration to this file (for tail -f)")
    ap.add_argument("--timeout", type=float, default=None, help="Per-command timeout in seconds")
    ap.add_argument(
        "--start", default=FIRST_SUFFIX, help=f"First actor suffix (default: {FIRST_SUFFIX})"
    )
    ap.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("election", "Office-election protocol"),
        ("playoffs", "Squad/playoff protocol"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("cli", help="Backend command prefix, e.g. 'cleos -u http://127.0.0.1:8888'")
        p.add_argument("account", help="Controlling account (1-12 chars)")
        p.add_argument("pubkey", help="Public key for new actors (53 chars)")
        p.add_argument("variant", type=int, help="Backend variant (0, 1 or 2)")
        p.add_argument("prefix", help="Actor-name prefix (up to 6 chars)")
        p.add_argument("count", type=int, help="Number of actors")
        p.add_argument("faction", type=int, help="Faction (1-4)")
        p.add_argument("seed", type=int, help="Random seed")
        p.add_argument(
            "--backoff", type=float, default=None,
            help="Seconds between polls (default: protocol setting)",
        )
        if name == "election":
            p.add_argument(
                "--work-rounds", type=int, default=0,
                help="Bulk work rounds after characters are resolved (default: 0)",
            )

    p = sub.add_parser("repeat", help="Run a command once per actor name")
    p.add_argument("template", help="Command line with %%%% where the actor name goes")
    p.add_argument("prefix", help="Actor-name prefix (up to 6 chars)")
    p.add_argument("count", type=int, help="Number of actors")

    # --start is also accepted after the subcommand; SUPPRESS keeps the top-level default
    for p in sub.choices.values():
        p.add_argument("--start", default=argparse.SUPPRESS, help="First actor suffix")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    try:
        args = ap.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on bad input; every input failure exits 1 here
        return EXIT_OK if e.code == 0 else EXIT_ERROR

    if args.verbose:
        logger.setLevel(logging.DEBUG)

    live_log_file = None
    try:
        if args.live_log:
            try:
                live_log_file = open(args.live_log, "a", encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"Cannot open live log {args.live_log}: {e}") from e
            set_live_log(live_log_file)
        if args.command == "repeat":
            return run_repeat(args)
        return run_drill(args)
    except ConfigurationError as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_ERROR
    except RunAborted as e:
        narrate(f"RUN ABORTED: {e}", logging.ERROR)
        return EXIT_ERROR
    except KeyboardInterrupt:
        narrate("RUN INTERRUPTED", logging.ERROR)
        return EXIT_ERROR
    finally:
        set_live_log(None)
        if live_log_file:
            live_log_file.close()


if __name__ == "__main__":
    raise SystemExit(main())
