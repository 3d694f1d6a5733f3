#!/usr/bin/env python3
"""
Ledger Drill Backend Invoker

Runs one backend command line and captures its text and exit status.
"""
from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Callable, Optional, Tuple

logger = logging.getLogger("drill")

# (command_line) -> (output_text, exit_status)
Invoker = Callable[[str], Tuple[str, Optional[int]]]


def invoke(command_line: str, timeout: Optional[float] = None) -> Tuple[str, Optional[int]]:
    """Run command_line without a shell.

    stderr is merged into the returned text so error messages can be
    classified. Exit status is -1 on timeout, negative on signal
    termination, and None if the command could not be started.
    """
    try:
        argv = shlex.split(command_line)
    except ValueError as e:
        return f"Cannot split command line: {e}", None
    if not argv:
        return "Empty command line", None

    logger.debug(f"$ {command_line}")
    try:
        proc = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        partial = e.output.decode("utf-8", errors="replace") if e.output else ""
        return partial + f"\nProcess timed out after {timeout}s", -1
    except OSError as e:
        return f"Failed to start {argv[0]}: {e}", None

    return proc.stdout.decode("utf-8", errors="replace"), proc.returncode


def make_invoker(timeout: Optional[float] = None) -> Invoker:
    """Bind a timeout into an Invoker."""
    def run(command_line: str) -> Tuple[str, Optional[int]]:
        return invoke(command_line, timeout=timeout)
    return run
