#!/usr/bin/env python3
"""
Ledger Drill Utilities

Live narration log, name validation and command template substitution.
"""
from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Dict, IO, Optional

logger = logging.getLogger("drill")

# Two-character actor placeholder used by every command template
PLACEHOLDER = "%%"

# Backend account names: 1-12 chars of a-z, 1-5 and dot
VALID_ACCOUNT_PATTERN = re.compile(r"^[a-z1-5.]{1,12}$")
# Actor-name prefixes: up to 6 chars, no dots
VALID_PREFIX_PATTERN = re.compile(r"^[a-z1-5]{0,6}$")
VALID_SUFFIX_PATTERN = re.compile(r"^[a-z]{6}$")

# Global live log file handle (set by drill.main)
_live_log: Optional[IO[str]] = None


def set_live_log(log_file: Optional[IO[str]]) -> None:
    """Set the global live log file handle."""
    global _live_log
    _live_log = log_file


def write_live(msg: str, prefix: str = "") -> None:
    """Write to live log file for real-time monitoring via tail -f."""
    if _live_log:
        ts = dt.datetime.now().strftime("%H:%M:%S")
        line = f"[{ts}] {prefix}{msg}\n" if prefix else f"[{ts}] {msg}\n"
        _live_log.write(line)
        _live_log.flush()


def narrate(msg: str, level: int = logging.INFO) -> None:
    """Log a message and mirror it to the live log."""
    logger.log(level, msg)
    write_live(msg)


def banner(title: str) -> None:
    """Narrate a phase banner."""
    narrate("=" * 50)
    narrate(title)
    narrate("=" * 50)


def render(template: str, value: str, token: str = PLACEHOLDER, count: int = -1) -> str:
    """Substitute value for token in template.

    Replaces every occurrence by default. With count=1 only the leftmost
    occurrence is replaced, so applying render repeatedly against the same
    token fills the placeholders in order.
    """
    return template.replace(token, str(value), count)


def resolve_template(template: str, fields: Dict[str, Any]) -> str:
    """Substitute {{name}} tokens from fields.

    Tokens without a matching field are left in place.
    """
    resolved = template
    for var, value in fields.items():
        resolved = render(resolved, value, token=f"{{{{{var}}}}}")
    return resolved


def validate_account(name: str, kind: str = "account") -> None:
    """Validate a backend account name."""
    if not VALID_ACCOUNT_PATTERN.match(name):
        raise ValueError(
            f"Invalid {kind} name '{name}': must be 1-12 chars of a-z, 1-5 or '.'"
        )


def validate_prefix(prefix: str) -> None:
    """Validate an actor-name prefix."""
    if not VALID_PREFIX_PATTERN.match(prefix):
        raise ValueError(
            f"Invalid actor prefix '{prefix}': must be at most 6 chars of a-z or 1-5"
        )


def validate_suffix(suffix: str) -> None:
    """Validate a sequencer starting suffix."""
    if not VALID_SUFFIX_PATTERN.match(suffix):
        raise ValueError(f"Invalid start suffix '{suffix}': must be 6 lowercase letters")
