#!/usr/bin/env python3
"""
Ledger Drill Output Parsers

Classification of backend command output into outcomes, and parsing of
table listings and token balances.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import yaml

from config import PhasePolicy
from models import Classification, Outcome

logger = logging.getLogger("drill")

BALANCE_PATTERN = re.compile(r"(\d+\.\d{4})\s+([A-Z][A-Z0-9]{0,6})")


# =============================================================================
# Outcome classification
# =============================================================================

def classify_result(
    output: str, exit_status: Optional[int], policy: PhasePolicy
) -> Classification:
    """Classify one invocation. First matching rule wins.

    Order: process failure, fatal patterns, benign duplicates, recoverable
    rule rejections, then success.

    A nonzero exit status listed in policy.answered_exit_codes means the
    backend answered with an error reply, so the pattern rules still
    apply. If none of them matches, the call is an invocation failure.
    Any other nonzero, negative or missing status is a process failure.
    """
    if exit_status is None or exit_status < 0:
        rule = "timeout" if exit_status == -1 else "exit_status"
        return Classification(Outcome.INVOCATION_FAILURE, rule, output, exit_status)
    if exit_status != 0 and exit_status not in policy.answered_exit_codes:
        return Classification(Outcome.INVOCATION_FAILURE, "exit_status", output, exit_status)

    for outcome, rules in (
        (Outcome.FATAL_REJECTION, policy.fatal),
        (Outcome.BENIGN_DUPLICATE, policy.benign),
        (Outcome.RECOVERABLE_REJECTION, policy.recoverable),
    ):
        for rule in rules:
            if rule.matches(output):
                return Classification(outcome, rule.name, output, exit_status)

    if exit_status != 0:
        # Error reply nothing in the policy recognises
        return Classification(Outcome.INVOCATION_FAILURE, "exit_status", output, exit_status)
    return Classification(Outcome.SUCCESS, None, output, exit_status)


def classify(output: str, exit_status: Optional[int], policy: PhasePolicy) -> Outcome:
    """Classify one invocation into an Outcome."""
    return classify_result(output, exit_status, policy).outcome


# =============================================================================
# Table listings
# =============================================================================

def parse_table(raw: str) -> Tuple[List[Dict[str, Any]], bool, Optional[str]]:
    """Parse a table listing into (rows, more, next_key).

    Accepts JSON, falling back to YAML for loosely formatted listings.
    Raises ValueError if the text is not a listing.
    """
    raw = raw.strip()
    if not raw:
        raise ValueError("Empty table listing")

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError:
        try:
            obj = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ValueError(f"Unparseable table listing: {e}")

    if isinstance(obj, list):
        rows, more, next_key = obj, False, None
    elif isinstance(obj, dict) and isinstance(obj.get("rows"), list):
        rows = obj["rows"]
        more = bool(obj.get("more", False))
        next_key = obj.get("next_key") or None
    else:
        raise ValueError(f"Table listing has no rows: {type(obj).__name__}")

    for row in rows:
        if not isinstance(row, dict):
            raise ValueError(f"Table row is not a record: {row!r}")
    if next_key is not None:
        next_key = str(next_key)
    return rows, more, next_key


def member_name(entry: Any) -> str:
    """Strip weight/metadata from a member-list entry, returning the member id.

    Entries may be bare names, {"key": name, "value": weight} pairs,
    {"first": ..., "second": ...} pairs, {"name": ...} records or [name, weight] lists.
    """
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        for key in ("key", "first", "name", "account"):
            if key in entry:
                return str(entry[key])
    if isinstance(entry, (list, tuple)) and entry:
        return str(entry[0])
    raise ValueError(f"Unrecognised member entry: {entry!r}")


# =============================================================================
# Balances
# =============================================================================

def parse_balance(raw: str, symbol: Optional[str] = None) -> Optional[str]:
    """Extract the first balance amount, e.g. "12.3456" from "12.3456 DRL".

    Returns None when no balance is listed.
    """
    for match in BALANCE_PATTERN.finditer(raw):
        if symbol is None or match.group(2) == symbol:
            return match.group(1)
    return None
