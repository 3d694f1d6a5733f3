#!/usr/bin/env python3
"""
Ledger Drill Backend Facade

Renders protocol command templates for the current run, invokes them, and
classifies what comes back. Table listings are fetched page by page.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from config import Protocol
from invoker import Invoker
from models import Classification, InvocationError, RunConfig
from parsers import classify_result, parse_balance, parse_table
from phases import check_outcome
from utils import render, resolve_template

logger = logging.getLogger("drill")


class Backend:
    """Addresses the backend for one run."""

    def __init__(self, config: RunConfig, protocol: Protocol, invoker: Invoker):
        self.config = config
        self.protocol = protocol
        self.invoker = invoker
        self.variant = protocol.variant(config.variant)
        self.fields: Dict[str, Any] = {
            "cli": config.cli,
            "account": config.account,
            "pubkey": config.pubkey,
            "game": self.variant.game,
            "token": self.variant.token,
            "symbol": self.variant.symbol,
            "faction": config.faction,
        }
        self.calls = 0

    @property
    def symbol(self) -> str:
        return self.variant.symbol

    def command(self, name: str, actor: Optional[str] = None, **fields: Any) -> str:
        """Render the named template for actor with extra per-call fields."""
        line = resolve_template(self.protocol.command(name), {**self.fields, **fields})
        if actor is not None:
            line = render(line, actor)
        return line

    def execute(self, name: str, command_line: str) -> Classification:
        """Invoke a rendered command line and classify it with the named policy."""
        self.calls += 1
        logger.debug(f"[{name}] $ {command_line}")
        output, exit_status = self.invoker(command_line)
        result = classify_result(output, exit_status, self.protocol.policy(name))
        logger.debug(f"[{name}] -> {result.outcome.value} ({result.rule}): {result.excerpt()}")
        return result

    def push(self, name: str, actor: str, **fields: Any) -> Classification:
        """Run the named action for actor."""
        return self.execute(name, self.command(name, actor, **fields))

    def push_sequential(self, name: str, values: Sequence[Any], **fields: Any) -> Classification:
        """Run the named action, filling each actor placeholder in turn from values."""
        line = resolve_template(self.protocol.command(name), {**self.fields, **fields})
        for value in values:
            line = render(line, value, count=1)
        return self.execute(name, line)

    def fetch_table(
        self, table: str, scope: Optional[str] = None, code: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch every row of a contract table, following pagination.

        Raises InvocationError if a page cannot be fetched or parsed.
        """
        code = code or self.variant.game
        scope = scope or code
        rows: List[Dict[str, Any]] = []
        lower = ""
        seen_keys = set()

        while True:
            result = self.execute(
                "get_table",
                self.command(
                    "get_table", code=code, scope=scope, table=table,
                    limit=self.protocol.settings.table_limit, lower=lower,
                ),
            )
            check_outcome(result, f"fetch {table}")
            try:
                page, more, next_key = parse_table(result.output)
            except ValueError as e:
                raise InvocationError(f"Malformed listing for table '{table}': {e}")
            rows.extend(page)

            if not more:
                break
            if next_key is None or next_key in seen_keys:
                raise InvocationError(
                    f"Table '{table}' reports more rows without a usable next_key ({next_key!r})"
                )
            seen_keys.add(next_key)
            lower = next_key

        logger.debug(f"Fetched {len(rows)} rows from {code}/{scope}/{table}")
        return rows

    def balance(self, actor: str) -> Optional[str]:
        """Observed token balance for actor, e.g. "12.3456", or None if none is listed."""
        result = self.push("balance", actor)
        check_outcome(result, "balance", actor)
        return parse_balance(result.output, self.symbol)
