#!/usr/bin/env python3
"""
Ledger Drill Protocol Loading

The protocol file names the backend variants, the command template for every
backend action, and the ordered pattern rules each phase classifies with.
"""
from __future__ import annotations

import dataclasses
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern

import yaml

logger = logging.getLogger("drill")

SCRIPT_DIR = Path(__file__).parent.resolve()
# Config dir is sibling to scripts/ in the source tree, or beside the module when installed flat
DEFAULT_CONFIG_DIR = (SCRIPT_DIR.parent / "config") if (SCRIPT_DIR.parent / "config").exists() else SCRIPT_DIR
PROTOCOL_FILENAME = "protocol.yaml"

REQUIRED_COMMANDS = (
    "create_account", "register", "mint_entity", "work", "join_faction",
    "set_role", "claim", "balance", "register_candidate", "vote",
    "open_stake", "stake", "enroll", "propose", "vote_proposal", "get_table",
)


def default_protocol_path() -> Path:
    return DEFAULT_CONFIG_DIR / PROTOCOL_FILENAME


@dataclasses.dataclass
class Variant:
    """Contract namespaces for one backend variant."""
    name: str
    game: str
    token: str
    symbol: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Variant":
        return cls(
            name=d.get("name", ""),
            game=d["game"],
            token=d["token"],
            symbol=d["symbol"],
        )


@dataclasses.dataclass
class PatternRule:
    """A named, compiled output pattern."""
    name: str
    regex: Pattern[str]

    def matches(self, output: str) -> bool:
        return self.regex.search(output) is not None


@dataclasses.dataclass
class PhasePolicy:
    """Ordered pattern rules for one backend action."""
    name: str
    fatal: List[PatternRule] = dataclasses.field(default_factory=list)
    benign: List[PatternRule] = dataclasses.field(default_factory=list)
    recoverable: List[PatternRule] = dataclasses.field(default_factory=list)
    # Nonzero exit statuses that still carry a backend reply worth matching
    answered_exit_codes: List[int] = dataclasses.field(default_factory=list)

    @classmethod
    def from_dict(
        cls,
        name: str,
        d: Dict[str, Any],
        patterns: Dict[str, str],
        answered_exit_codes: Optional[List[int]] = None,
    ) -> "PhasePolicy":
        """Build a policy. Entries naming a shared pattern resolve to it; others are raw regexes.

        answered_exit_codes is the protocol-wide default; the policy's own
        answered_exit_codes entry replaces it.
        """
        def compile_rules(entries: Optional[List[str]]) -> List[PatternRule]:
            rules = []
            for entry in entries or []:
                source = patterns.get(entry, entry)
                try:
                    rules.append(PatternRule(name=entry, regex=re.compile(source)))
                except re.error as e:
                    raise ValueError(f"Policy '{name}': invalid pattern '{entry}': {e}")
            return rules

        return cls(
            name=name,
            fatal=compile_rules(d.get("fatal")),
            benign=compile_rules(d.get("benign")),
            recoverable=compile_rules(d.get("recoverable")),
            answered_exit_codes=[
                int(code) for code in d.get("answered_exit_codes", answered_exit_codes or [])
            ],
        )


@dataclasses.dataclass
class Settings:
    """Tunable protocol settings."""
    backoff_seconds: float = 60.0
    upgrade_rate: float = 0.5
    proposal_rate: float = 0.5
    playoff_roles: List[int] = dataclasses.field(default_factory=lambda: [1, 2])
    stake_duration: int = 604800
    table_limit: int = 100
    entity_retries: int = 3
    command_timeout: Optional[float] = None
    answered_exit_codes: List[int] = dataclasses.field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Settings":
        defaults = cls()
        return cls(
            backoff_seconds=float(d.get("backoff_seconds", defaults.backoff_seconds)),
            upgrade_rate=float(d.get("upgrade_rate", defaults.upgrade_rate)),
            proposal_rate=float(d.get("proposal_rate", defaults.proposal_rate)),
            playoff_roles=list(d.get("playoff_roles", defaults.playoff_roles)),
            stake_duration=int(d.get("stake_duration", defaults.stake_duration)),
            table_limit=int(d.get("table_limit", defaults.table_limit)),
            entity_retries=int(d.get("entity_retries", defaults.entity_retries)),
            command_timeout=d.get("command_timeout", defaults.command_timeout),
            answered_exit_codes=[
                int(code) for code in d.get("answered_exit_codes", defaults.answered_exit_codes)
            ],
        )


@dataclasses.dataclass
class Protocol:
    """Complete protocol configuration.

    Attributes:
        variants: Backend variant selector -> contract namespaces
        commands: Action name -> command template
        policies: Action name -> classification policy
        settings: Timing, rates and limits
        source_path: Path to the protocol file
    """
    variants: Dict[int, Variant]
    commands: Dict[str, str]
    policies: Dict[str, PhasePolicy]
    settings: Settings = dataclasses.field(default_factory=Settings)
    source_path: Optional[Path] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any], source_path: Optional[Path] = None) -> "Protocol":
        variants = {int(k): Variant.from_dict(v) for k, v in (d.get("variants") or {}).items()}
        patterns = d.get("patterns") or {}
        settings = Settings.from_dict(d.get("settings") or {})
        policies = {
            name: PhasePolicy.from_dict(name, body or {}, patterns, settings.answered_exit_codes)
            for name, body in (d.get("policies") or {}).items()
        }
        return cls(
            variants=variants,
            commands=dict(d.get("commands") or {}),
            policies=policies,
            settings=settings,
            source_path=source_path,
        )

    def variant(self, selector: int) -> Variant:
        if selector not in self.variants:
            raise KeyError(f"Unknown backend variant {selector}")
        return self.variants[selector]

    def command(self, name: str) -> str:
        if name not in self.commands:
            raise KeyError(f"No command template named '{name}'")
        return self.commands[name]

    def policy(self, name: str) -> PhasePolicy:
        """Policy for an action. Actions without one match no patterns."""
        return self.policies.get(name) or PhasePolicy(
            name=name, answered_exit_codes=list(self.settings.answered_exit_codes)
        )


def load_protocol(path: Optional[Path] = None) -> Protocol:
    """Load and validate the protocol file.

    Args:
        path: Protocol YAML path (defaults to the bundled protocol.yaml)

    Returns:
        Protocol instance

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file has invalid YAML
        ValueError: If the file has invalid structure
    """
    path = Path(path) if path is not None else default_protocol_path()
    if not path.exists():
        raise FileNotFoundError(f"Protocol file not found: {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Invalid YAML in protocol file: {e}")

    if not isinstance(raw, dict):
        raise ValueError(f"Protocol file must be a YAML dict, got: {type(raw).__name__}")

    protocol = Protocol.from_dict(raw, source_path=path)
    errors = validate_protocol(protocol)
    if errors:
        raise ValueError("Invalid protocol file:\n  " + "\n  ".join(errors))

    logger.debug(f"Loaded protocol from {path}")
    logger.debug(f"  variants: {sorted(protocol.variants)}")
    logger.debug(f"  commands: {len(protocol.commands)}, policies: {len(protocol.policies)}")
    return protocol


def validate_protocol(protocol: Protocol) -> List[str]:
    """Validate protocol structure.

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    for selector in (0, 1, 2):
        if selector not in protocol.variants:
            errors.append(f"Missing backend variant {selector}")
    for name in REQUIRED_COMMANDS:
        if name not in protocol.commands:
            errors.append(f"Missing command template '{name}'")

    s = protocol.settings
    for label, rate in (("upgrade_rate", s.upgrade_rate), ("proposal_rate", s.proposal_rate)):
        if not 0.0 <= rate <= 1.0:
            errors.append(f"{label} must be within [0, 1], got {rate}")
    if len(s.playoff_roles) != 2:
        errors.append(f"playoff_roles must list exactly 2 roles, got {s.playoff_roles}")
    if s.backoff_seconds < 0:
        errors.append(f"backoff_seconds must not be negative, got {s.backoff_seconds}")
    if s.table_limit <= 0:
        errors.append(f"table_limit must be positive, got {s.table_limit}")
    if s.entity_retries <= 0:
        errors.append(f"entity_retries must be positive, got {s.entity_retries}")
    for policy in protocol.policies.values():
        if 0 in policy.answered_exit_codes or any(c < 0 for c in policy.answered_exit_codes):
            errors.append(
                f"Policy '{policy.name}': answered_exit_codes must be positive, "
                f"got {policy.answered_exit_codes}"
            )
    return errors
