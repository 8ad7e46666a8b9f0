#!/usr/bin/env python3
"""firecraft command line.

Usage:
    firecraft diff SOURCE TARGET [--json]
    firecraft check SOURCE TARGET [--guardrails FILE] [--shadow-scope SCOPE]
    firecraft audit [--device DEVICE] [--since ISO] [--until ISO] [--kind KIND]
    firecraft evidence DEVICE
    firecraft locks

Environment variables:
    FIRECRAFT_HOME              Base directory (default: ~/.firecraft)
    FIRECRAFT_GUARDRAILS_FILE   Guardrail rule set used by 'check'
    FIRECRAFT_LOG_LEVEL         Console log level (--verbose forces DEBUG)
    FIRECRAFT_LOG_FILE          Log file (default: ~/.firecraft/firecraft.log)
"""
import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .audit.ledger import AuditKind, AuditLedger
from .diff.engine import DiffEngine, summarize_diff
from .errors import ConfigurationError, FirecraftError
from .guardrails.evaluator import GuardrailEvaluator
from .guardrails.loader import load_guardrails, load_guardrails_file
from .intent.parser import ConfigParser
from .settings import Settings
from .store.records import RecordStore
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2


def _load_snapshot(parser: ConfigParser, path: Path):
    return parser.parse_text(path.read_text())


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ConfigurationError(f"Not an ISO 8601 timestamp: '{value}'")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def cmd_diff(args: argparse.Namespace, settings: Settings) -> int:
    parser = ConfigParser()
    diff = DiffEngine(parser).diff(_load_snapshot(parser, args.source), _load_snapshot(parser, args.target))
    if args.json:
        print(json.dumps(diff.to_dict(), indent=2, sort_keys=True))
    else:
        print(summarize_diff(diff))
    return EXIT_OK


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    parser = ConfigParser()
    source = _load_snapshot(parser, args.source)
    target = _load_snapshot(parser, args.target)
    shadow_scope = args.shadow_scope or settings.shadow_scope

    if args.guardrails:
        rules = load_guardrails_file(
            args.guardrails, high_risk_zones=settings.high_risk_zones, shadow_scope=shadow_scope
        )
    else:
        rules = load_guardrails(
            settings.guardrails, high_risk_zones=settings.high_risk_zones, shadow_scope=shadow_scope
        )

    diff = DiffEngine(parser).diff(source, target)
    verdict = GuardrailEvaluator(rules).evaluate(diff, target)

    print(f"Verdict: {verdict.status.value} ({diff.total_changes} changes in {diff.diff_id})")
    for violation in verdict.violations:
        print(f"  [{violation.severity.value.upper()}] {violation.rule_id} "
              f"{violation.object_kind}/{violation.object_name}: {violation.message}")
    return EXIT_BLOCKED if verdict.blocked else EXIT_OK


def cmd_audit(args: argparse.Namespace, settings: Settings) -> int:
    ledger = AuditLedger(settings.base_dir / "audit" / "ledger.jsonl")
    entries = ledger.query(
        device_id=args.device,
        since=_parse_time(args.since),
        until=_parse_time(args.until),
        kind=args.kind,
    )
    for entry in entries:
        print(entry.to_json())
    return EXIT_OK


def cmd_evidence(args: argparse.Namespace, settings: Settings) -> int:
    ledger = AuditLedger(settings.base_dir / "audit" / "ledger.jsonl")
    print(json.dumps(ledger.compliance_evidence(args.device).to_dict(), indent=2))
    return EXIT_OK


def cmd_locks(args: argparse.Namespace, settings: Settings) -> int:
    locks = RecordStore(settings.base_dir).list_locks()
    if not locks:
        print("No deployment-locked devices")
    for lock in locks:
        print(f"{lock['device_id']}: {lock.get('reason', '')} (attempt {lock.get('attempt_id')})")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="firecraft",
        description="Firewall fleet reconciliation and staged deployment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show what changes between two intent versions
    firecraft diff intents/v1.yaml intents/v2.yaml

    # Run guardrails in CI; exits 2 when blocked
    firecraft check intents/v1.yaml intents/v2.yaml --guardrails guardrails.yaml

    # Compliance evidence for one device
    firecraft evidence fw-edge-01
""",
    )
    parser.add_argument("--home", type=Path, help="Base directory (overrides FIRECRAFT_HOME)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("diff", help="Diff two intent files")
    p.add_argument("source", type=Path)
    p.add_argument("target", type=Path)
    p.add_argument("--json", action="store_true", help="Print the full Diff Record as JSON")
    p.set_defaults(func=cmd_diff)

    p = sub.add_parser("check", help="Evaluate guardrails on the change between two intent files")
    p.add_argument("source", type=Path)
    p.add_argument("target", type=Path)
    p.add_argument("--guardrails", type=Path, help="Guardrail rule set (YAML)")
    p.add_argument("--shadow-scope", choices=["device_group", "shared_zone"])
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("audit", help="Query the audit ledger")
    p.add_argument("--device")
    p.add_argument("--since", help="ISO timestamp (inclusive)")
    p.add_argument("--until", help="ISO timestamp (exclusive)")
    p.add_argument("--kind", choices=[k.value for k in AuditKind])
    p.set_defaults(func=cmd_audit)

    p = sub.add_parser("evidence", help="Compliance evidence for a device")
    p.add_argument("device")
    p.set_defaults(func=cmd_evidence)

    p = sub.add_parser("locks", help="List deployment-locked devices")
    p.set_defaults(func=cmd_locks)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the firecraft CLI."""
    args = build_parser().parse_args(argv)

    # --verbose overrides FIRECRAFT_LOG_LEVEL on the console; the log file always gets DEBUG
    setup_logging(level=logging.DEBUG if args.verbose else None)

    try:
        settings = Settings.from_env()
        if args.home:
            settings.base_dir = args.home.expanduser()
        return args.func(args, settings)
    except FirecraftError as e:
        logger.error(f"{e.code}: {e.message}")
        print(f"error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
