#!/usr/bin/env python3
"""
BlurGuard - Command-line entry point

Inspect and edit the blocking catalog and try out the reflection countdown
without a host app.

Usage:
    python main.py check <identifier>         # Match against catalog and schedules
    python main.py add-site <url> <category>  # Block a site or app
    python main.py reflect <category>         # Run a reflection countdown
"""

import sys
import json
import logging
import argparse
import threading
from datetime import datetime

import config
from catalog.categories import BlockingCategory
from catalog.store import CatalogStore
from core.engine import BlockingEngine
from feedback.recorder import FeedbackRecorder
from reflection.session import ReflectionSessionManager, SessionState, WarningAction, WarningOutcome
from schedule.book import ScheduleBook
from schedule.evaluator import is_target_blocked

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def build_engine() -> BlockingEngine:
    """Engine wired to the files under config.USER_DATA_DIR."""
    store = CatalogStore(config.CATALOG_FILE)
    recorder = FeedbackRecorder(config.FEEDBACK_FILE, hit_sink=store.apply_hit_counts)
    book = ScheduleBook(config.SCHEDULES_FILE, on_invalid=recorder.report_invalid_schedule)
    return BlockingEngine(catalog_store=store, schedule_book=book, recorder=recorder)


def parse_category(name: str) -> BlockingCategory:
    category = BlockingCategory.from_name(name)
    if category is None:
        choices = ", ".join(c.name.lower() for c in BlockingCategory)
        raise argparse.ArgumentTypeError(f"unknown category '{name}' (choose from: {choices})")
    return category


def cmd_check(args) -> int:
    """Print the catalog match and schedule state for an identifier."""
    engine = build_engine()
    engine.reload_catalog()

    raw_match = engine.matcher.match(args.identifier, record_hit=False)
    rules = engine.schedule_book.rules_for_identifier(
        args.identifier, extra_hashes=[raw_match.domain_hash] if raw_match else []
    )
    effective = raw_match is not None and (
        not rules or is_target_blocked(rules, datetime.now(), engine.schedule_book.on_invalid)
    )
    if effective:
        engine.matcher.record_hit(raw_match.entry_id)
    engine.recorder.flush()

    result = {
        "identifier": args.identifier,
        "matched": raw_match is not None,
        "blocked_now": effective,
        "schedules": [r.name for r in rules],
    }
    if raw_match:
        result.update({
            "category": raw_match.category.name,
            "severity": raw_match.severity,
            "confidence": raw_match.confidence,
            "pattern": raw_match.matched_pattern,
            "custom": raw_match.is_custom,
        })

    if args.json:
        print(json.dumps(result, indent=2))
    elif raw_match is None:
        print(f"✓ {args.identifier}: not in catalog")
    else:
        state = "BLOCKED" if effective else "matched, outside schedule"
        print(f"✗ {args.identifier}: {state}")
        print(f"  Category:   {raw_match.category.display_name} (severity {raw_match.severity})")
        print(f"  Pattern:    {raw_match.matched_pattern} ({raw_match.confidence:.0%})")
        for name in result["schedules"]:
            print(f"  Schedule:   {name}")
    return 0


def cmd_add_site(args) -> int:
    """Add a user-blocked site or app to the catalog."""
    store = CatalogStore(config.CATALOG_FILE)
    entry = store.add_custom_site(args.url, args.category)
    if entry is None:
        print(f"Nothing to block in '{args.url}'")
        return 1
    print(f"✓ Blocked {entry.pattern} as {entry.category.display_name}")
    return 0


def cmd_reflect(args) -> int:
    """Run a reflection countdown in the console."""
    category: BlockingCategory = args.category
    done = threading.Event()

    def on_change(snapshot):
        if snapshot["state"] == SessionState.ACTIVE.value:
            print(f"\r  {snapshot['remaining_seconds']:3d}s remaining", end="", flush=True)
        elif snapshot["state"] in (SessionState.COMPLETABLE.value, SessionState.CLOSED.value):
            done.set()

    sessions = ReflectionSessionManager(auto_tick=True)
    sessions.add_listener(on_change)

    print(f"\n{category.warning_title}")
    print("Take a moment to reflect before continuing.\n")
    result = sessions.start(category, args.seconds)
    if not result["success"]:
        print(f"Could not start: {result['error']}")
        return 1

    try:
        done.wait()
        print()
        options = [a.value for a in sessions.available_actions() if a != WarningAction.CHANGE_LANGUAGE]
        choice = input(f"Choose [{'/'.join(options)}]: ").strip().lower()
    except (KeyboardInterrupt, EOFError):
        sessions.cancel("interrupted")
        print("\nCancelled.")
        return 1

    try:
        action = WarningAction(choice)
    except ValueError:
        action = WarningAction.CLOSE
    outcome = sessions.handle(action)["outcome"]
    if outcome == WarningOutcome.ALLOW_CONTENT:
        print("Continuing.")
    else:
        sessions.handle(WarningAction.CLOSE)
        print("Closed.")
    sessions.shutdown()
    return 0


def main():
    """
    Main entry point: parses arguments and runs the chosen command.
    """
    parser = argparse.ArgumentParser(
        description="BlurGuard - Content Blocking Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py check https://www.example.com/page
  python main.py add-site example.com gambling
  python main.py reflect explicit_content --seconds 10
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Check a URL or app package against the catalog")
    check.add_argument("identifier", help="URL, hostname or app package id")
    check.add_argument("--json", action="store_true", help="Print the result as JSON")
    check.set_defaults(func=cmd_check)

    add_site = subparsers.add_parser("add-site", help="Block a site or app")
    add_site.add_argument("url", help="URL, hostname or app package id")
    add_site.add_argument("category", type=parse_category, help="Blocking category, e.g. gambling")
    add_site.set_defaults(func=cmd_add_site)

    reflect = subparsers.add_parser("reflect", help="Run a reflection countdown")
    reflect.add_argument("category", type=parse_category, help="Blocking category, e.g. explicit_content")
    reflect.add_argument("--seconds", type=int, default=None, help="Countdown length (default: category's)")
    reflect.set_defaults(func=cmd_reflect)

    args = parser.parse_args()

    try:
        sys.exit(args.func(args))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
