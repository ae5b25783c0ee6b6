"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, load_config
from ..review import ReviewWorkflow
from ..services import (
    CategorizationService,
    ImportNotFoundError,
    ImportService,
    ImportValidationError,
    LineNotFoundError,
    QueueFullError,
)
from ..state_store import ImportJobStatus, InvalidTransitionError, StateStore

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    ImportJobStatus.PENDING: "⏳",
    ImportJobStatus.PROCESSING: "⚙️",
    ImportJobStatus.COMPLETED: "✅",
    ImportJobStatus.FAILED: "❌",
    ImportJobStatus.MANUAL_REVIEW: "📝",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fintrack-import",
        description="Import card statements, reconcile billing periods and learn merchant categories",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # card commands
    card_parser = subparsers.add_parser("card", help="Manage registered cards")
    card_sub = card_parser.add_subparsers(dest="card_command")
    card_add = card_sub.add_parser("add", help="Register a card for a user")
    card_add.add_argument("--user", type=int, required=True, help="Owner user ID")
    card_add.add_argument("--name", type=str, required=True, help="Card display name")
    card_add.add_argument("--last-four", type=str, help="Last four digits of the card")
    card_list = card_sub.add_parser("list", help="List a user's cards")
    card_list.add_argument("--user", type=int, required=True, help="Owner user ID")

    # submit command
    submit_parser = subparsers.add_parser("submit", help="Submit a statement file for import")
    submit_parser.add_argument("file", type=Path, help="Statement file")
    submit_parser.add_argument("--user", type=int, required=True, help="Submitting user ID")
    submit_parser.add_argument("--card", type=int, required=True, help="Target card ID")
    submit_parser.add_argument(
        "--wait",
        action="store_true",
        help="Process the import now and wait for the result",
    )
    submit_parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Seconds to wait with --wait (default: 120)",
    )

    # worker command
    worker_parser = subparsers.add_parser("worker", help="Process all pending imports")
    worker_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up waiting after this many seconds (default: no limit)",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show the progress of an import")
    status_parser.add_argument("import_id", type=int, help="Import ID")
    status_parser.add_argument("--user", type=int, required=True, help="Owner user ID")

    # list command
    list_parser = subparsers.add_parser("list", help="List a user's imports (newest first)")
    list_parser.add_argument("--user", type=int, required=True, help="Owner user ID")
    list_parser.add_argument(
        "--status",
        type=str,
        choices=[status.value for status in ImportJobStatus],
        help="Only show imports in this status",
    )

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve an import in manual review")
    resolve_parser.add_argument("import_id", type=int, help="Import ID")
    resolve_parser.add_argument("--user", type=int, required=True, help="Owner user ID")
    resolve_parser.add_argument(
        "--reject",
        action="store_true",
        help="Reject the parse instead of accepting it",
    )

    # rules commands
    rules_parser = subparsers.add_parser("rules", help="Inspect and train merchant rules")
    rules_sub = rules_parser.add_subparsers(dest="rules_command")
    rules_list = rules_sub.add_parser("list", help="List a user's merchant rules")
    rules_list.add_argument("--user", type=int, required=True, help="Owner user ID")
    rules_confirm = rules_sub.add_parser("confirm", help="Confirm the category of a line")
    rules_confirm.add_argument("--user", type=int, required=True, help="Owner user ID")
    rules_confirm.add_argument("--line", type=int, required=True, help="Transaction line ID")
    rules_confirm.add_argument("--category", type=str, required=True, help="Category name")

    # stats command
    subparsers.add_parser("stats", help="Show pipeline statistics")

    return parser


def cmd_card_add(config: Config, user_id: int, name: str, last_four: str | None) -> int:
    """Register a card."""
    store = StateStore(config.state_db_path)
    card_id = store.create_card(user_id, name, last_four)
    print(f"💳 Registered card [{card_id}] {name} for user {user_id}")
    return 0


def cmd_card_list(config: Config, user_id: int) -> int:
    """List a user's cards."""
    store = StateStore(config.state_db_path)
    cards = store.list_cards(user_id)
    if not cards:
        print("No cards registered")
        return 0
    for card in cards:
        suffix = f" (**** {card.last_four})" if card.last_four else ""
        print(f"  💳 [{card.id}] {card.name}{suffix}")
    return 0


def _print_progress(service: ImportService, import_id: int, user_id: int) -> None:
    progress = service.get_progress(import_id, user_id)
    print(f"  {STATUS_ICONS[progress.status]} Import {progress.import_id}: {progress.message}")
    if progress.error_message:
        print(f"     → Error: {progress.error_message}")
    if progress.total_amount is not None:
        print(f"     → Total: {progress.total_amount}")
    if progress.due_date:
        print(f"     → Due: {progress.due_date}")
    if progress.billing_period_id is not None:
        print(f"     → Billing period: {progress.billing_period_id}")


def cmd_submit(
    config: Config, file: Path, user_id: int, card_id: int, wait: bool, timeout: float
) -> int:
    """Submit a statement for import."""
    store = StateStore(config.state_db_path)
    service = ImportService(store, config)

    try:
        file_bytes = file.read_bytes()
    except OSError as e:
        print(f"❌ Cannot read {file}: {e}")
        return 1

    if wait:
        service.start()

    try:
        accepted = service.submit(user_id, card_id, file_bytes, file.name)
    except ImportValidationError as e:
        print(f"❌ {e}")
        return 1
    except QueueFullError as e:
        print(f"❌ {e}")
        return 1

    print(f"📥 Import {accepted.import_id} accepted ({accepted.source.value}): {accepted.message}")

    if not wait:
        print("   Run 'fintrack-import worker' to process pending imports")
        return 0

    try:
        if not service.pool.wait_until_idle(timeout):
            print(f"⚠️  Still processing after {timeout:.0f}s")
    finally:
        service.stop()

    _print_progress(service, accepted.import_id, user_id)
    return 0


def cmd_worker(config: Config, timeout: float | None) -> int:
    """Process every pending import, then exit."""
    store = StateStore(config.state_db_path)
    service = ImportService(store, config)

    service.start()
    try:
        queued = service.requeue_pending()
        print(f"⚙️  Processing {queued} pending import(s)...")
        if not service.pool.wait_until_idle(timeout):
            print("⚠️  Timed out with imports still running")
            return 1
    finally:
        service.stop()

    print("✓ Done")
    return 0


def cmd_status(config: Config, import_id: int, user_id: int) -> int:
    """Show the progress of an import."""
    store = StateStore(config.state_db_path)
    service = ImportService(store, config)
    try:
        _print_progress(service, import_id, user_id)
    except ImportNotFoundError as e:
        print(f"❌ {e}")
        return 1
    return 0


def cmd_list(config: Config, user_id: int, status: str | None) -> int:
    """List a user's imports."""
    store = StateStore(config.state_db_path)
    service = ImportService(store, config)
    imports = service.list_imports(user_id, ImportJobStatus(status) if status else None)

    if not imports:
        print("No imports found")
        return 0

    for item in imports:
        print(
            f"  {STATUS_ICONS[item.status]} [{item.import_id}] {item.original_file_name or '-'} "
            f"{item.status.value} ({item.imported_at})"
        )
    print(f"\n✓ {len(imports)} import(s)")
    return 0


def cmd_resolve(config: Config, import_id: int, user_id: int, reject: bool) -> int:
    """Resolve an import parked for manual review."""
    store = StateStore(config.state_db_path)
    workflow = ReviewWorkflow(ImportService(store, config))

    try:
        outcome = workflow.resolve(import_id, user_id, accept=not reject)
    except (ImportNotFoundError, InvalidTransitionError) as e:
        print(f"❌ {e}")
        return 1

    print(f"{STATUS_ICONS[outcome.status]} Import {import_id} {outcome.decision.value.lower()}")
    if outcome.reconciliation:
        result = outcome.reconciliation
        print(
            f"     → Billing period {result.billing_period_id}: "
            f"{result.lines_added} added, {result.lines_skipped} skipped"
        )
    return 0


def cmd_rules_list(config: Config, user_id: int) -> int:
    """List merchant rules."""
    store = StateStore(config.state_db_path)
    service = CategorizationService(store, config.categorization.auto_apply_threshold)
    rules = service.list_rules(user_id)

    if not rules:
        print("No merchant rules learned yet")
        return 0

    for rule in rules:
        marker = "⚡" if rule.is_auto_apply(service.auto_apply_threshold) else "💡"
        print(
            f"  {marker} {rule.merchant_key} → {rule.category} "
            f"(confirmed {rule.confirmation_count}x, applied {rule.times_applied}x, "
            f"overridden {rule.times_overridden}x)"
        )
    return 0


def cmd_rules_confirm(config: Config, user_id: int, line_id: int, category: str) -> int:
    """Confirm the category of a transaction line."""
    store = StateStore(config.state_db_path)
    service = CategorizationService(store, config.categorization.auto_apply_threshold)

    try:
        rule = service.record_confirmation(user_id, line_id, category)
    except LineNotFoundError as e:
        print(f"❌ {e}")
        return 1

    if rule is None:
        print(f"✓ Line {line_id} set to {category} (no merchant key, no rule learned)")
    else:
        print(
            f"✓ Line {line_id} set to {category}; rule {rule.merchant_key} "
            f"now at {rule.confirmation_count} confirmation(s)"
        )
    return 0


def cmd_stats(config: Config) -> int:
    """Show pipeline statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Pipeline Status")
    print("=" * 40)
    print(f"  Imports total:          {stats['imports_total']}")
    print(f"  Pending:                {stats['imports_pending']}")
    print(f"  Processing:             {stats['imports_processing']}")
    print(f"  Completed:              {stats['imports_completed']}")
    print(f"  Manual review:          {stats['imports_manual_review']}")
    print(f"  Failed:                 {stats['imports_failed']}")
    print(f"  Billing periods:        {stats['billing_periods']}")
    print(f"  Transaction lines:      {stats['transaction_lines']}")
    print(f"  Auto-categorized lines: {stats['lines_auto_categorized']}")
    print(f"  Merchant rules:         {stats['merchant_rules']}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "card":
        if parsed.card_command == "add":
            return cmd_card_add(config, parsed.user, parsed.name, parsed.last_four)
        if parsed.card_command == "list":
            return cmd_card_list(config, parsed.user)
    elif parsed.command == "submit":
        return cmd_submit(
            config, parsed.file, parsed.user, parsed.card, parsed.wait, parsed.timeout
        )
    elif parsed.command == "worker":
        return cmd_worker(config, parsed.timeout)
    elif parsed.command == "status":
        return cmd_status(config, parsed.import_id, parsed.user)
    elif parsed.command == "list":
        return cmd_list(config, parsed.user, parsed.status)
    elif parsed.command == "resolve":
        return cmd_resolve(config, parsed.import_id, parsed.user, parsed.reject)
    elif parsed.command == "rules":
        if parsed.rules_command == "list":
            return cmd_rules_list(config, parsed.user)
        if parsed.rules_command == "confirm":
            return cmd_rules_confirm(config, parsed.user, parsed.line, parsed.category)
    elif parsed.command == "stats":
        return cmd_stats(config)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
