"""Outbox maintenance CLI.

Runs the periodic outbox jobs by hand or from cron, inside the outbox
domain context.

Usage:
    python src/manage.py process-due         # Dispatch due pending entries
    python src/manage.py cleanup --days 7    # Delete old sent/failed entries
    python src/manage.py stats               # Print queue counts
    python src/manage.py retry-failed        # Requeue and resend failed entries
    python src/manage.py process-dlq         # Drain the dead-letter queue
    python src/manage.py evict-expired       # Drop entries past their expiry
"""

import argparse
import json


def run_command(args) -> dict:
    """Execute one maintenance command and return its JSON-safe result."""
    from outbox.dispatch.scheduler import process_due_entries
    from outbox.domain import outbox
    from outbox.pipeline import get_pipeline
    from outbox.queue.requeue import retry_failed_entries
    from outbox.stats.queries import outbox_stats
    from outbox.utils.logging import add_context, clear_context

    outbox.init()

    with outbox.domain_context():
        add_context(command=args.command)
        try:
            if args.command == "process-due":
                return process_due_entries()
            if args.command == "cleanup":
                return get_pipeline().store.cleanup_terminal(days_old=args.days)
            if args.command == "evict-expired":
                return {"evicted": get_pipeline().store.evict_expired()}
            if args.command == "stats":
                return outbox_stats()
            if args.command == "retry-failed":
                return retry_failed_entries()
            if args.command == "process-dlq":
                batch = get_pipeline().process_dead_letters(limit=args.limit)
                return {
                    "processed": batch.processed,
                    "successful": batch.successful,
                    "failed": batch.failed,
                    "permanently_failed": batch.permanently_failed,
                    "errors": batch.errors,
                }
            raise ValueError(f"Unknown command: {args.command}")
        finally:
            clear_context()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Outbox maintenance")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("process-due", help="Dispatch pending entries whose scheduled time has passed")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete terminal entries older than N days")
    cleanup_parser.add_argument("--days", type=int, default=7, help="Retention window in days (default: 7)")

    subparsers.add_parser("evict-expired", help="Delete entries whose expiry has passed, whatever their status")
    subparsers.add_parser("stats", help="Print outbox counts by status")
    subparsers.add_parser("retry-failed", help="Requeue failed entries with retry budget left")

    dlq_parser = subparsers.add_parser("process-dlq", help="Drain and process dead-letter messages")
    dlq_parser.add_argument("--limit", type=int, default=10, help="Maximum messages to drain (default: 10)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    result = run_command(args)
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
