import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path

from src.adapters.clock import SystemClock
from src.adapters.dev_email import DevEmailAdapter
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite.queue import SQLiteValidationQueue
from src.adapters.sqlite.repos import SQLiteSubscriberStore
from src.app_shell.config import build_newsletter_config, validate_ops_rules
from src.app_shell.worker import ValidationWorker, ValidationWorkerLoop
from src.components.newsletter.component import normalize_email
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger("cli")

DATA_DIR = os.environ.get("NEWSLETTER_DATA_DIR", "./data")
RULES_PATH = os.environ.get("NEWSLETTER_RULES_PATH", "newsletter.yaml")


@dataclass
class CliContext:
    rules: Rules
    db_path: str
    store: SQLiteSubscriberStore
    queue: SQLiteValidationQueue
    worker: ValidationWorker


def get_context(data_dir: str = DATA_DIR, rules_path: str = RULES_PATH) -> CliContext:
    if not Path(rules_path).exists():
        logger.error("Rules file %s not found.", rules_path)
        sys.exit(1)

    rules = load_rules(Path(rules_path))
    validate_ops_rules(rules, Path(data_dir))
    db_path = str(Path(data_dir) / "newsletter.db")

    store = SQLiteSubscriberStore(db_path)
    queue = SQLiteValidationQueue(
        db_path,
        visibility_timeout_seconds=rules.queue.visibility_timeout_seconds,
        max_attempts=rules.queue.max_attempts,
    )
    worker = ValidationWorker(
        queue,
        store,
        email_sender=DevEmailAdapter(),
        config=build_newsletter_config(rules),
        clock=SystemClock(),
    )
    return CliContext(rules=rules, db_path=db_path, store=store, queue=queue, worker=worker)


def handle_migrate(ctx: CliContext, args: argparse.Namespace) -> None:
    applied = SQLiteMigrator(ctx.db_path).run_migrations()
    print(f"Applied {len(applied)} migration(s).")


def handle_process_queue(ctx: CliContext, args: argparse.Namespace) -> None:
    result = ctx.worker.process_batch(args.batch_size or ctx.rules.queue.batch_size)
    print(
        f"Processed {result.total_processed} message(s): "
        f"{result.succeeded} ok, {result.retried} retried, {result.dropped} dropped."
    )


def handle_worker(ctx: CliContext, args: argparse.Namespace) -> None:
    loop = ValidationWorkerLoop(
        ctx.worker,
        poll_interval_seconds=ctx.rules.queue.poll_interval_seconds,
        batch_size=ctx.rules.queue.batch_size,
    )
    loop.start()
    try:
        while loop.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        loop.stop()


def handle_show(ctx: CliContext, args: argparse.Namespace) -> None:
    record = ctx.store.get_by_email(normalize_email(args.email))
    if record is None:
        print("No subscriber with that email.")
        return
    print(f"id:         {record.id}")
    print(f"email:      {record.email}")
    print(f"status:     {record.status.value}")
    print(f"created_at: {record.created_at.isoformat()}")
    print(f"updated_at: {record.updated_at.isoformat()}")


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Newsletter subscriptions CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply database migrations")

    process_parser = subparsers.add_parser("process-queue", help="Process one batch of validation jobs")
    process_parser.add_argument("--batch-size", type=int, default=None)

    subparsers.add_parser("worker", help="Poll the validation queue until interrupted")

    show_parser = subparsers.add_parser("subscribers", help="Show a subscriber's status")
    show_parser.add_argument("email", help="Email address to look up")

    args = parser.parse_args(argv)

    ctx = get_context()

    if args.command == "migrate":
        handle_migrate(ctx, args)
    elif args.command == "process-queue":
        handle_process_queue(ctx, args)
    elif args.command == "worker":
        handle_worker(ctx, args)
    elif args.command == "subscribers":
        handle_show(ctx, args)


if __name__ == "__main__":
    main()
