"""Summary: Command-line interface for QuoteDesk.

Importance: Provides a local entry point for batch runs and record inspection.
Alternatives: Operate the desk only through the HTTP API.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from quotedesk.app import build_services
from quotedesk.config import AppConfig
from quotedesk.models import FOLLOW_UP_STATUSES, EmailMessage
from quotedesk.storage.json_store import quotation_to_dict


def build_parser() -> argparse.ArgumentParser:
    """Summary: Declare the quote desk subcommands.

    Importance: Operators run batches and inspect quotations without the API.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="QuoteDesk CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Process a batch of unread emails")
    run.add_argument("--max-emails", type=int, default=None)

    classify = subparsers.add_parser("classify", help="Classify an email without processing it")
    classify.add_argument("subject", type=str)
    classify.add_argument("body", type=str)
    classify.add_argument("--sender", type=str, default="")

    list_quotations = subparsers.add_parser("list-quotations", help="List quotations")
    list_quotations.add_argument("--limit", type=int, default=20)

    show_quotation = subparsers.add_parser("show-quotation", help="Show one quotation as JSON")
    show_quotation.add_argument("quotation_id", type=str)

    list_follow_ups = subparsers.add_parser("list-follow-ups", help="List follow-up records")
    list_follow_ups.add_argument("--status", choices=FOLLOW_UP_STATUSES, default=None)

    subparsers.add_parser("stats", help="Show quotation and follow-up statistics")
    subparsers.add_parser("send-reminders", help="Send due follow-up reminders")

    cleanup = subparsers.add_parser("cleanup-follow-ups", help="Remove old follow-up records")
    cleanup.add_argument("--days", type=int, default=30)

    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives batch runs and inspection without the HTTP API.
    Alternatives: Invoke services via the HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    services = build_services(config)

    if args.command == "run":
        result = asyncio.run(services.batch.run(args.max_emails))
        metrics = result.metrics
        print(
            f"Processed {metrics.emails_processed} emails: {metrics.quotations_created} quotations, "
            f"{metrics.not_quotations} not quotes, {metrics.failed} failed "
            f"({metrics.success_rate}% success, {metrics.processing_time_ms}ms)."
        )
        for error in result.summary["errors"]:
            print(f"  error: {error}")
        return

    if args.command == "classify":
        message = EmailMessage(
            id="cli",
            sender=args.sender,
            sender_email=args.sender,
            subject=args.subject,
            body=args.body,
        )
        report = asyncio.run(services.pipeline.classify_email(message))
        verdict = report.decision.verdict
        print(f"{report.decision.label} ({verdict.confidence}%) type={verdict.quote_type or 'unclear'}")
        print(f"signals: {', '.join(verdict.signals) or '-'}")
        for reason in report.rules.reasoning:
            print(f"  {reason}")
        return

    if args.command == "list-quotations":
        for quotation in services.quotations.list_quotations(args.limit):
            print(
                f"{quotation.id}: {quotation.client_name} <{quotation.client_email}> "
                f"{quotation.destination or '-'} [{quotation.email_status}]"
            )
        return

    if args.command == "show-quotation":
        quotation = services.quotations.get(args.quotation_id)
        if quotation is None:
            raise ValueError(f"Quotation not found: {args.quotation_id}")
        print(json.dumps(quotation_to_dict(quotation), indent=2, ensure_ascii=False))
        return

    if args.command == "list-follow-ups":
        for record in services.follow_up.list_records(args.status):
            print(
                f"{record.quotation_id}: {record.client_email} {record.status} "
                f"sent={record.follow_ups_sent}/{record.max_follow_ups} next={record.next_follow_up_date or '-'}"
            )
        return

    if args.command == "stats":
        print(json.dumps(services.stats.summary(), indent=2))
        return

    if args.command == "send-reminders":
        reminded = services.follow_up.send_due_reminders()
        print(f"Sent {len(reminded)} reminders.")
        return

    if args.command == "cleanup-follow-ups":
        removed = services.follow_up.cleanup(args.days)
        print(f"Removed {removed} follow-up records.")
        return


if __name__ == "__main__":
    run_cli()
