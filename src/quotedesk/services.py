"""Summary: Application services for QuoteDesk.

Importance: Orchestrates batch runs, follow-up reminders, and statistics.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from quotedesk.config import ProcessingConfig
from quotedesk.email import Mailbox
from quotedesk.email_templates import DmcProfile, follow_up_reminder_email
from quotedesk.models import (
    BatchResult,
    EmailMessage,
    FollowUpRecord,
    ProcessingError,
    ProcessingMetrics,
    Quotation,
    parse_timestamp,
    utc_now,
)
from quotedesk.pipeline import (
    FAILED,
    INSUFFICIENT_DATA,
    NOT_QUOTE,
    QUOTATION_CREATED,
    EmailOutcome,
    EmailPipeline,
    StepLimitExceeded,
)
from quotedesk.storage.json_store import FollowUpRepository, QuotationRepository

logger = logging.getLogger(__name__)

BATCH_READ_ERROR_ID = "batch_read"
SUMMARY_ERROR_LIMIT = 3


@dataclass
class BatchService:
    """Summary: Processes a batch of unread emails with bounded concurrency.

    Importance: One failing email never aborts the batch; each email gets a timeout and retries.
    Alternatives: Process emails strictly one at a time.
    """

    mailbox: Mailbox
    quotations: QuotationRepository
    pipeline: EmailPipeline
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    now: Callable[[], datetime] = utc_now

    async def run(self, max_emails: int | None = None) -> BatchResult:
        """Summary: Read, process, and summarize one batch.

        Importance: A mailbox read failure ends the run with a single synthetic error entry.
        Alternatives: Raise the read failure to the caller.
        """

        started = time.perf_counter()
        limit = max_emails or self.processing.max_emails
        try:
            emails = await asyncio.to_thread(self.mailbox.list_unread, limit)
        except Exception as exc:
            logger.error("Could not read the mailbox: %s", exc)
            error = ProcessingError(
                email_id=BATCH_READ_ERROR_ID,
                error=f"Failed to read emails: {exc}",
                timestamp=self.now().isoformat(),
            )
            return self._result([], [error], started, skipped=0)

        fresh = [email for email in emails if not self.quotations.is_email_processed(email.id)]
        skipped = len(emails) - len(fresh)
        if skipped:
            logger.info("Skipping %s already processed emails", skipped)
        logger.info(
            "Processing %s emails (concurrency %s)", len(fresh), self.processing.concurrency
        )
        semaphore = asyncio.Semaphore(max(1, self.processing.concurrency))
        outcomes = await asyncio.gather(
            *(self._process_with_retry(email, semaphore) for email in fresh)
        )
        errors = [
            ProcessingError(
                email_id=outcome.email_id,
                error=outcome.error or "unknown error",
                timestamp=self.now().isoformat(),
            )
            for outcome in outcomes
            if outcome.failed
        ]
        return self._result(list(outcomes), errors, started, skipped=skipped)

    async def _process_with_retry(
        self, email: EmailMessage, semaphore: asyncio.Semaphore
    ) -> EmailOutcome:
        attempts = max(1, self.processing.retry.max_attempts)
        timeout = self.processing.timeout_ms / 1000
        async with semaphore:
            outcome = EmailOutcome(email_id=email.id, status=FAILED, error="not attempted")
            for attempt in range(1, attempts + 1):
                try:
                    outcome = await asyncio.wait_for(self.pipeline.process(email), timeout)
                except asyncio.TimeoutError:
                    outcome = EmailOutcome(
                        email_id=email.id,
                        status=FAILED,
                        error=f"timed out after {self.processing.timeout_ms}ms",
                    )
                except StepLimitExceeded as exc:
                    outcome = EmailOutcome(email_id=email.id, status=FAILED, error=str(exc))
                    break
                if not outcome.failed:
                    break
                if attempt < attempts:
                    delay = self.processing.retry.delay_for(attempt)
                    logger.info(
                        "Retrying email %s in %.1fs (attempt %s/%s): %s",
                        email.id,
                        delay,
                        attempt + 1,
                        attempts,
                        outcome.error,
                    )
                    await self.sleep(delay)
        _log_outcome(outcome)
        return outcome

    def _result(
        self,
        outcomes: list[EmailOutcome],
        errors: list[ProcessingError],
        started: float,
        skipped: int,
    ) -> BatchResult:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        processed = len(outcomes)
        failed = len(errors)
        successful = processed - sum(1 for outcome in outcomes if outcome.failed)
        metrics = ProcessingMetrics(
            emails_processed=processed,
            quotations_created=sum(1 for outcome in outcomes if outcome.status == QUOTATION_CREATED),
            not_quotations=sum(
                1 for outcome in outcomes if outcome.status in (NOT_QUOTE, INSUFFICIENT_DATA)
            ),
            failed=failed,
            processing_time_ms=elapsed_ms,
            avg_processing_time_per_email=round(elapsed_ms / processed, 1) if processed else 0.0,
            success_rate=round(successful / processed * 100, 1) if processed else 0.0,
            errors=tuple(errors),
        )
        quotations: list[Quotation] = [
            outcome.quotation for outcome in outcomes if outcome.quotation is not None
        ]
        summary: dict[str, object] = {
            "total": processed,
            "successful": successful,
            "failed": failed,
            "skipped": skipped,
            "quotations": [quotation.id for quotation in quotations],
            "processing_time_ms": elapsed_ms,
            "errors": [f"{error.email_id}: {error.error}" for error in errors[:SUMMARY_ERROR_LIMIT]],
        }
        logger.info(
            "Batch finished: %s processed, %s quotations created, %s not quotes, %s failed in %sms",
            processed,
            metrics.quotations_created,
            metrics.not_quotations,
            failed,
            elapsed_ms,
        )
        return BatchResult(quotations=quotations, metrics=metrics, summary=summary)


def _log_outcome(outcome: EmailOutcome) -> None:
    if outcome.failed:
        logger.warning("Email %s failed: %s", outcome.email_id, outcome.error)
    elif outcome.quotation is not None:
        logger.info("Email %s: %s %s", outcome.email_id, outcome.status, outcome.quotation.id)
    else:
        logger.info("Email %s: %s", outcome.email_id, outcome.status)


@dataclass
class FollowUpService:
    """Summary: Sends reminders and maintains follow-up records.

    Importance: Clients that never answered a data request get a bounded number of reminders.
    Alternatives: Leave incomplete quotations for manual follow-up.
    """

    mailbox: Mailbox
    quotations: QuotationRepository
    follow_ups: FollowUpRepository
    profile: DmcProfile

    def send_due_reminders(self, now: datetime | None = None) -> list[str]:
        """Summary: Email every client whose reminder date has passed.

        Importance: Each sent reminder advances the record, abandoning it at the maximum.
        Alternatives: Schedule reminders with an external job runner.
        """

        moment = now or utc_now()
        reminded: list[str] = []
        for record in self.follow_ups.due_for_follow_up(moment):
            quotation = self.quotations.get(record.quotation_id)
            if quotation is None:
                logger.warning("Skipping reminder for missing quotation %s", record.quotation_id)
                continue
            template = follow_up_reminder_email(
                quotation, _days_since(record.last_contact_date, moment), self.profile
            )
            if not self.mailbox.send_message(record.client_email, template.subject, template.body):
                logger.warning("Reminder for %s was not sent", quotation.id)
                continue
            self.follow_ups.record_follow_up_sent(quotation.id, moment)
            reminded.append(quotation.id)
        logger.info("Sent %s follow-up reminders", len(reminded))
        return reminded

    def list_records(self, status: str | None = None) -> list[FollowUpRecord]:
        records = self.follow_ups.load()
        if status:
            records = [record for record in records if record.status == status]
        return records

    def cleanup(self, days_old: int = 30, now: datetime | None = None) -> int:
        return self.follow_ups.cleanup_old_records(days_old, now)


def _days_since(value: str, moment: datetime) -> int:
    contacted = parse_timestamp(value)
    if contacted is None:
        return 0
    return max(0, (moment - contacted).days)


@dataclass
class StatsService:
    """Summary: Aggregates quotation and follow-up statistics.

    Importance: Gives operators a quick picture of the pipeline state.
    Alternatives: Query the JSON files by hand.
    """

    quotations: QuotationRepository
    follow_ups: FollowUpRepository

    def summary(self, now: datetime | None = None) -> dict[str, dict[str, int]]:
        moment = now or utc_now()
        return {
            "quotations": self.quotations.statistics(moment),
            "follow_ups": self.follow_ups.stats(moment),
        }
