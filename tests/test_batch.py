"""Summary: Tests for the batch orchestrator.

Importance: A batch must survive per-email failures, timeouts, and mailbox outages.
Alternatives: Verify batch behavior only in manual runs.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from quotedesk.config import ProcessingConfig, RetryPolicy
from quotedesk.email import MockMailbox
from quotedesk.models import EmailMessage, Quotation
from quotedesk.pipeline import FAILED, NOT_QUOTE, QUOTATION_CREATED, EmailOutcome, StepLimitExceeded
from quotedesk.services import BATCH_READ_ERROR_ID, BatchService
from quotedesk.storage.json_store import QuotationRepository


def _emails(count: int) -> list[EmailMessage]:
    return [
        EmailMessage(id=f"msg-{number}", sender="ana@gmail.com", subject="Viaje", body="")
        for number in range(1, count + 1)
    ]


class ScriptedPipeline:
    """Pipeline double returning queued outcomes per email id."""

    def __init__(self, script: dict[str, list[object]] | None = None, delay: float = 0.0) -> None:
        self.script = script or {}
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def process(self, email: EmailMessage) -> EmailOutcome:
        self.calls.append(email.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        queued = self.script.get(email.id)
        step = queued.pop(0) if queued else NOT_QUOTE
        if isinstance(step, Exception):
            raise step
        if step == QUOTATION_CREATED:
            quotation = Quotation(id=f"SQ-{email.id}", email_id=email.id)
            return EmailOutcome(email_id=email.id, status=QUOTATION_CREATED, quotation=quotation)
        if step == FAILED:
            return EmailOutcome(email_id=email.id, status=FAILED, error="extraction: boom")
        return EmailOutcome(email_id=email.id, status=str(step))


class BrokenMailbox(MockMailbox):
    def list_unread(self, max_results: int) -> list[EmailMessage]:
        raise RuntimeError("token expired")


def _service(
    tmp_path: Path,
    mailbox: MockMailbox,
    pipeline: ScriptedPipeline,
    processing: ProcessingConfig,
    sleeps: list[float] | None = None,
) -> BatchService:
    async def fake_sleep(delay: float) -> None:
        if sleeps is not None:
            sleeps.append(delay)

    return BatchService(
        mailbox=mailbox,
        quotations=QuotationRepository(tmp_path / "quotations.json"),
        pipeline=pipeline,  # type: ignore[arg-type]
        processing=processing,
        sleep=fake_sleep,
    )


@pytest.mark.asyncio
async def test_batch_bounds_concurrency(tmp_path: Path) -> None:
    """Summary: No more than the configured number of emails run at once.

    Importance: Protects the LLM and the mailbox API from bursts.
    Alternatives: Process emails strictly one at a time.
    """

    pipeline = ScriptedPipeline(delay=0.01)
    service = _service(tmp_path, MockMailbox(_emails(7)), pipeline, ProcessingConfig(concurrency=2))

    result = await service.run()

    assert pipeline.max_in_flight == 2
    assert sorted(pipeline.calls) == sorted(email.id for email in _emails(7))
    assert result.metrics.emails_processed == 7
    assert result.metrics.not_quotations == 7
    assert result.metrics.success_rate == 100.0


@pytest.mark.asyncio
async def test_batch_retries_failed_emails(tmp_path: Path) -> None:
    pipeline = ScriptedPipeline({"msg-1": [FAILED, QUOTATION_CREATED], "msg-2": [FAILED, FAILED]})
    sleeps: list[float] = []
    processing = ProcessingConfig(retry=RetryPolicy(max_attempts=2))
    service = _service(tmp_path, MockMailbox(_emails(2)), pipeline, processing, sleeps)

    result = await service.run()

    assert pipeline.calls.count("msg-1") == 2
    assert pipeline.calls.count("msg-2") == 2
    assert sleeps == [1.0, 1.0]
    assert result.metrics.quotations_created == 1
    assert result.metrics.failed == 1
    assert result.metrics.success_rate == 50.0
    assert [quotation.id for quotation in result.quotations] == ["SQ-msg-1"]
    assert result.summary["quotations"] == ["SQ-msg-1"]
    assert result.summary["errors"] == ["msg-2: extraction: boom"]


@pytest.mark.asyncio
async def test_step_limit_is_not_retried(tmp_path: Path) -> None:
    pipeline = ScriptedPipeline({"msg-1": [StepLimitExceeded("Step limit of 50 exceeded for email msg-1")]})
    processing = ProcessingConfig(retry=RetryPolicy(max_attempts=3))
    service = _service(tmp_path, MockMailbox(_emails(1)), pipeline, processing, [])

    result = await service.run()

    assert pipeline.calls == ["msg-1"]
    assert result.metrics.failed == 1
    assert "Step limit" in result.metrics.errors[0].error


@pytest.mark.asyncio
async def test_batch_times_out_slow_emails(tmp_path: Path) -> None:
    """Summary: A slow email is recorded as failed and the batch continues.

    Importance: One hanging LLM call must not stall the whole batch.
    Alternatives: Wait indefinitely for every email.
    """

    pipeline = ScriptedPipeline(delay=1.0)
    service = _service(
        tmp_path, MockMailbox(_emails(2)), pipeline, ProcessingConfig(timeout_ms=20, concurrency=2)
    )

    result = await service.run()

    assert result.metrics.failed == 2
    assert all("timed out" in error.error for error in result.metrics.errors)


@pytest.mark.asyncio
async def test_mailbox_read_failure_returns_single_error(tmp_path: Path) -> None:
    service = _service(tmp_path, BrokenMailbox(), ScriptedPipeline(), ProcessingConfig())

    result = await service.run()

    assert result.metrics.emails_processed == 0
    assert result.metrics.failed == 1
    [error] = result.metrics.errors
    assert error.email_id == BATCH_READ_ERROR_ID
    assert "token expired" in error.error


@pytest.mark.asyncio
async def test_batch_skips_processed_emails_and_caps_size(tmp_path: Path) -> None:
    pipeline = ScriptedPipeline()
    service = _service(tmp_path, MockMailbox(_emails(5)), pipeline, ProcessingConfig(max_emails=4))
    service.quotations.create(Quotation(id="", email_id="msg-2"))

    result = await service.run()

    assert sorted(pipeline.calls) == ["msg-1", "msg-3", "msg-4"]
    assert result.summary["skipped"] == 1
    assert result.summary["total"] == 3

    await service.run(max_emails=1)
    assert pipeline.calls[-1] == "msg-1"
