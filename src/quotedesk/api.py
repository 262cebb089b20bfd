"""Summary: FastAPI application for QuoteDesk.

Importance: Exposes batch runs, quotations, follow-ups, and statistics over HTTP.
Alternatives: Expose batch runs only through the CLI.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from quotedesk.app import AppServices, build_services
from quotedesk.config import AppConfig
from quotedesk.models import BatchResult, EmailMessage
from quotedesk.storage.json_store import follow_up_to_dict, quotation_to_dict


class RunRequest(BaseModel):
    """Summary: Request payload for a batch run.

    Importance: Lets callers cap the batch size per run.
    Alternatives: Use query parameters instead of JSON payloads.
    """

    max_emails: int | None = Field(default=None, ge=1, le=500)


class ClassifyRequest(BaseModel):
    """Summary: Request payload for classifying an ad-hoc email."""

    subject: str
    body: str
    sender: str = ""


class CleanupRequest(BaseModel):
    days_old: int = Field(default=30, ge=1, le=3650)


def batch_result_payload(result: BatchResult) -> dict[str, Any]:
    """Summary: Convert a batch result into a JSON-friendly payload.

    Importance: Keeps the response shape consistent with the stored schema.
    Alternatives: Return dataclasses and rely on FastAPI encoders.
    """

    metrics = result.metrics
    return {
        "quotations": [quotation_to_dict(item) for item in result.quotations],
        "metrics": {
            "emailsProcessed": metrics.emails_processed,
            "quotationsCreated": metrics.quotations_created,
            "notQuotations": metrics.not_quotations,
            "failed": metrics.failed,
            "processingTimeMs": metrics.processing_time_ms,
            "avgProcessingTimePerEmail": metrics.avg_processing_time_per_email,
            "successRate": metrics.success_rate,
            "errors": [
                {"emailId": error.email_id, "error": error.error, "timestamp": error.timestamp}
                for error in metrics.errors
            ],
        },
        "summary": result.summary,
    }


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to QuoteDesk services.

    Importance: HTTP runs and CLI runs write the same quotation files.
    Alternatives: Keep module-level singletons.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="QuoteDesk API", version="0.1.0")
    services = services or build_services(config)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Keeps quotation data private when the desk is exposed.
        Alternatives: Put the API behind a reverse proxy with auth.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/runs", dependencies=[Depends(require_api_key)])
    async def run_batch(request: RunRequest) -> dict[str, Any]:
        result = await services.batch.run(request.max_emails)
        return batch_result_payload(result)

    @app.get("/quotations", dependencies=[Depends(require_api_key)])
    def list_quotations(limit: int = 50) -> list[dict[str, Any]]:
        return [quotation_to_dict(item) for item in services.quotations.list_quotations(limit)]

    @app.get("/quotations/{quotation_id}", dependencies=[Depends(require_api_key)])
    def get_quotation(quotation_id: str) -> dict[str, Any]:
        quotation = services.quotations.get(quotation_id)
        if quotation is None:
            raise HTTPException(status_code=404, detail="Quotation not found")
        return quotation_to_dict(quotation)

    @app.get("/follow-ups", dependencies=[Depends(require_api_key)])
    def list_follow_ups(status: str | None = None) -> list[dict[str, Any]]:
        return [follow_up_to_dict(item) for item in services.follow_up.list_records(status)]

    @app.get("/stats", dependencies=[Depends(require_api_key)])
    def stats() -> dict[str, dict[str, int]]:
        return services.stats.summary()

    @app.post("/classify", dependencies=[Depends(require_api_key)])
    async def classify(request: ClassifyRequest) -> dict[str, Any]:
        message = EmailMessage(
            id="api",
            sender=request.sender,
            sender_email=request.sender,
            subject=request.subject,
            body=request.body,
        )
        report = await services.pipeline.classify_email(message)
        verdict = report.decision.verdict
        return {
            "label": report.decision.label,
            "isQuote": report.decision.is_quote,
            "confidence": verdict.confidence,
            "quoteType": verdict.quote_type,
            "signals": list(verdict.signals),
            "usedLlm": report.used_llm,
            "reasoning": list(report.rules.reasoning),
        }

    @app.post("/follow-ups/reminders", dependencies=[Depends(require_api_key)])
    def send_reminders() -> dict[str, Any]:
        reminded = services.follow_up.send_due_reminders()
        return {"sent": len(reminded), "quotationIds": reminded}

    @app.post("/follow-ups/cleanup", dependencies=[Depends(require_api_key)])
    def cleanup_follow_ups(request: CleanupRequest) -> dict[str, int]:
        return {"removed": services.follow_up.cleanup(request.days_old)}

    return app


def create_app_from_env() -> FastAPI:
    """Summary: Build the app from environment configuration.

    Importance: Factory target for ASGI servers started in factory mode.
    Alternatives: Build a module-level app at import time.
    """

    return create_app(AppConfig.from_env())
