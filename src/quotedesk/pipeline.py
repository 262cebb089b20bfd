"""Summary: Per-email processing pipeline.

Importance: Sequences follow-up detection, classification, extraction, completeness, and replies.
Each step returns the next Action; a dispatcher loop runs steps under a step ceiling.
Alternatives: A workflow-graph library or one long function with nested branches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from quotedesk.ai import AiProvider
from quotedesk.classifier import (
    PROCESSED_LABEL,
    ClassificationDecision,
    MultiLevelClassifier,
    cross_validate,
    decide,
    needs_llm_arbitration,
    verdict_from_rules,
)
from quotedesk.completeness import evaluate_completeness
from quotedesk.email import Mailbox
from quotedesk.email_templates import DmcProfile, missing_data_email, quote_complete_email
from quotedesk.gazetteer import DEFAULT_GAZETTEER, Gazetteer
from quotedesk.models import (
    CompletenessEvaluation,
    EmailMessage,
    FollowUpRecord,
    MultiLevelResult,
    Quotation,
    utc_now,
)
from quotedesk.prompts import (
    CLASSIFICATION_SYSTEM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    FOLLOW_UP_SYSTEM_PROMPT,
    QuoteExtraction,
    classification_prompt,
    extraction_prompt,
    follow_up_extraction_prompt,
    parse_classification_response,
    parse_extraction_response,
    parse_follow_up_extraction,
    parse_response_classification,
    response_classification_prompt,
)
from quotedesk.reconciler import build_quotation, merge_quotation
from quotedesk.storage.json_store import FollowUpRepository, QuotationRepository

logger = logging.getLogger(__name__)

RESPONSE_RELEVANCE_CONFIDENCE = 60

QUOTATION_CREATED = "quotation_created"
QUOTATION_UPDATED = "quotation_updated"
FOLLOW_UP_IRRELEVANT = "follow_up_irrelevant"
NOT_QUOTE = "not_quote"
INSUFFICIENT_DATA = "insufficient_data"
FAILED = "failed"


class Action(str, Enum):
    CHECK_FOLLOW_UP = "check_follow_up"
    PROCESS_FOLLOW_UP = "process_follow_up"
    CLASSIFY = "classify"
    EXTRACT = "extract"
    EVALUATE = "evaluate_completeness"
    REQUEST_INFO = "request_missing_info"
    NOTIFY_COMPLETE = "notify_complete"
    FINISH = "finish"
    END = "end"


class StepLimitExceeded(RuntimeError):
    """Raised when an email needs more steps than the configured ceiling."""


@dataclass(frozen=True)
class ClassificationReport:
    """Summary: Rule-based result plus the final decision for one email.

    Importance: Shared by the pipeline and the classify command/endpoint.
    Alternatives: Return only the label.
    """

    rules: MultiLevelResult
    decision: ClassificationDecision
    used_llm: bool


@dataclass
class EmailState:
    """Scratch state carried between steps for one email."""

    email: EmailMessage
    status: str = NOT_QUOTE
    follow_up: FollowUpRecord | None = None
    report: ClassificationReport | None = None
    extraction: QuoteExtraction | None = None
    quotation: Quotation | None = None
    evaluation: CompletenessEvaluation | None = None
    error: str | None = None
    trail: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EmailOutcome:
    """Summary: Result of processing one email.

    Importance: Non-quote outcomes are successes; only collaborator failures count as failed.
    Alternatives: Raise on every non-happy path.
    """

    email_id: str
    status: str
    quotation: Quotation | None = None
    error: str | None = None
    steps: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return self.status == FAILED


class EmailPipeline:
    """Summary: Runs the processing steps for one email at a time.

    Importance: Keeps every collaborator call behind a step boundary where failures are recorded.
    Alternatives: Inline the flow inside the batch orchestrator.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        ai_provider: AiProvider,
        quotations: QuotationRepository,
        follow_ups: FollowUpRepository,
        profile: DmcProfile,
        classifier: MultiLevelClassifier | None = None,
        gazetteer: Gazetteer = DEFAULT_GAZETTEER,
        step_limit: int = 50,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._mailbox = mailbox
        self._ai = ai_provider
        self._quotations = quotations
        self._follow_ups = follow_ups
        self._profile = profile
        self._classifier = classifier or MultiLevelClassifier()
        self._gazetteer = gazetteer
        self._step_limit = step_limit
        self._now = now
        self._steps: dict[Action, Callable[[EmailState], Awaitable[Action]]] = {
            Action.CHECK_FOLLOW_UP: self._check_follow_up,
            Action.PROCESS_FOLLOW_UP: self._process_follow_up,
            Action.CLASSIFY: self._classify,
            Action.EXTRACT: self._extract,
            Action.EVALUATE: self._evaluate,
            Action.REQUEST_INFO: self._request_info,
            Action.NOTIFY_COMPLETE: self._notify_complete,
            Action.FINISH: self._finish,
        }

    async def process(self, email: EmailMessage) -> EmailOutcome:
        """Summary: Dispatch steps until the pipeline ends.

        Importance: A failing step ends the email as failed and leaves it unread so it can
        be retried; exceeding the step ceiling raises StepLimitExceeded.
        Alternatives: Let step exceptions propagate to the batch.
        """

        state = EmailState(email=email)
        action = Action.CHECK_FOLLOW_UP
        while action is not Action.END:
            if len(state.trail) >= self._step_limit:
                logger.error(
                    "Loop protection: email %s exceeded %s steps (%s)",
                    email.id,
                    self._step_limit,
                    " > ".join(state.trail),
                )
                raise StepLimitExceeded(f"Step limit of {self._step_limit} exceeded for email {email.id}")
            state.trail.append(action.value)
            try:
                action = await self._steps[action](state)
            except Exception as exc:
                logger.warning("Step %s failed for email %s: %s", action.value, email.id, exc)
                state.status = FAILED
                state.error = f"{action.value}: {exc}"
                action = Action.END
        return EmailOutcome(
            email_id=email.id,
            status=state.status,
            quotation=state.quotation,
            error=state.error,
            steps=tuple(state.trail),
        )

    async def classify_email(self, email: EmailMessage) -> ClassificationReport:
        """Summary: Classify an email with the rules and, when undecided, the LLM.

        Importance: The LLM is only called inside the uncertain band or for unclear types,
        and only for emails with some tourism signal.
        Alternatives: Always ask the LLM.
        """

        rules = self._classifier.classify(email.subject, email.body, email.reply_address)
        used_llm = False
        if rules.is_tourism_related and needs_llm_arbitration(rules):
            text = await self._generate(
                classification_prompt(email.subject, email.body),
                "classification",
                CLASSIFICATION_SYSTEM_PROMPT,
            )
            verdict = cross_validate(rules, parse_classification_response(text))
            used_llm = True
        else:
            verdict = verdict_from_rules(rules)
        return ClassificationReport(rules=rules, decision=decide(verdict), used_llm=used_llm)

    async def _check_follow_up(self, state: EmailState) -> Action:
        state.follow_up = self._follow_ups.find_pending_response(state.email)
        return Action.PROCESS_FOLLOW_UP if state.follow_up else Action.CLASSIFY

    async def _process_follow_up(self, state: EmailState) -> Action:
        record = state.follow_up
        assert record is not None
        quotation = self._quotations.get(record.quotation_id)
        if quotation is None:
            logger.warning("Follow-up %s points to a missing quotation", record.quotation_id)
            state.follow_up = None
            return Action.CLASSIFY
        email = state.email

        text = await self._generate(
            response_classification_prompt(email.subject, email.body, quotation.id),
            "response_classification",
            FOLLOW_UP_SYSTEM_PROMPT,
        )
        relevance = parse_response_classification(text)
        self._follow_ups.mark_responded(quotation.id, email.id, self._now())
        if not relevance.is_relevant(RESPONSE_RELEVANCE_CONFIDENCE):
            logger.info("Reply %s to %s carries no quotation data", email.id, quotation.id)
            state.status = FOLLOW_UP_IRRELEVANT
            return Action.FINISH

        text = await self._generate(
            follow_up_extraction_prompt(email.subject, email.body, quotation),
            "follow_up_extraction",
            FOLLOW_UP_SYSTEM_PROMPT,
        )
        extraction = parse_follow_up_extraction(text)
        if extraction.has_new_info:
            quotation = merge_quotation(quotation, extraction.updated_fields, email.id, self._now())
            self._quotations.update(quotation)
        state.quotation = quotation
        state.status = QUOTATION_UPDATED
        return Action.EVALUATE

    async def _classify(self, state: EmailState) -> Action:
        report = await self.classify_email(state.email)
        state.report = report
        await asyncio.to_thread(self._mailbox.apply_label, state.email.id, report.decision.label)
        if not report.decision.is_quote:
            state.status = NOT_QUOTE
            return Action.FINISH
        return Action.EXTRACT

    async def _extract(self, state: EmailState) -> Action:
        email = state.email
        text = await self._generate(
            extraction_prompt(
                email.subject,
                email.body,
                email.reply_address,
                email.sender_name,
                email.id,
                self._now().isoformat(),
            ),
            "extraction",
            EXTRACTION_SYSTEM_PROMPT,
        )
        extraction = parse_extraction_response(text, self._gazetteer)
        if extraction is None:
            state.status = NOT_QUOTE
            return Action.FINISH
        if not extraction.has_minimum_data():
            logger.info("Email %s lacks a destination and a client name", email.id)
            state.status = INSUFFICIENT_DATA
            return Action.FINISH
        state.extraction = extraction
        state.quotation = self._quotations.create(build_quotation(extraction, email, self._now()))
        state.status = QUOTATION_CREATED
        return Action.EVALUATE

    async def _evaluate(self, state: EmailState) -> Action:
        assert state.quotation is not None
        state.evaluation = evaluate_completeness(state.quotation)
        logger.info(
            "Quotation %s: %s (%s)",
            state.quotation.id,
            state.evaluation.recommendation,
            state.evaluation.reasoning,
        )
        if state.evaluation.recommendation == "complete":
            return Action.NOTIFY_COMPLETE
        if state.evaluation.recommendation == "request_more_info":
            return Action.REQUEST_INFO
        return Action.FINISH

    async def _request_info(self, state: EmailState) -> Action:
        quotation = state.quotation
        assert quotation is not None
        template = missing_data_email(quotation, state.email, self._profile)
        sent = await asyncio.to_thread(self._mailbox.send_reply, state.email, template.body)
        if not sent:
            logger.warning("Missing-data email for %s was not sent", quotation.id)
            return Action.FINISH
        self._follow_ups.create(quotation, state.email.id, self._now())
        return Action.FINISH

    async def _notify_complete(self, state: EmailState) -> Action:
        quotation = state.quotation
        assert quotation is not None
        template = quote_complete_email(quotation, state.email, self._profile)
        sent = await asyncio.to_thread(self._mailbox.send_reply, state.email, template.body)
        if not sent:
            logger.warning("Confirmation email for %s was not sent", quotation.id)
        if self._follow_ups.find_by_quotation_id(quotation.id):
            self._follow_ups.mark_completed(quotation.id, self._now())
        return Action.FINISH

    async def _finish(self, state: EmailState) -> Action:
        await asyncio.to_thread(self._mailbox.mark_read, state.email.id)
        await asyncio.to_thread(self._mailbox.apply_label, state.email.id, PROCESSED_LABEL)
        return Action.END

    async def _generate(self, prompt: str, purpose: str, system_prompt: str) -> str:
        text, latency_ms = await asyncio.to_thread(
            self._ai.generate_text, prompt, purpose, system_prompt
        )
        logger.debug("AI %s answered in %sms", purpose, latency_ms)
        return text
