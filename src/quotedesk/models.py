"""Summary: Domain model dataclasses for QuoteDesk.

Importance: Defines the emails, classification results, quotations, and follow-ups shared across services.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parseaddr

QUOTE_TYPES = ("B2B", "B2C", "unclear")
EMAIL_STATUSES = ("complete", "incomplete")
FOLLOW_UP_STATUSES = ("pending_info", "responded", "completed", "abandoned")


@dataclass(frozen=True)
class EmailMessage:
    """Summary: Represents an inbound email fetched from the mailbox.

    Importance: Core unit for classification, extraction, and threaded replies.
    Alternatives: Pass raw provider payloads through the pipeline.
    """

    id: str
    sender: str
    subject: str
    body: str
    sender_email: str = ""
    date: str = ""
    thread_id: str | None = None
    message_id: str | None = None
    references: str | None = None
    in_reply_to: str | None = None
    is_html: bool = False

    @property
    def sender_name(self) -> str:
        """Summary: Return the display name portion of the sender.

        Importance: Gives the extraction prompt a human name to work with.
        Alternatives: Ask the LLM to parse the raw From header.
        """

        name, _ = parseaddr(self.sender)
        return name.strip().strip('"') or self.sender

    @property
    def reply_address(self) -> str:
        """Return the best address to reply to."""

        if self.sender_email:
            return self.sender_email
        _, address = parseaddr(self.sender)
        return address or self.sender


@dataclass(frozen=True)
class ClassificationSignals:
    """Summary: Output of the weighted pattern scorer.

    Importance: Keeps score and signal tags together for audit and downstream decisions.
    Alternatives: Return a bare integer score.
    """

    score: int
    strong: tuple[str, ...] = ()
    moderate: tuple[str, ...] = ()
    weak: tuple[str, ...] = ()
    negative: tuple[str, ...] = ()

    @property
    def signals(self) -> list[str]:
        """Summary: Flatten all tiers into one tag list.

        Importance: Negative tags carry a neg_ prefix so they are never mistaken for positives.
        Alternatives: Keep tiers separate everywhere.
        """

        return [
            *self.strong,
            *self.moderate,
            *self.weak,
            *(f"neg_{signal}" for signal in self.negative),
        ]


@dataclass(frozen=True)
class B2BAnalysis:
    """Summary: Output of the B2B heuristic detector.

    Importance: Separates agency/operator requests from direct traveler requests.
    Alternatives: Ask the LLM for the quote type in every case.
    """

    is_b2b: bool
    confidence: int
    indicators: tuple[str, ...] = ()


@dataclass(frozen=True)
class MultiLevelResult:
    """Summary: Provisional rule-based classification of an email.

    Importance: Decides whether an LLM call is needed at all.
    Alternatives: Always classify with the LLM.
    """

    is_tourism_related: bool
    is_commercial_inquiry: bool
    is_quote_request: bool
    quote_type: str
    final_confidence: int
    reasoning: tuple[str, ...] = ()
    all_signals: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassificationVerdict:
    """Summary: Reconciled quote/non-quote verdict.

    Importance: Single shape for rule-based, LLM, and cross-validated results.
    Alternatives: Carry both results and decide ad hoc in each caller.
    """

    is_quote: bool
    confidence: int
    quote_type: str | None = None
    signals: tuple[str, ...] = ()


@dataclass
class Budget:
    """Summary: Budget details attached to a quotation.

    Importance: Captures amount, currency, and scope for pricing.
    Alternatives: Store the budget as a free-text note.
    """

    amount: float | None = None
    currency: str = ""
    scope: str = ""
    is_flexible: bool = False


@dataclass
class DietaryRequirements:
    """Summary: Dietary preferences and restrictions of the travelers."""

    preferences: list[str] = field(default_factory=list)
    allergies: list[str] = field(default_factory=list)
    restrictions: list[str] = field(default_factory=list)
    notes: str = ""


@dataclass(frozen=True)
class EmailInteraction:
    """Summary: One entry in a quotation's email history.

    Importance: Keeps an audit trail of client responses and notifications.
    Alternatives: Rebuild history from the mailbox on demand.
    """

    date: str
    type: str
    email_id: str | None = None
    content: str | None = None


@dataclass
class Quotation:
    """Summary: Persisted record of a travel quotation request.

    Importance: The central business entity created from quote emails and completed by follow-ups.
    Alternatives: Store raw extraction payloads without normalization.
    """

    id: str
    email_id: str
    client_name: str = ""
    client_email: str = ""
    subject: str = ""
    destination: str = ""
    city: str = ""
    country: str = ""
    start_date: str = ""
    end_date: str = ""
    flex_dates: bool = False
    preferred_month: str = ""
    number_of_people: int = 0
    adults: int = 0
    children: int = 0
    children_ages: list[int] = field(default_factory=list)
    interests: list[str] = field(default_factory=list)
    dietary_requirements: DietaryRequirements = field(default_factory=DietaryRequirements)
    budget: Budget = field(default_factory=Budget)
    missing_fields: list[str] = field(default_factory=list)
    email_status: str = "incomplete"
    email_history: list[EmailInteraction] = field(default_factory=list)
    created_at: str = ""


@dataclass(frozen=True)
class FollowUpEvent:
    """Summary: One contact recorded on a follow-up record."""

    date: str
    type: str
    email_id: str | None = None
    content: str | None = None


@dataclass
class FollowUpRecord:
    """Summary: Tracks the request/response cycle for an incomplete quotation.

    Importance: Lets the system recognize client replies and schedule reminders.
    Alternatives: Embed follow-up state inside the quotation record.
    """

    quotation_id: str
    email_id: str
    client_email: str
    status: str = "pending_info"
    last_contact_date: str = ""
    follow_ups_sent: int = 1
    max_follow_ups: int = 2
    next_follow_up_date: str | None = None
    email_history: list[FollowUpEvent] = field(default_factory=list)


@dataclass(frozen=True)
class CompletenessEvaluation:
    """Summary: Result of evaluating how complete a quotation is.

    Importance: Drives the choice between confirming, asking for more info, or proceeding.
    Alternatives: Ask the LLM to judge completeness.
    """

    is_complete: bool
    missing_essential_fields: tuple[str, ...]
    missing_important_fields: tuple[str, ...]
    completeness_score: int
    recommendation: str
    reasoning: str


@dataclass(frozen=True)
class ProcessingError:
    """Summary: A per-email failure recorded during a batch run."""

    email_id: str
    error: str
    timestamp: str


@dataclass(frozen=True)
class ProcessingMetrics:
    """Summary: Aggregate metrics for one batch run.

    Importance: Gives operators a quick view of throughput and failure rate.
    Alternatives: Derive metrics from logs after the fact.
    """

    emails_processed: int
    quotations_created: int
    not_quotations: int
    failed: int
    processing_time_ms: int
    avg_processing_time_per_email: float
    success_rate: float
    errors: tuple[ProcessingError, ...] = ()


@dataclass(frozen=True)
class BatchResult:
    """Summary: Result of a batch run: quotations, metrics, and a short summary."""

    quotations: list[Quotation]
    metrics: ProcessingMetrics
    summary: dict[str, object]


def utc_now() -> datetime:
    """Summary: Return the current time for timestamps.

    Importance: Single place for timestamp generation so services stay consistent.
    Alternatives: Call datetime.utcnow() inline everywhere.
    """

    return datetime.utcnow()


def parse_timestamp(value: str | None) -> datetime | None:
    """Summary: Parse a stored ISO timestamp as naive UTC.

    Importance: Records written with a trailing Z or an offset compare cleanly with utc_now().
    Alternatives: Store and compare timezone-aware datetimes everywhere.
    """

    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
