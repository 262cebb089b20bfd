"""Summary: JSON file persistence for quotations and follow-up records.

Importance: Local-first storage with a short read cache, invalidated on every write.
Alternatives: SQLite or a hosted document database.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable

from pydantic.alias_generators import to_camel, to_snake

from quotedesk.models import (
    EMAIL_STATUSES,
    FOLLOW_UP_STATUSES,
    Budget,
    DietaryRequirements,
    EmailInteraction,
    EmailMessage,
    FollowUpEvent,
    FollowUpRecord,
    Quotation,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

QUOTATION_ID_PREFIX = "SQ-"
FIRST_REMINDER_DAYS = 3
LATER_REMINDER_DAYS = 7
DEFAULT_MAX_FOLLOW_UPS = 2


class JsonFileStore:
    """Summary: Whole-collection JSON file with a TTL read cache.

    Importance: Each repository owns its own instance, so tests stay isolated.
    Alternatives: Module-level cache dictionaries.
    """

    def __init__(
        self, path: str | Path, ttl_seconds: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._path = Path(path)
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: list[dict[str, Any]] | None = None
        self._cached_at = 0.0
        self.reads = 0

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[dict[str, Any]]:
        """Summary: Return the stored records, from cache while it is fresh.

        Importance: Avoids re-reading the file for every email in a batch.
        A missing or unreadable file counts as an empty collection.
        Alternatives: Read the file on every call.
        """

        now = self._clock()
        if self._cache is not None and now - self._cached_at < self._ttl:
            return json.loads(json.dumps(self._cache))
        self.reads += 1
        records: list[dict[str, Any]] = []
        if self._path.exists():
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                logger.warning("Ignoring unreadable store %s: %s", self._path, exc)
                data = []
            records = data if isinstance(data, list) else []
        self._cache = records
        self._cached_at = now
        return json.loads(json.dumps(records))

    def save(self, records: list[dict[str, Any]]) -> None:
        """Summary: Overwrite the file with the full collection.

        Importance: Last writer wins; the cache is invalidated before returning.
        Alternatives: Append-only logs with compaction.
        """

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
        self.invalidate()

    def invalidate(self) -> None:
        self._cache = None
        self._cached_at = 0.0


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {to_camel(key): _camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_camelize(item) for item in value]
    return value


def _pick(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    allowed = {item.name for item in fields(cls)}
    snake = {to_snake(key): value for key, value in data.items()}
    return {key: value for key, value in snake.items() if key in allowed}


def quotation_to_dict(quotation: Quotation) -> dict[str, Any]:
    """Serialize a quotation with the camelCase keys of the stored schema."""

    return _camelize(asdict(quotation))


def quotation_from_dict(data: dict[str, Any]) -> Quotation:
    """Summary: Rebuild a quotation from its stored form.

    Importance: Unknown keys, including leftover transient merge fields, are dropped.
    Alternatives: Fail on unexpected keys.
    """

    values = _pick(Quotation, data)
    values["budget"] = Budget(**_pick(Budget, values.get("budget") or {}))
    values["dietary_requirements"] = DietaryRequirements(
        **_pick(DietaryRequirements, values.get("dietary_requirements") or {})
    )
    values["email_history"] = [
        EmailInteraction(**_pick(EmailInteraction, item)) for item in values.get("email_history") or []
    ]
    return Quotation(**values)


def follow_up_to_dict(record: FollowUpRecord) -> dict[str, Any]:
    return _camelize(asdict(record))


def follow_up_from_dict(data: dict[str, Any]) -> FollowUpRecord:
    values = _pick(FollowUpRecord, data)
    values["email_history"] = [
        FollowUpEvent(**_pick(FollowUpEvent, item)) for item in values.get("email_history") or []
    ]
    return FollowUpRecord(**values)


class QuotationRepository:
    """Summary: Repository for quotation records.

    Importance: Serializes id assignment and read-modify-write cycles behind one lock.
    Alternatives: Derive ids from the collection length without locking.
    """

    def __init__(
        self,
        path: str | Path,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = JsonFileStore(path, ttl_seconds, clock)
        self._lock = threading.RLock()

    def load(self) -> list[Quotation]:
        return [quotation_from_dict(item) for item in self.store.load()]

    def save(self, quotations: list[Quotation]) -> None:
        with self._lock:
            self.store.save([quotation_to_dict(item) for item in quotations])

    def invalidate(self) -> None:
        self.store.invalidate()

    def create(self, quotation: Quotation) -> Quotation:
        """Summary: Persist a new quotation and assign its sequential id.

        Importance: Idempotent per source email: an existing record for the same email id
        is returned unchanged instead of creating a duplicate.
        Alternatives: Let callers pick ids.
        """

        with self._lock:
            quotations = self.load()
            for existing in quotations:
                if existing.email_id == quotation.email_id:
                    logger.info("Email %s already has quotation %s", quotation.email_id, existing.id)
                    return existing
            taken = {item.id for item in quotations}
            number = len(quotations) + 1
            while f"{QUOTATION_ID_PREFIX}{number:04d}" in taken:
                number += 1
            quotation.id = f"{QUOTATION_ID_PREFIX}{number:04d}"
            quotations.append(quotation)
            self.save(quotations)
        logger.info("Created quotation %s for email %s", quotation.id, quotation.email_id)
        return quotation

    def update(self, quotation: Quotation) -> Quotation:
        """Replace the stored quotation with the same id."""

        with self._lock:
            quotations = self.load()
            for index, existing in enumerate(quotations):
                if existing.id == quotation.id:
                    quotations[index] = quotation
                    self.save(quotations)
                    return quotation
        raise ValueError(f"Unknown quotation id: {quotation.id}")

    def get(self, quotation_id: str) -> Quotation | None:
        return next((item for item in self.load() if item.id == quotation_id), None)

    def find_by_email_id(self, email_id: str) -> Quotation | None:
        return next((item for item in self.load() if item.email_id == email_id), None)

    def is_email_processed(self, email_id: str) -> bool:
        return self.find_by_email_id(email_id) is not None

    def list_quotations(self, limit: int | None = None) -> list[Quotation]:
        """Return quotations, newest first."""

        quotations = list(reversed(self.load()))
        return quotations if limit is None else quotations[:limit]

    def statistics(self, now: datetime | None = None) -> dict[str, int]:
        """Summary: Count quotations, unique clients, and quotations created today.

        Importance: Feeds the stats command and endpoint.
        Alternatives: Compute counts in each caller.
        """

        today = (now or utc_now()).date().isoformat()
        quotations = self.load()
        return {
            "total": len(quotations),
            "unique_clients": len({item.client_email.lower() for item in quotations if item.client_email}),
            "created_today": sum(1 for item in quotations if item.created_at.startswith(today)),
            **{
                status: sum(1 for item in quotations if item.email_status == status)
                for status in EMAIL_STATUSES
            },
        }


def next_follow_up_date(follow_ups_sent: int, now: datetime) -> str:
    """Return the next reminder date: three days after the first request, seven after later ones."""

    days = FIRST_REMINDER_DAYS if follow_ups_sent == 1 else LATER_REMINDER_DAYS
    return (now + timedelta(days=days)).isoformat()


class FollowUpRepository:
    """Summary: Repository for follow-up records, one per quotation.

    Importance: Tracks missing-data requests, client responses, and reminders.
    Alternatives: Embed follow-up state in the quotation record.
    """

    def __init__(
        self,
        path: str | Path,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        max_follow_ups: int = DEFAULT_MAX_FOLLOW_UPS,
    ) -> None:
        self.store = JsonFileStore(path, ttl_seconds, clock)
        self.max_follow_ups = max_follow_ups
        self._lock = threading.RLock()

    def load(self) -> list[FollowUpRecord]:
        return [follow_up_from_dict(item) for item in self.store.load()]

    def save(self, records: list[FollowUpRecord]) -> None:
        with self._lock:
            self.store.save([follow_up_to_dict(item) for item in records])

    def invalidate(self) -> None:
        self.store.invalidate()

    def create(
        self, quotation: Quotation, email_id: str, now: datetime | None = None
    ) -> FollowUpRecord:
        """Summary: Open a pending cycle after a missing-data request was sent.

        Importance: The request counts as follow-up number one. A client reply that still
        leaves data missing reopens the cycle, keeping the earlier history.
        Alternatives: Start the counter at zero and send a reminder immediately.
        """

        moment = now or utc_now()
        previous = self.find_by_quotation_id(quotation.id)
        history = list(previous.email_history) if previous else []
        record = FollowUpRecord(
            quotation_id=quotation.id,
            email_id=email_id,
            client_email=quotation.client_email,
            status="pending_info",
            last_contact_date=moment.isoformat(),
            follow_ups_sent=1,
            max_follow_ups=self.max_follow_ups,
            next_follow_up_date=next_follow_up_date(1, moment),
            email_history=history
            + [FollowUpEvent(date=moment.isoformat(), type="missing_data_request", email_id=email_id)],
        )
        with self._lock:
            records = [item for item in self.load() if item.quotation_id != quotation.id]
            records.append(record)
            self.save(records)
        return record

    def find_by_quotation_id(self, quotation_id: str) -> FollowUpRecord | None:
        return next((item for item in self.load() if item.quotation_id == quotation_id), None)

    def find_by_client_email(self, client_email: str) -> list[FollowUpRecord]:
        wanted = client_email.lower()
        return [item for item in self.load() if item.client_email.lower() == wanted]

    def find_pending_response(self, email: EmailMessage) -> FollowUpRecord | None:
        """Summary: Match an incoming email to a pending follow-up record.

        Importance: A reply counts when it comes from the client of a pending record and
        mentions the quotation id, or its subject talks about the quote or the trip.
        Alternatives: Match on thread ids only.
        """

        sender = email.reply_address.lower()
        body = email.body.lower()
        subject = email.subject.lower()
        for record in self.load():
            if record.status != "pending_info" or record.client_email.lower() != sender:
                continue
            reference = record.quotation_id.lower()
            if (
                reference in body
                or reference in subject
                or "cotización" in subject
                or "viaje" in subject
            ):
                return record
        return None

    def mark_responded(
        self, quotation_id: str, email_id: str, now: datetime | None = None
    ) -> FollowUpRecord | None:
        moment = now or utc_now()
        return self._mutate(
            quotation_id,
            lambda record: _apply(
                record,
                moment,
                status="responded",
                event=FollowUpEvent(date=moment.isoformat(), type="response_received", email_id=email_id),
            ),
        )

    def mark_completed(
        self, quotation_id: str, now: datetime | None = None
    ) -> FollowUpRecord | None:
        moment = now or utc_now()
        return self._mutate(
            quotation_id,
            lambda record: _apply(
                record,
                moment,
                status="completed",
                event=FollowUpEvent(date=moment.isoformat(), type="completion_notification"),
            ),
        )

    def record_follow_up_sent(
        self, quotation_id: str, now: datetime | None = None
    ) -> FollowUpRecord | None:
        """Summary: Count another request or reminder sent to the client.

        Importance: Reaching the maximum abandons the record and clears the next date.
        Alternatives: Keep reminding until the client answers.
        """

        moment = now or utc_now()

        def bump(record: FollowUpRecord) -> None:
            record.follow_ups_sent += 1
            if record.follow_ups_sent >= record.max_follow_ups:
                record.status = "abandoned"
                record.next_follow_up_date = None
            else:
                record.status = "pending_info"
                record.next_follow_up_date = next_follow_up_date(record.follow_ups_sent, moment)
            _apply(record, moment, event=FollowUpEvent(date=moment.isoformat(), type="follow_up"))

        return self._mutate(quotation_id, bump)

    def due_for_follow_up(self, now: datetime | None = None) -> list[FollowUpRecord]:
        moment = now or utc_now()
        return [item for item in self.load() if _is_due(item, moment)]

    def stats(self, now: datetime | None = None) -> dict[str, int]:
        moment = now or utc_now()
        records = self.load()
        counts = {"total": len(records), "needing_follow_up": 0}
        counts.update({status: 0 for status in FOLLOW_UP_STATUSES})
        for record in records:
            if record.status in counts:
                counts[record.status] += 1
            if _is_due(record, moment):
                counts["needing_follow_up"] += 1
        return counts

    def cleanup_old_records(self, days_old: int = 30, now: datetime | None = None) -> int:
        """Summary: Drop records without contact for days_old days.

        Importance: Pending records are kept regardless of age.
        Alternatives: Archive instead of deleting.
        """

        cutoff = (now or utc_now()) - timedelta(days=days_old)
        with self._lock:
            records = self.load()
            kept = [
                item
                for item in records
                if item.status == "pending_info" or _parse_date(item.last_contact_date) > cutoff
            ]
            self.save(kept)
        removed = len(records) - len(kept)
        logger.info("Removed %s follow-up records older than %s days", removed, days_old)
        return removed

    def _mutate(
        self, quotation_id: str, change: Callable[[FollowUpRecord], None]
    ) -> FollowUpRecord | None:
        with self._lock:
            records = self.load()
            for record in records:
                if record.quotation_id == quotation_id:
                    change(record)
                    self.save(records)
                    return record
        logger.warning("No follow-up record for quotation %s", quotation_id)
        return None


def _apply(
    record: FollowUpRecord,
    moment: datetime,
    event: FollowUpEvent,
    status: str | None = None,
) -> None:
    if status is not None:
        record.status = status
    record.last_contact_date = moment.isoformat()
    record.email_history.append(event)


def _is_due(record: FollowUpRecord, moment: datetime) -> bool:
    if record.status != "pending_info":
        return False
    due = parse_timestamp(record.next_follow_up_date)
    return due is not None and due <= moment


def _parse_date(value: str) -> datetime:
    return parse_timestamp(value) or datetime.min
