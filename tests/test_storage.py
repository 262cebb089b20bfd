"""Summary: Tests for the JSON storage layer.

Importance: Ensures persistence, caching, and follow-up lifecycles behave as expected.
Alternatives: Rely on manual testing for storage operations.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

from quotedesk.models import Budget, EmailMessage, Quotation, parse_timestamp
from quotedesk.storage.json_store import (
    FollowUpRepository,
    JsonFileStore,
    QuotationRepository,
    quotation_from_dict,
    quotation_to_dict,
)

NOW = datetime(2026, 3, 2, 10, 0, 0)


class FakeClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


def _quotation(email_id: str, client_email: str = "laura@gmail.com") -> Quotation:
    return Quotation(
        id="",
        email_id=email_id,
        client_name="Laura",
        client_email=client_email,
        destination="Cancún",
        number_of_people=4,
        budget=Budget(amount=2000, currency="USD"),
        missing_fields=["adults", "children"],
        created_at=NOW.isoformat(),
    )


def test_store_cache_expires_after_ttl(tmp_path: Path) -> None:
    """Summary: Reads are served from cache until the TTL passes.

    Importance: A batch must not re-read the file for every email.
    Alternatives: Read the file on every call.
    """

    clock = FakeClock()
    path = tmp_path / "records.json"
    path.write_text("[{\"id\": 1}]", encoding="utf-8")
    store = JsonFileStore(path, ttl_seconds=30, clock=clock)

    assert store.load() == [{"id": 1}]
    path.write_text("[{\"id\": 2}]", encoding="utf-8")
    clock.value += 10
    assert store.load() == [{"id": 1}]
    assert store.reads == 1
    clock.value += 25
    assert store.load() == [{"id": 2}]
    assert store.reads == 2


def test_store_save_invalidates_cache(tmp_path: Path) -> None:
    clock = FakeClock()
    store = JsonFileStore(tmp_path / "nested" / "records.json", ttl_seconds=30, clock=clock)
    assert store.load() == []
    store.save([{"id": 3}])
    assert store.load() == [{"id": 3}]
    assert store.reads == 2


def test_store_returns_copies_and_tolerates_bad_json(tmp_path: Path) -> None:
    path = tmp_path / "records.json"
    path.write_text("{broken", encoding="utf-8")
    store = JsonFileStore(path, ttl_seconds=30)
    assert store.load() == []

    store.save([{"tags": ["a"]}])
    first = store.load()
    first[0]["tags"].append("b")
    assert store.load() == [{"tags": ["a"]}]


def test_repository_assigns_sequential_ids(tmp_path: Path) -> None:
    """Summary: Quotations get SQ ids and creation is idempotent per email.

    Importance: Reprocessing an email must never produce a second quotation.
    Alternatives: Check for duplicates in the pipeline.
    """

    repository = QuotationRepository(tmp_path / "quotations.json")
    first = repository.create(_quotation("msg-1"))
    second = repository.create(_quotation("msg-2"))
    again = repository.create(_quotation("msg-1"))

    assert first.id == "SQ-0001"
    assert second.id == "SQ-0002"
    assert again.id == "SQ-0001"
    assert len(repository.load()) == 2
    assert repository.is_email_processed("msg-2")
    assert not repository.is_email_processed("msg-9")
    assert [item.id for item in repository.list_quotations(limit=1)] == ["SQ-0002"]


def test_repository_skips_taken_ids(tmp_path: Path) -> None:
    path = tmp_path / "quotations.json"
    existing = _quotation("msg-1")
    existing.id = "SQ-0002"
    path.write_text(json.dumps([quotation_to_dict(existing)]), encoding="utf-8")
    repository = QuotationRepository(path)
    assert repository.create(_quotation("msg-2")).id == "SQ-0003"


def test_repository_persists_camel_case(tmp_path: Path) -> None:
    path = tmp_path / "quotations.json"
    repository = QuotationRepository(path)
    repository.create(_quotation("msg-1"))

    stored = json.loads(path.read_text(encoding="utf-8"))[0]
    assert stored["emailId"] == "msg-1"
    assert stored["numberOfPeople"] == 4
    assert stored["budget"]["isFlexible"] is False
    assert stored["dietaryRequirements"]["allergies"] == []
    assert stored["missingFields"] == ["adults", "children"]


def test_quotation_from_dict_drops_unknown_keys() -> None:
    quotation = quotation_from_dict(
        {
            "id": "SQ-0004",
            "emailId": "msg-4",
            "hasNewInfo": True,
            "budget": {"amount": 900, "notes": "x"},
            "emailHistory": [{"date": "2026-03-02", "type": "client_response", "extra": 1}],
        }
    )
    assert quotation.id == "SQ-0004"
    assert quotation.budget.amount == 900
    assert quotation.email_history[0].type == "client_response"


def test_repository_update_and_statistics(tmp_path: Path) -> None:
    repository = QuotationRepository(tmp_path / "quotations.json")
    first = repository.create(_quotation("msg-1"))
    repository.create(_quotation("msg-2", client_email="ANA@gmail.com"))
    repository.create(_quotation("msg-3", client_email="ana@gmail.com"))

    first.missing_fields = []
    first.email_status = "complete"
    repository.update(first)
    assert repository.get("SQ-0001").email_status == "complete"

    stats = repository.statistics(NOW)
    assert stats == {
        "total": 3,
        "unique_clients": 2,
        "created_today": 3,
        "complete": 1,
        "incomplete": 2,
    }


def test_follow_up_lifecycle(tmp_path: Path) -> None:
    """Summary: Walk a follow-up record from request to abandonment.

    Importance: Reminder scheduling depends on counts and dates staying accurate.
    Alternatives: Track follow-ups manually.
    """

    quotations = QuotationRepository(tmp_path / "quotations.json")
    quotation = quotations.create(_quotation("msg-1"))
    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json", max_follow_ups=3)

    record = follow_ups.create(quotation, "msg-1", NOW)
    assert record.status == "pending_info"
    assert record.follow_ups_sent == 1
    assert record.next_follow_up_date == (NOW + timedelta(days=3)).isoformat()
    assert follow_ups.due_for_follow_up(NOW) == []
    assert len(follow_ups.due_for_follow_up(NOW + timedelta(days=3))) == 1

    later = NOW + timedelta(days=3)
    bumped = follow_ups.record_follow_up_sent(quotation.id, later)
    assert bumped is not None
    assert bumped.follow_ups_sent == 2
    assert bumped.next_follow_up_date == (later + timedelta(days=7)).isoformat()

    final = follow_ups.record_follow_up_sent(quotation.id, later + timedelta(days=7))
    assert final is not None
    assert final.status == "abandoned"
    assert final.next_follow_up_date is None
    assert [event.type for event in final.email_history] == [
        "missing_data_request",
        "follow_up",
        "follow_up",
    ]


def test_follow_up_response_and_completion(tmp_path: Path) -> None:
    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json")
    quotation = _quotation("msg-1")
    quotation.id = "SQ-0001"
    follow_ups.create(quotation, "msg-1", NOW)

    responded = follow_ups.mark_responded("SQ-0001", "msg-2", NOW)
    assert responded is not None and responded.status == "responded"
    completed = follow_ups.mark_completed("SQ-0001", NOW)
    assert completed is not None and completed.status == "completed"
    assert follow_ups.mark_completed("SQ-0404", NOW) is None
    assert follow_ups.stats(NOW)["completed"] == 1


def test_find_pending_response_matches_client_replies(tmp_path: Path) -> None:
    """Summary: Replies from the client that mention the quotation are matched.

    Importance: Matched replies update the existing quotation instead of creating one.
    Alternatives: Match on thread ids only.
    """

    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json")
    quotation = _quotation("msg-1")
    quotation.id = "SQ-0001"
    follow_ups.create(quotation, "msg-1", NOW)

    def reply(sender: str, subject: str, body: str = "") -> EmailMessage:
        return EmailMessage(id="msg-2", sender=sender, subject=subject, body=body)

    assert follow_ups.find_pending_response(reply("Laura@Gmail.com", "Re: datos", "Ref SQ-0001"))
    assert follow_ups.find_pending_response(reply("laura@gmail.com", "Re: Cotización"))
    assert follow_ups.find_pending_response(reply("laura@gmail.com", "Hola")) is None
    assert follow_ups.find_pending_response(reply("otro@gmail.com", "Re: Cotización")) is None

    follow_ups.mark_responded("SQ-0001", "msg-2", NOW)
    assert follow_ups.find_pending_response(reply("laura@gmail.com", "Re: Cotización")) is None


def test_cleanup_keeps_pending_records(tmp_path: Path) -> None:
    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json")
    for number in (1, 2):
        quotation = _quotation(f"msg-{number}")
        quotation.id = f"SQ-000{number}"
        follow_ups.create(quotation, quotation.email_id, NOW - timedelta(days=60))
    follow_ups.mark_completed("SQ-0002", NOW - timedelta(days=45))

    assert follow_ups.cleanup_old_records(30, NOW) == 1
    assert [record.quotation_id for record in follow_ups.load()] == ["SQ-0001"]


def test_follow_up_reopens_after_partial_response(tmp_path: Path) -> None:
    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json")
    quotation = _quotation("msg-1")
    quotation.id = "SQ-0001"
    follow_ups.create(quotation, "msg-1", NOW)
    follow_ups.mark_responded("SQ-0001", "msg-2", NOW)

    later = NOW + timedelta(days=1)
    reopened = follow_ups.create(quotation, "msg-2", later)

    assert reopened.status == "pending_info"
    assert reopened.follow_ups_sent == 1
    assert reopened.next_follow_up_date == (later + timedelta(days=3)).isoformat()
    assert [event.type for event in reopened.email_history] == [
        "missing_data_request",
        "response_received",
        "missing_data_request",
    ]
    assert len(follow_ups.load()) == 1


def test_find_by_client_email_ignores_case(tmp_path: Path) -> None:
    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json")
    for number, client in ((1, "Laura@Gmail.com"), (2, "ana@gmail.com"), (3, "laura@gmail.com")):
        quotation = _quotation(f"msg-{number}", client_email=client)
        quotation.id = f"SQ-000{number}"
        follow_ups.create(quotation, quotation.email_id, NOW)

    found = follow_ups.find_by_client_email("LAURA@gmail.com")
    assert [record.quotation_id for record in found] == ["SQ-0001", "SQ-0003"]
    assert follow_ups.find_by_client_email("nadie@gmail.com") == []


def test_parse_timestamp_normalises_to_naive_utc() -> None:
    assert parse_timestamp("2026-03-02T10:00:00.000Z") == datetime(2026, 3, 2, 10, 0)
    assert parse_timestamp("2026-03-02T12:00:00+02:00") == datetime(2026, 3, 2, 10, 0)
    assert parse_timestamp("2026-03-02T10:00:00") == datetime(2026, 3, 2, 10, 0)
    assert parse_timestamp("mañana") is None
    assert parse_timestamp(None) is None


def test_follow_ups_with_utc_suffixed_dates(tmp_path: Path) -> None:
    """Summary: Records stamped with a trailing Z are scheduled and cleaned up normally.

    Importance: Stores written by other tools use ISO dates with a Z suffix.
    Alternatives: Rewrite stored dates during a migration.
    """

    path = tmp_path / "follow_ups.json"
    follow_ups = FollowUpRepository(path)
    for number in (1, 2):
        quotation = _quotation(f"msg-{number}")
        quotation.id = f"SQ-000{number}"
        follow_ups.create(quotation, quotation.email_id, NOW)
    follow_ups.mark_completed("SQ-0002", NOW)

    stored = json.loads(path.read_text(encoding="utf-8"))
    stored[0]["lastContactDate"] = "2026-01-01T10:00:00.000Z"
    stored[0]["nextFollowUpDate"] = "2026-03-01T10:00:00.000Z"
    stored[1]["lastContactDate"] = "2026-01-10T08:00:00.000Z"
    stored[1]["nextFollowUpDate"] = None
    path.write_text(json.dumps(stored), encoding="utf-8")
    follow_ups.invalidate()

    assert [record.quotation_id for record in follow_ups.due_for_follow_up(NOW)] == ["SQ-0001"]
    assert follow_ups.stats(NOW)["needing_follow_up"] == 1
    assert follow_ups.cleanup_old_records(30, NOW) == 1
    assert [record.quotation_id for record in follow_ups.load()] == ["SQ-0001"]
