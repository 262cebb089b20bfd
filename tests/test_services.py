"""Summary: Tests for follow-up reminders and statistics services.

Importance: Ensures reminders go out once per due record and stats reflect stored data.
Alternatives: Validate services manually via the CLI.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

from quotedesk.email import MockMailbox
from quotedesk.email_templates import DmcProfile
from quotedesk.models import Quotation
from quotedesk.services import FollowUpService, StatsService
from quotedesk.storage.json_store import FollowUpRepository, QuotationRepository

NOW = datetime(2026, 3, 2, 10, 0, 0)
PROFILE = DmcProfile(name="Andes DMC", signature="Equipo de Reservas")


def _seed(tmp_path: Path) -> tuple[QuotationRepository, FollowUpRepository]:
    quotations = QuotationRepository(tmp_path / "quotations.json")
    follow_ups = FollowUpRepository(tmp_path / "follow_ups.json")
    for number, client in ((1, "laura@gmail.com"), (2, "ana@gmail.com")):
        quotation = quotations.create(
            Quotation(
                id="",
                email_id=f"msg-{number}",
                client_name="Cliente",
                client_email=client,
                destination="Lima",
                missing_fields=["startDate"],
                created_at=NOW.isoformat(),
            )
        )
        follow_ups.create(quotation, quotation.email_id, NOW - timedelta(days=number * 2))
    return quotations, follow_ups


def test_send_due_reminders(tmp_path: Path) -> None:
    """Summary: Only records past their reminder date are reminded.

    Importance: Clients are never reminded early or twice for the same slot.
    Alternatives: Remind every pending client on each run.
    """

    quotations, follow_ups = _seed(tmp_path)
    mailbox = MockMailbox()
    service = FollowUpService(
        mailbox=mailbox, quotations=quotations, follow_ups=follow_ups, profile=PROFILE
    )

    reminded = service.send_due_reminders(NOW)

    assert reminded == ["SQ-0002"]
    [(to, subject, body)] = mailbox.sent
    assert to == "ana@gmail.com"
    assert subject == "Seguimiento: su cotización para Lima - SQ-0002"
    assert "Hace 4 días" in body
    record = follow_ups.find_by_quotation_id("SQ-0002")
    assert record is not None
    assert record.status == "abandoned"
    assert service.send_due_reminders(NOW) == []


def test_list_records_and_cleanup(tmp_path: Path) -> None:
    quotations, follow_ups = _seed(tmp_path)
    service = FollowUpService(
        mailbox=MockMailbox(), quotations=quotations, follow_ups=follow_ups, profile=PROFILE
    )
    follow_ups.mark_completed("SQ-0001", NOW - timedelta(days=40))

    assert [record.quotation_id for record in service.list_records("pending_info")] == ["SQ-0002"]
    assert len(service.list_records()) == 2
    assert service.cleanup(30, NOW) == 1
    assert [record.quotation_id for record in service.list_records()] == ["SQ-0002"]


def test_stats_summary(tmp_path: Path) -> None:
    """Summary: Verify stats include quotation and follow-up counts.

    Importance: Confirms the stats command and endpoint have data to serve.
    Alternatives: Read the JSON files directly.
    """

    quotations, follow_ups = _seed(tmp_path)
    summary = StatsService(quotations=quotations, follow_ups=follow_ups).summary(NOW)
    assert summary["quotations"]["total"] == 2
    assert summary["quotations"]["unique_clients"] == 2
    assert summary["quotations"]["created_today"] == 2
    assert summary["follow_ups"]["pending_info"] == 2
    assert summary["follow_ups"]["needing_follow_up"] == 1


def test_reminder_for_utc_suffixed_record(tmp_path: Path) -> None:
    quotations, follow_ups = _seed(tmp_path)
    path = tmp_path / "follow_ups.json"
    stored = json.loads(path.read_text(encoding="utf-8"))
    stored[0]["lastContactDate"] = "2026-02-25T10:00:00.000Z"
    stored[0]["nextFollowUpDate"] = "2026-03-01T10:00:00.000Z"
    path.write_text(json.dumps(stored), encoding="utf-8")
    follow_ups.invalidate()
    mailbox = MockMailbox()
    service = FollowUpService(
        mailbox=mailbox, quotations=quotations, follow_ups=follow_ups, profile=PROFILE
    )

    assert service.send_due_reminders(NOW) == ["SQ-0001", "SQ-0002"]
    assert "Hace 5 días" in mailbox.sent[0][2]
