"""Summary: Tests for missing-field validation and completeness evaluation.

Importance: The recommendation decides which email the client receives.
Alternatives: Assert only through pipeline runs.
"""

from __future__ import annotations

import pytest

from quotedesk.completeness import evaluate_completeness, missing_essentials, validate_missing_fields
from quotedesk.models import Quotation


def _quotation(**overrides: object) -> Quotation:
    values: dict[str, object] = {
        "id": "SQ-0001",
        "email_id": "msg-1",
        "client_name": "Laura",
        "client_email": "laura@gmail.com",
        "destination": "Cancún",
        "start_date": "15/03/2026",
        "end_date": "22/03/2026",
        "number_of_people": 4,
        "adults": 2,
        "children": 2,
    }
    values.update(overrides)
    return Quotation(**values)


def test_validate_missing_fields_order_for_empty_quotation() -> None:
    """Summary: An empty quotation reports identity, destination, dates, and travelers.

    Importance: The order drives the wording of the missing-data email.
    Alternatives: Return an unordered set.
    """

    assert validate_missing_fields(Quotation(id="SQ-0001", email_id="msg-1")) == [
        "clientName",
        "clientEmail",
        "destination",
        "startDate",
        "endDate",
        "numberOfPeople",
    ]


def test_flexible_dates_need_preferred_month() -> None:
    quotation = _quotation(flex_dates=True, start_date="", end_date="")
    assert validate_missing_fields(quotation) == ["preferredMonth"]
    quotation.preferred_month = "marzo"
    assert validate_missing_fields(quotation) == []


def test_person_rules() -> None:
    assert validate_missing_fields(_quotation(adults=0, children=0)) == ["adults", "children"]
    assert validate_missing_fields(_quotation(number_of_people=0, adults=2, children=0)) == []
    assert validate_missing_fields(_quotation(number_of_people=5)) == [
        "numberOfPeople",
        "adults",
        "children",
    ]
    assert validate_missing_fields(_quotation(number_of_people=0, adults=0, children=1)) == [
        "numberOfPeople"
    ]


@pytest.mark.parametrize(
    ("overrides", "recommendation", "score"),
    [
        ({}, "complete", 100),
        ({"missing_fields": ["interests"]}, "proceed_with_partial", 80),
        ({"missing_fields": ["interests", "budget.amount"]}, "proceed_with_partial", 60),
        (
            {"missing_fields": ["interests", "budget.amount", "dietaryRequirements.preferences"]},
            "request_more_info",
            40,
        ),
        ({"missing_fields": ["adults", "children"]}, "request_more_info", 60),
        ({"destination": "", "missing_fields": ["destination"]}, "request_more_info", 80),
    ],
)
def test_recommendation_table(overrides: dict[str, object], recommendation: str, score: int) -> None:
    """Summary: Verify the recommendation for each completeness situation.

    Importance: Only non-critical gaps may proceed without asking the client.
    Alternatives: Always ask for every missing field.
    """

    evaluation = evaluate_completeness(_quotation(**overrides))
    assert evaluation.recommendation == recommendation
    assert evaluation.completeness_score == score
    assert evaluation.is_complete is (recommendation == "complete")


def test_missing_essentials_are_reported() -> None:
    quotation = _quotation(destination="  ", client_email="", missing_fields=["destination"])
    assert missing_essentials(quotation) == ["destination", "clientEmail"]
    evaluation = evaluate_completeness(quotation)
    assert evaluation.missing_essential_fields == ("destination", "clientEmail")
    assert "destination" in evaluation.reasoning


def test_important_fields_are_listed() -> None:
    evaluation = evaluate_completeness(_quotation(missing_fields=["adults", "children", "interests"]))
    assert evaluation.missing_important_fields == ("adults", "children")
