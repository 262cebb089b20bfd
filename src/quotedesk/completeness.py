"""Summary: Missing-field validation and completeness evaluation for quotations.

Importance: Decides whether to confirm a quotation, ask the client for more data, or proceed.
Alternatives: Ask the LLM to judge completeness for every quotation.
"""

from __future__ import annotations

from quotedesk.models import CompletenessEvaluation, Quotation

ESSENTIAL_FIELDS = ("destination", "clientName", "clientEmail")
NON_CRITICAL_FIELDS = frozenset({"budget.amount", "interests", "dietaryRequirements.preferences"})
MAX_PARTIAL_MISSING = 2
SCORE_PENALTY_PER_FIELD = 20

FIELD_PRIORITIES: dict[str, str] = {
    "clientName": "essential",
    "clientEmail": "essential",
    "destination": "essential",
    "startDate": "important",
    "endDate": "important",
    "preferredMonth": "important",
    "numberOfPeople": "important",
    "adults": "important",
    "children": "important",
    "childrenAges": "important",
    "interests": "optional",
    "budget.amount": "optional",
    "dietaryRequirements.preferences": "optional",
    "city": "optional",
    "country": "optional",
}

_ESSENTIAL_ATTRIBUTES = {
    "destination": "destination",
    "clientName": "client_name",
    "clientEmail": "client_email",
}


def validate_missing_fields(quotation: Quotation) -> list[str]:
    """Summary: Compute the required fields a quotation still lacks.

    Importance: Deterministic, so stored missing fields can be recomputed after every merge.
    Flexible dates need a preferred month; fixed dates need a start and an end date.
    Alternatives: Trust the missing fields reported by the LLM.
    """

    missing: list[str] = []
    if not quotation.client_name:
        missing.append("clientName")
    if not quotation.client_email:
        missing.append("clientEmail")
    if not quotation.destination:
        missing.append("destination")

    if quotation.flex_dates:
        if not quotation.preferred_month:
            missing.append("preferredMonth")
    else:
        if not quotation.start_date:
            missing.append("startDate")
        if not quotation.end_date:
            missing.append("endDate")

    has_total = quotation.number_of_people > 0
    has_adults = quotation.adults > 0
    has_children = quotation.children > 0
    if not has_total and not has_adults:
        missing.append("numberOfPeople")
    if has_total and not has_adults and not has_children:
        missing.extend(["adults", "children"])
    if has_total and (has_adults or has_children):
        if quotation.adults + quotation.children != quotation.number_of_people:
            missing.extend(["numberOfPeople", "adults", "children"])
    return missing


def missing_essentials(quotation: Quotation) -> list[str]:
    """Return the essential fields that are empty on the quotation."""

    return [
        name
        for name in ESSENTIAL_FIELDS
        if not str(getattr(quotation, _ESSENTIAL_ATTRIBUTES[name]) or "").strip()
    ]


def evaluate_completeness(quotation: Quotation) -> CompletenessEvaluation:
    """Summary: Evaluate a quotation and recommend the next action.

    Importance: Drives the choice between the confirmation email, the missing-data
    email, and proceeding with partial data.
    Alternatives: Require every field before any quotation work starts.
    """

    missing = list(quotation.missing_fields)
    absent_essentials = missing_essentials(quotation)
    has_essentials = not absent_essentials
    is_complete = not missing and has_essentials
    score = max(0, 100 - SCORE_PENALTY_PER_FIELD * len(missing))
    important = tuple(
        name for name in missing if FIELD_PRIORITIES.get(name) == "important"
    )

    if is_complete:
        recommendation = "complete"
        reasoning = "All required information is present."
    elif not has_essentials:
        recommendation = "request_more_info"
        reasoning = f"Missing essential fields: {', '.join(absent_essentials)}"
    elif len(missing) <= MAX_PARTIAL_MISSING and all(name in NON_CRITICAL_FIELDS for name in missing):
        recommendation = "proceed_with_partial"
        reasoning = f"Only non-critical fields are missing: {', '.join(missing)}"
    else:
        recommendation = "request_more_info"
        reasoning = f"Missing fields: {', '.join(missing)}"

    return CompletenessEvaluation(
        is_complete=is_complete,
        missing_essential_fields=tuple(absent_essentials),
        missing_important_fields=important,
        completeness_score=score,
        recommendation=recommendation,
        reasoning=reasoning,
    )
