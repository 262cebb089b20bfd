"""Summary: Build and reconcile quotation records.

Importance: Turns extractions into quotations and merges follow-up replies into partial ones.
Alternatives: Overwrite the whole record with each new extraction.
"""

from __future__ import annotations

import copy
from datetime import datetime

from quotedesk.completeness import validate_missing_fields
from quotedesk.models import (
    Budget,
    DietaryRequirements,
    EmailInteraction,
    EmailMessage,
    Quotation,
)
from quotedesk.prompts import QuotationUpdate, QuoteExtraction

DEFAULT_CLIENT_NAME = "Cliente"

_SCALAR_FIELDS = (
    "client_name",
    "destination",
    "city",
    "country",
    "start_date",
    "end_date",
    "flex_dates",
    "preferred_month",
    "number_of_people",
    "adults",
    "children",
    "children_ages",
    "interests",
)


def fix_person_count(quotation: Quotation) -> Quotation:
    """Summary: Repair an inconsistent party size in place.

    Importance: Keeps number_of_people equal to adults + children whenever a breakdown exists.
    Rules, in order:
      1. no breakdown: leave the total alone
      2. consistent: keep
      3. breakdown without a total: the total becomes the sum
      4. no adults and a total larger than the children: the breakdown is unreliable, clear it
      5. any other mismatch: the breakdown wins
    Alternatives: Reject inconsistent records outright.
    """

    breakdown = quotation.adults + quotation.children
    if breakdown == 0:
        return quotation
    if breakdown == quotation.number_of_people:
        return quotation
    if quotation.number_of_people == 0:
        quotation.number_of_people = breakdown
        return quotation
    if (
        quotation.adults == 0
        and quotation.number_of_people > quotation.children
        and quotation.number_of_people > 1
    ):
        quotation.adults = 0
        quotation.children = 0
        return quotation
    quotation.number_of_people = breakdown
    return quotation


def build_quotation(extraction: QuoteExtraction, email: EmailMessage, now: datetime) -> Quotation:
    """Summary: Create an unsaved quotation from an extraction.

    Importance: The id is left empty so the repository can assign it under its lock.
    Alternatives: Let the LLM supply ids and timestamps.
    """

    quotation = Quotation(
        id="",
        email_id=email.id,
        client_name=extraction.client_name or DEFAULT_CLIENT_NAME,
        client_email=email.reply_address or extraction.client_email,
        subject=email.subject or extraction.subject,
        destination=extraction.destination,
        city=extraction.city,
        country=extraction.country,
        start_date=extraction.start_date,
        end_date=extraction.end_date,
        flex_dates=extraction.flex_dates,
        preferred_month=extraction.preferred_month,
        number_of_people=extraction.number_of_people,
        adults=extraction.adults,
        children=extraction.children,
        children_ages=list(extraction.children_ages),
        interests=list(extraction.interests),
        dietary_requirements=DietaryRequirements(
            preferences=list(extraction.dietary_requirements.preferences),
            allergies=list(extraction.dietary_requirements.allergies),
            restrictions=list(extraction.dietary_requirements.restrictions),
            notes=extraction.dietary_requirements.notes,
        ),
        budget=Budget(
            amount=extraction.budget.amount,
            currency=extraction.budget.currency,
            scope=extraction.budget.scope,
            is_flexible=extraction.budget.is_flexible,
        ),
        created_at=now.isoformat(),
    )
    return refresh_status(fix_person_count(quotation))


def refresh_status(quotation: Quotation) -> Quotation:
    """Recompute missing fields and the email status from the current values."""

    quotation.missing_fields = validate_missing_fields(quotation)
    quotation.email_status = "incomplete" if quotation.missing_fields else "complete"
    return quotation


def merge_quotation(
    existing: Quotation, updates: QuotationUpdate, email_id: str, now: datetime
) -> Quotation:
    """Summary: Merge follow-up fields into a copy of an existing quotation.

    Importance: Only present values overwrite; 0 and False are present, while None,
    empty strings, and empty lists are absent.
    Alternatives: Replace the record with the follow-up extraction.
    """

    merged = copy.deepcopy(existing)
    for name in _SCALAR_FIELDS:
        value = getattr(updates, name)
        if _is_present(value):
            setattr(merged, name, list(value) if isinstance(value, list) else value)

    if updates.budget is not None:
        for name in ("amount", "currency", "scope", "is_flexible"):
            value = getattr(updates.budget, name)
            if _is_present(value):
                setattr(merged.budget, name, value)

    if updates.dietary_requirements is not None:
        for name in ("preferences", "allergies", "restrictions", "notes"):
            value = getattr(updates.dietary_requirements, name)
            if _is_present(value):
                setattr(merged.dietary_requirements, name, value)

    fix_person_count(merged)
    refresh_status(merged)
    merged.email_history.append(
        EmailInteraction(date=now.isoformat(), type="client_response", email_id=email_id)
    )
    return merged


def _is_present(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list)):
        return len(value) > 0
    return True
