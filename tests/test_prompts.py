"""Summary: Tests for LLM prompt builders and reply parsers.

Importance: Parsers must turn any reply, valid or not, into a safe typed result.
Alternatives: Validate replies inside the pipeline steps.
"""

from __future__ import annotations

import json

from quotedesk.gazetteer import Gazetteer
from quotedesk.models import Quotation
from quotedesk.prompts import (
    classification_prompt,
    extraction_prompt,
    follow_up_extraction_prompt,
    parse_classification_response,
    parse_extraction_response,
    parse_follow_up_extraction,
    parse_response_classification,
)


def test_parse_classification_clamps_and_filters() -> None:
    verdict = parse_classification_response(
        'Resultado: {"is_quote": true, "confidence": 150, "signals": ["cotizar"], "quote_type": "mixto"}'
    )
    assert verdict.is_quote
    assert verdict.confidence == 100
    assert verdict.quote_type is None
    assert verdict.signals == ("cotizar",)


def test_parse_classification_fallback() -> None:
    """Summary: Unparseable replies become a zero-confidence non-quote.

    Importance: A broken LLM reply never promotes an email to a quote.
    Alternatives: Raise and retry the LLM call.
    """

    for reply in ("no sé", '{"confidence": "alta"}', ""):
        verdict = parse_classification_response(reply)
        assert not verdict.is_quote
        assert verdict.confidence == 0


def test_parse_extraction_fills_city_and_country() -> None:
    """Summary: Extraction replies are validated and the destination is split.

    Importance: Quotations get city and country even when the model leaves them empty.
    Alternatives: Require both fields from the model.
    """

    reply = json.dumps(
        {
            "isQuoteRequest": True,
            "clientName": "Laura Gómez",
            "destination": "Cancún, México",
            "city": None,
            "startDate": "2026-03-15",
            "endDate": "2026-03-22",
            "numberOfPeople": 4,
            "budget": {"amount": 2000, "currency": "USD"},
            "dietaryRequirements": {"preferences": ["vegetariana"]},
            "confidence": 91,
        }
    )
    extraction = parse_extraction_response(reply)
    assert extraction is not None
    assert extraction.client_name == "Laura Gómez"
    assert (extraction.city, extraction.country) == ("Cancún", "México")
    assert extraction.number_of_people == 4
    assert extraction.budget.amount == 2000
    assert extraction.budget.currency == "USD"
    assert extraction.dietary_requirements.preferences == ["vegetariana"]
    assert extraction.has_minimum_data()


def test_parse_extraction_uses_injected_gazetteer() -> None:
    reply = json.dumps({"isQuoteRequest": True, "destination": "Zanzíbar - Tanzania"})
    default = parse_extraction_response(reply)
    custom = parse_extraction_response(reply, Gazetteer(countries=("tanzania",), cities=()))
    assert default is not None and custom is not None
    assert (custom.city, custom.country) == ("Zanzíbar", "Tanzania")
    assert (default.city, default.country) == ("Tanzania", "Zanzíbar")


def test_parse_extraction_rejections() -> None:
    assert parse_extraction_response('{"isQuoteRequest": false, "destination": "Lima"}') is None
    assert parse_extraction_response('{"isQuoteRequest": true, "numberOfPeople": "muchos"}') is None
    assert parse_extraction_response("sin datos") is None


def test_budget_zero_means_unknown() -> None:
    extraction = parse_extraction_response(
        '{"isQuoteRequest": true, "destination": "Lima", "budget": {"amount": 0}}'
    )
    assert extraction is not None
    assert extraction.budget.amount is None


def test_parse_response_classification() -> None:
    relevant = parse_response_classification(
        '{"isRelevantResponse": true, "confidence": 80, "containsInfo": {"travelers": true}}'
    )
    assert relevant.is_relevant()
    assert relevant.contains_info.travelers
    assert not relevant.contains_info.dates

    unsure = parse_response_classification('{"isRelevantResponse": true, "confidence": 40}')
    assert not unsure.is_relevant()

    broken = parse_response_classification("gracias!")
    assert not broken.is_relevant()
    assert broken.reason == "Error al procesar la respuesta"


def test_follow_up_extraction_ignores_transient_keys() -> None:
    """Summary: Only quotation fields survive in the update; None means absent.

    Importance: Bookkeeping keys from the model must never reach stored quotations.
    Alternatives: Strip known keys by hand before merging.
    """

    reply = json.dumps(
        {
            "hasNewInfo": True,
            "updatedFields": {
                "adults": 2,
                "children": 0,
                "startDate": None,
                "hasNewInfo": True,
                "existingQuotation": {"id": "SQ-0001"},
                "budget": {"amount": 1500},
            },
            "stillMissingFields": [],
            "isComplete": True,
        }
    )
    extraction = parse_follow_up_extraction(reply)
    assert extraction.has_new_info
    update = extraction.updated_fields
    assert update.adults == 2
    assert update.children == 0
    assert update.start_date is None
    assert update.budget is not None and update.budget.amount == 1500
    assert update.budget.currency is None
    assert "existing_quotation" not in update.model_dump()
    assert "has_new_info" not in update.model_dump()


def test_follow_up_extraction_fallback() -> None:
    extraction = parse_follow_up_extraction("{no json")
    assert not extraction.has_new_info
    assert extraction.extraction_notes == "Error al procesar la respuesta"


def test_prompts_embed_email_content() -> None:
    assert "Vacaciones" in classification_prompt("Vacaciones", "x" * 2000)
    assert "x" * 801 not in classification_prompt("Vacaciones", "x" * 2000)

    prompt = extraction_prompt(
        "Viaje a Lima", "Somos 2", "ana@gmail.com", "Ana", "msg-1", "2026-03-01T10:00:00"
    )
    assert "ana@gmail.com" in prompt
    assert "msg-1" in prompt

    quotation = Quotation(id="SQ-0007", email_id="msg-1", destination="Lima", missing_fields=["adults"])
    follow_up = follow_up_extraction_prompt("Re: Viaje", "Somos 2 adultos", quotation)
    assert "SQ-0007" in follow_up
    assert "adults" in follow_up
