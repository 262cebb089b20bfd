"""Summary: Prompt builders and response parsers for the LLM collaborator.

Importance: Keeps prompt text deterministic and guarantees safe fallbacks on malformed replies.
Alternatives: Rely on provider JSON modes and structured output features.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from quotedesk.ai import extract_json_object, truncate_body
from quotedesk.gazetteer import DEFAULT_GAZETTEER, Gazetteer
from quotedesk.models import QUOTE_TYPES, ClassificationVerdict, Quotation

logger = logging.getLogger(__name__)

CLASSIFICATION_SYSTEM_PROMPT = (
    "Eres un asistente de una agencia receptiva de turismo (DMC). "
    "Clasificas emails entrantes y respondes solo con JSON válido."
)
EXTRACTION_SYSTEM_PROMPT = (
    "Eres un asistente de una agencia receptiva de turismo (DMC). "
    "Extraes datos de viaje de solicitudes de cotización y respondes solo con JSON válido."
)
FOLLOW_UP_SYSTEM_PROMPT = (
    "Eres un asistente de una agencia receptiva de turismo (DMC). "
    "Analizas respuestas de clientes a pedidos de información y respondes solo con JSON válido."
)


class _LenientModel(BaseModel):
    """Summary: Base model for LLM payloads.

    Importance: Unknown keys are ignored and explicit nulls fall back to field defaults.
    Alternatives: Hand-written dict.get chains in every parser.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class ClassificationPayload(BaseModel):
    """Summary: Shape of the classification reply."""

    model_config = ConfigDict(extra="ignore")

    is_quote: bool = False
    confidence: int = 0
    signals: list[str] = Field(default_factory=list)
    quote_type: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return max(0, min(100, int(value)))
        return value

    @field_validator("quote_type", mode="before")
    @classmethod
    def _known_quote_type(cls, value: Any) -> Any:
        return value if value in QUOTE_TYPES else None


class BudgetPayload(_LenientModel):
    amount: float | None = None
    currency: str = ""
    scope: str = ""
    is_flexible: bool = False

    @field_validator("amount", mode="before")
    @classmethod
    def _zero_is_unknown(cls, value: Any) -> Any:
        if value in (0, "", "0"):
            return None
        return value


class DietaryPayload(_LenientModel):
    preferences: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    restrictions: list[str] = Field(default_factory=list)
    notes: str = ""


class QuoteExtraction(_LenientModel):
    """Summary: Structured trip fields extracted from a quote request.

    Importance: Validated input for creating a quotation record.
    Alternatives: Pass the raw JSON dictionary to storage.
    """

    is_quote_request: bool = False
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
    children_ages: list[int] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    dietary_requirements: DietaryPayload = Field(default_factory=DietaryPayload)
    budget: BudgetPayload = Field(default_factory=BudgetPayload)

    def has_minimum_data(self) -> bool:
        """Return True when there is at least a destination or a client name."""

        return bool(self.destination.strip() or self.client_name.strip())


class BudgetUpdate(_LenientModel):
    amount: float | None = None
    currency: str | None = None
    scope: str | None = None
    is_flexible: bool | None = None


class DietaryUpdate(_LenientModel):
    preferences: list[str] | None = None
    allergies: list[str] | None = None
    restrictions: list[str] | None = None
    notes: str | None = None


class QuotationUpdate(_LenientModel):
    """Summary: Partial quotation fields supplied by a follow-up response.

    Importance: None means absent, so 0 and False survive as real values.
    Transient keys such as hasNewInfo or existingQuotation are ignored.
    Alternatives: Merge untyped dictionaries key by key.
    """

    client_name: str | None = None
    destination: str | None = None
    city: str | None = None
    country: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    flex_dates: bool | None = None
    preferred_month: str | None = None
    number_of_people: int | None = None
    adults: int | None = None
    children: int | None = None
    children_ages: list[int] | None = None
    interests: list[str] | None = None
    dietary_requirements: DietaryUpdate | None = None
    budget: BudgetUpdate | None = None


class ContainsInfo(_LenientModel):
    dates: bool = False
    travelers: bool = False
    budget: bool = False
    activities: bool = False
    dietary: bool = False
    accommodation: bool = False
    other: bool = False


class ResponseClassification(_LenientModel):
    """Summary: Whether a client reply carries information for its quotation."""

    is_relevant_response: bool = False
    confidence: int = 0
    contains_info: ContainsInfo = Field(default_factory=ContainsInfo)
    reason: str = ""

    def is_relevant(self, min_confidence: int = 60) -> bool:
        return self.is_relevant_response and self.confidence >= min_confidence


class FollowUpExtraction(_LenientModel):
    """Summary: New information extracted from a follow-up reply."""

    has_new_info: bool = False
    updated_fields: QuotationUpdate = Field(default_factory=QuotationUpdate)
    still_missing_fields: list[str] = Field(default_factory=list)
    is_complete: bool = False
    extraction_notes: str = ""


def classification_prompt(subject: str, body: str) -> str:
    """Summary: Build the LLM classification prompt.

    Importance: Asks for a strict JSON verdict with confidence and quote type.
    Alternatives: Few-shot prompts with labelled examples.
    """

    return f"""Determina si el siguiente email es una solicitud de cotización de viaje.

Considera solicitud de cotización cuando el remitente pide precios o una propuesta para un viaje,
paquete turístico o servicios (hotel, traslados, excursiones) con destino, fechas o viajeros.
B2B: agencias, operadores o representantes que piden tarifas netas o condiciones comerciales.
B2C: viajeros particulares o familias.
No es cotización: newsletters, promociones, confirmaciones de reserva, reclamos o spam.

ASUNTO: {subject}
CONTENIDO: {truncate_body(body)}

Responde únicamente con este JSON:
{{
  "is_quote": boolean,
  "signals": ["string"],
  "confidence": number,
  "quote_type": "B2B" | "B2C" | "unclear" | null
}}"""


def extraction_prompt(
    subject: str, body: str, sender_email: str, sender_name: str, email_id: str, created_at: str
) -> str:
    """Summary: Build the trip-data extraction prompt.

    Importance: Fixes the JSON schema and the person-count and date conventions.
    Alternatives: Separate prompts per field group.
    """

    return f"""Analiza el email y, si es una solicitud de cotización turística, extrae los datos del viaje.

Si NO es una solicitud de cotización responde: {{ "isQuoteRequest": false }}

Si lo es, responde con este JSON (deja vacío lo que el email no diga, no inventes datos):
{{
  "isQuoteRequest": true,
  "clientName": "",
  "clientEmail": "",
  "subject": "",
  "destination": "",
  "city": "",
  "country": "",
  "startDate": "DD/MM/YYYY",
  "endDate": "DD/MM/YYYY",
  "flexDates": false,
  "preferredMonth": "",
  "numberOfPeople": 0,
  "adults": 0,
  "children": 0,
  "childrenAges": [],
  "interests": [],
  "dietaryRequirements": {{"preferences": [], "allergies": [], "restrictions": [], "notes": ""}},
  "budget": {{"amount": null, "currency": "", "scope": "", "isFlexible": false}}
}}

Reglas:
- Separa adultos y niños solo si el email lo indica claramente; si solo hay un total usa numberOfPeople.
- "4 personas y 1 niño" son 4 adultos y 1 niño (numberOfPeople 5).
- Si solo se menciona un mes, usa flexDates true y preferredMonth, con startDate y endDate vacíos.
- Para "Buenos Aires, Argentina" usa destination completo, city "Buenos Aires" y country "Argentina".
- Intereses y preferencias alimentarias en minúsculas y sin tildes.

DE: {sender_name} ({sender_email})
ASUNTO: {subject}
CONTENIDO: {truncate_body(body)}
emailId: "{email_id}"
createdAt: "{created_at}"

Responde únicamente con el JSON."""


def response_classification_prompt(subject: str, body: str, quotation_id: str) -> str:
    """Summary: Build the prompt that checks whether a reply is relevant to a quotation."""

    return f"""Determina si este email es una respuesta del cliente con información para completar
la cotización {quotation_id}.

Es relevante si aporta fechas, viajeros, presupuesto, actividades, restricciones alimentarias,
alojamiento u otros detalles del viaje. No es relevante si solo saluda o agradece, cancela,
pregunta sin aportar datos o es un mensaje automático.

ASUNTO: {subject}
CONTENIDO: {truncate_body(body)}

Responde únicamente con este JSON:
{{
  "isRelevantResponse": boolean,
  "confidence": number,
  "containsInfo": {{"dates": boolean, "travelers": boolean, "budget": boolean, "activities": boolean,
                   "dietary": boolean, "accommodation": boolean, "other": boolean}},
  "reason": "string"
}}"""


def follow_up_extraction_prompt(subject: str, body: str, quotation: Quotation) -> str:
    """Summary: Build the prompt that extracts new fields from a client reply.

    Importance: Lists the currently missing fields so the model focuses on them.
    Alternatives: Re-run the full extraction prompt on the reply.
    """

    missing = "\n".join(f"- {name}" for name in quotation.missing_fields) or "- (ninguno)"
    return f"""Extrae solo la información nueva que aporta el cliente para su cotización.

Cotización {quotation.id}
Cliente: {quotation.client_name} ({quotation.client_email})
Destino: {quotation.destination}
Campos faltantes:
{missing}

ASUNTO: {subject}
CONTENIDO: {truncate_body(body)}

Responde únicamente con este JSON, incluyendo en updatedFields solo lo que el email indique de forma explícita:
{{
  "hasNewInfo": boolean,
  "updatedFields": {{
    "startDate": "DD/MM/YYYY",
    "endDate": "DD/MM/YYYY",
    "numberOfPeople": number,
    "adults": number,
    "children": number,
    "childrenAges": [number],
    "interests": ["string"],
    "budget": {{"amount": number, "currency": "string", "scope": "string"}},
    "dietaryRequirements": {{"preferences": [], "allergies": [], "restrictions": [], "notes": ""}}
  }},
  "stillMissingFields": ["string"],
  "isComplete": boolean,
  "extractionNotes": "string"
}}"""


def parse_classification_response(text: str) -> ClassificationVerdict:
    """Summary: Parse the classification reply into a verdict.

    Importance: Any parse or shape problem yields a non-quote verdict with zero confidence.
    Alternatives: Raise and let the pipeline decide.
    """

    payload = _validate(ClassificationPayload, text)
    if payload is None:
        return ClassificationVerdict(is_quote=False, confidence=0)
    return ClassificationVerdict(
        is_quote=payload.is_quote,
        confidence=payload.confidence,
        quote_type=payload.quote_type,
        signals=tuple(payload.signals),
    )


def parse_extraction_response(
    text: str, gazetteer: Gazetteer = DEFAULT_GAZETTEER
) -> QuoteExtraction | None:
    """Summary: Parse the extraction reply.

    Importance: Returns None for non-quotes and malformed replies; fills city and
    country from the destination when the model left them empty.
    Alternatives: Return a partially filled dictionary.
    """

    extraction = _validate(QuoteExtraction, text)
    if extraction is None or not extraction.is_quote_request:
        return None
    if extraction.destination and not (extraction.city and extraction.country):
        city, country = gazetteer.split(extraction.destination)
        extraction = extraction.model_copy(
            update={"city": extraction.city or city, "country": extraction.country or country}
        )
    return extraction


def parse_response_classification(text: str) -> ResponseClassification:
    return _validate(ResponseClassification, text) or ResponseClassification(
        reason="Error al procesar la respuesta"
    )


def parse_follow_up_extraction(text: str) -> FollowUpExtraction:
    return _validate(FollowUpExtraction, text) or FollowUpExtraction(
        extraction_notes="Error al procesar la respuesta"
    )


def _validate(model: type[BaseModel], text: str) -> Any:
    data = extract_json_object(text or "")
    if data is None:
        logger.debug("No JSON object found for %s", model.__name__)
        return None
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Discarding malformed %s payload: %s", model.__name__, exc.error_count())
        return None
