"""Summary: Rule-based classification of quote-request emails.

Importance: Resolves clear spam and clear quote requests without an LLM call.
Alternatives: Use an LLM-based classifier for every email.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from quotedesk.models import B2BAnalysis, ClassificationSignals, ClassificationVerdict, MultiLevelResult

QUOTE_LABEL = "QUOTE"
NOT_QUOTE_LABEL = "NOT_QUOTE"
PROCESSED_LABEL = "PROCESSED"

DEFAULT_TOURISM_THRESHOLD = 0
STRICT_TOURISM_THRESHOLD = 20
QUOTE_REQUEST_THRESHOLD = 50
B2B_STRONG_BONUS = 20
LLM_ARBITRATION_BAND = (40, 80)
RULE_OVERRIDE_CONFIDENCE = 60
LLM_OVERRIDE_CONFIDENCE = 70
LOW_CONFIDENCE_CUTOFF = 30
ACTIONABLE_CONFIDENCE = 70


@dataclass(frozen=True)
class WeightedPattern:
    """Summary: A regex paired with the tag and weight it contributes.

    Importance: Keeps the scoring tables declarative and easy to tune.
    Alternatives: Hardcode matching logic per signal.
    """

    pattern: re.Pattern[str]
    signal: str
    points: int


def _pattern(regex: str, signal: str, points: int) -> WeightedPattern:
    return WeightedPattern(pattern=re.compile(regex), signal=signal, points=points)


STRONG_PATTERNS = (
    _pattern(
        r"\b(solicitud|solicita|solicitar)\b.*\b(cotizaci[oó]n|presupuesto|propuesta)\b",
        "solicitud_cotizacion",
        90,
    ),
    _pattern(r"\b(cotizar|cotizaci[oó]n)\b.*\b(para|destino|viaje)\b", "cotizar_destino", 85),
    _pattern(r"\b(representante|agencia emisora|operador|dmc)\b", "representante_comercial", 80),
    _pattern(r"\b(propuesta\s+de\s+paquete|paquete\s+tur[ií]stico)\b", "propuesta_paquete", 85),
    _pattern(r"\b(tarifas?\s+netas?|precios?\s+netos?)\b", "tarifas_comerciales", 80),
)

MODERATE_PATTERNS = (
    _pattern(r"\b\d+\s+(personas?|adultos?|ni[ñn]os?|hu[eé]spedes?)\b", "numero_personas", 60),
    _pattern(r"\b(del|desde)\s+\d+.*\b(al|hasta)\s+\d+", "fechas_especificas", 65),
    _pattern(r"\b\d+\s+(noches?|d[ií]as?)\b", "duracion_especifica", 55),
    _pattern(
        r"\b(hotel|hospedaje|alojamiento)\b.*\b(actividades?|tours?|excursiones?)\b",
        "hotel_actividades",
        50,
    ),
    _pattern(r"@[a-z]+\.(com|net|org|travel|tours?)\b", "email_corporativo", 40),
)

WEAK_PATTERNS = (
    _pattern(r"\b(viaje|turismo|vacaciones|destino)\b", "mencion_turismo", 25),
    _pattern(r"\b(disponibilidad|disponible)\b", "consulta_disponibilidad", 30),
    _pattern(r"\b(precio|costo|tarifa)\b", "consulta_precios", 35),
)

NEGATIVE_PATTERNS = (
    _pattern(r"\b(newsletter|bolet[ií]n|suscripci[oó]n)\b", "newsletter", -80),
    _pattern(r"\b(confirmaci[oó]n|confirmar)\b.*\b(reserva|booking)\b", "confirmacion", -70),
    _pattern(r"\b(unsubscribe|darse de baja)\b", "spam", -90),
    _pattern(r"\b(promociones?|ofertas?|descuentos?)\b.*\b(especiales?|limitadas?)\b", "promocion", -60),
    _pattern(r"\b(reclamo|queja|problema|error)\b", "reclamo", -50),
)

CORPORATE_DOMAIN = re.compile(
    r"\.(travel|tours?|viajes?|turismo|agency|dmc|incoming|outgoing)\.([a-z]{2,})"
)

B2B_PATTERNS = (
    _pattern(r"\b(representante|represento|represente)\b", "representante", 30),
    _pattern(r"\b(agencia\s+(emisora|receptiva|de\s+viajes?))\b", "agencia_profesional", 35),
    _pattern(r"\b(operador|dmc|incoming|outgoing|wholesaler)\b", "operador_turistico", 40),
    _pattern(r"\b(tarifas?\s+(netas?|confidenciales?|especiales?))\b", "tarifas_comerciales", 30),
    _pattern(r"\b(condiciones\s+(comerciales?|especiales?))\b", "condiciones_b2b", 25),
    _pattern(r"\b(comisi[oó]n|comisiones|markup|allotment)\b", "terminos_b2b", 35),
    _pattern(r"\b(con\s+sede\s+en|establecida?\s+en|ubicada?\s+en)\b", "sede_corporativa", 20),
    _pattern(
        r"\b(partnership|alianza|colaboraci[oó]n)\b.*\b(comercial|estrat[eé]gica)\b",
        "partnership",
        30,
    ),
)

SIGNATURE_PATTERN = re.compile(r"\n.*\n.*@.*\.(com|net|org|travel)")
FORMAL_PATTERN = re.compile(r"\b(estimad[oa]s?|cordialmente|atentamente|saludos\s+cordiales?)\b")


class NegativeSignalPolicy(str, Enum):
    """Summary: How negative signals interact with a strong commercial signal.

    Importance: Whether a complaint cancels a strong signal is a product decision, kept configurable.
    Alternatives: Hardcode one behavior.
    """

    VETO = "veto"
    STRONG_WINS = "strong_wins"


@dataclass(frozen=True)
class ClassificationPolicy:
    """Summary: Tunable thresholds for the multi-level classifier.

    Importance: Makes the tourism threshold and negative-signal veto named, testable settings.
    Alternatives: Inline constants inside the classifier.
    """

    tourism_threshold: int = DEFAULT_TOURISM_THRESHOLD
    negative_signal_policy: NegativeSignalPolicy = NegativeSignalPolicy.VETO


def analyze_signals(subject: str, body: str) -> ClassificationSignals:
    """Summary: Score an email for tourism-commercial intent.

    Importance: Transparent additive scoring lets obvious cases skip the LLM.
    Alternatives: Train a statistical text classifier.
    """

    text = f"{subject} {body}".lower()
    score = 0
    tiers: list[list[str]] = []
    for table in (STRONG_PATTERNS, MODERATE_PATTERNS, WEAK_PATTERNS, NEGATIVE_PATTERNS):
        matched: list[str] = []
        for item in table:
            if item.pattern.search(text):
                score += item.points
                matched.append(item.signal)
        tiers.append(matched)
    strong, moderate, weak, negative = tiers
    return ClassificationSignals(
        score=_clamp(score),
        strong=tuple(strong),
        moderate=tuple(moderate),
        weak=tuple(weak),
        negative=tuple(negative),
    )


def detect_b2b(subject: str, body: str, sender_email: str | None = None) -> B2BAnalysis:
    """Summary: Detect agency/operator (B2B) language and sender domains.

    Importance: B2B requests get different handling and a confidence bonus.
    Alternatives: Maintain an explicit list of partner agencies.
    """

    text = f"{subject} {body}".lower()
    address = (sender_email or "").lower()
    indicators: list[str] = []
    confidence = 0
    if CORPORATE_DOMAIN.search(address):
        indicators.append("dominio_corporativo")
        confidence += 25
    for item in B2B_PATTERNS:
        if item.pattern.search(text):
            indicators.append(item.signal)
            confidence += item.points
    if SIGNATURE_PATTERN.search(body):
        indicators.append("firma_profesional")
        confidence += 15
    if FORMAL_PATTERN.search(text):
        indicators.append("lenguaje_formal")
        confidence += 10
    confidence = _clamp(confidence)
    return B2BAnalysis(is_b2b=confidence >= 40, confidence=confidence, indicators=tuple(indicators))


@dataclass(frozen=True)
class MultiLevelClassifier:
    """Summary: Combines the signal scorer and B2B detector into a provisional verdict.

    Importance: Cheap first pass that decides whether the LLM has to arbitrate.
    Alternatives: Use the scorer alone and skip quote typing.
    """

    policy: ClassificationPolicy = ClassificationPolicy()

    def classify(self, subject: str, body: str, sender_email: str | None = None) -> MultiLevelResult:
        """Summary: Run the four classification levels.

        Importance: Tourism relevance, commercial intent, quote type, then confidence.
        Alternatives: Collapse all levels into a single score.
        """

        analysis = analyze_signals(subject, body)
        if analysis.score <= self.policy.tourism_threshold:
            return MultiLevelResult(
                is_tourism_related=False,
                is_commercial_inquiry=False,
                is_quote_request=False,
                quote_type="unclear",
                final_confidence=0,
                reasoning=("no tourism signals above threshold",),
            )

        reasoning = ["tourism related"]
        signals = list(analysis.signals)
        is_commercial = self._is_commercial(analysis)
        if analysis.strong and not is_commercial:
            reasoning.append("negative signals veto the commercial signals")
        elif is_commercial:
            reasoning.append("commercial inquiry")

        b2b = detect_b2b(subject, body, sender_email)
        signals.extend(b2b.indicators)
        if b2b.is_b2b:
            quote_type = "B2B"
            reasoning.append(f"B2B ({b2b.confidence}% confidence)")
        elif is_commercial:
            quote_type = "B2C"
            reasoning.append("B2C direct client inquiry")
        else:
            quote_type = "unclear"

        confidence = analysis.score
        if b2b.is_b2b and analysis.strong:
            confidence += B2B_STRONG_BONUS
            reasoning.append("B2B bonus applied")
        confidence = _clamp(confidence)
        is_quote = confidence >= QUOTE_REQUEST_THRESHOLD
        reasoning.append(
            f"quote request ({confidence}%)" if is_quote else f"below quote threshold ({confidence}%)"
        )
        return MultiLevelResult(
            is_tourism_related=True,
            is_commercial_inquiry=is_commercial,
            is_quote_request=is_quote,
            quote_type=quote_type,
            final_confidence=confidence,
            reasoning=tuple(reasoning),
            all_signals=tuple(dict.fromkeys(signals)),
        )

    def _is_commercial(self, analysis: ClassificationSignals) -> bool:
        if not analysis.strong:
            return False
        if analysis.negative and self.policy.negative_signal_policy is NegativeSignalPolicy.VETO:
            return False
        return True


def needs_llm_arbitration(result: MultiLevelResult) -> bool:
    """Summary: Decide whether the rule-based result is too uncertain to trust.

    Importance: Keeps LLM calls for the uncertain band and unclear quote types.
    Alternatives: Always call the LLM.
    """

    low, high = LLM_ARBITRATION_BAND
    return low <= result.final_confidence <= high or result.quote_type == "unclear"


def verdict_from_rules(result: MultiLevelResult) -> ClassificationVerdict:
    """Convert a multi-level result into a verdict when the LLM is skipped."""

    return ClassificationVerdict(
        is_quote=result.is_quote_request,
        confidence=result.final_confidence,
        quote_type=None if result.quote_type == "unclear" else result.quote_type,
        signals=result.all_signals,
    )


def cross_validate(rules: MultiLevelResult, llm: ClassificationVerdict) -> ClassificationVerdict:
    """Summary: Reconcile rule-based and LLM verdicts.

    Importance: Confident rules act as a veto; otherwise the LLM's judgment stands.
    Alternatives: Average both confidences.
    """

    is_quote = llm.is_quote
    confidence = llm.confidence
    if rules.is_quote_request and not llm.is_quote and rules.final_confidence >= RULE_OVERRIDE_CONFIDENCE:
        is_quote = True
        confidence = max(llm.confidence, rules.final_confidence)
    elif not rules.is_quote_request and llm.is_quote and llm.confidence < LLM_OVERRIDE_CONFIDENCE:
        is_quote = False
        confidence = rules.final_confidence
    signals = tuple(dict.fromkeys([*llm.signals, *rules.all_signals]))
    quote_type = llm.quote_type or (None if rules.quote_type == "unclear" else rules.quote_type)
    return ClassificationVerdict(
        is_quote=is_quote, confidence=confidence, quote_type=quote_type, signals=signals
    )


@dataclass(frozen=True)
class ClassificationDecision:
    """Summary: Final routing decision for an email after cross-validation."""

    is_quote: bool
    label: str
    low_confidence: bool
    verdict: ClassificationVerdict


def decide(verdict: ClassificationVerdict) -> ClassificationDecision:
    """Summary: Turn a verdict into an actionable label.

    Importance: Only confident quote verdicts continue to extraction.
    Alternatives: Let every positive verdict through.
    """

    if verdict.confidence < LOW_CONFIDENCE_CUTOFF:
        return ClassificationDecision(
            is_quote=False, label=NOT_QUOTE_LABEL, low_confidence=True, verdict=verdict
        )
    is_quote = verdict.is_quote and verdict.confidence >= ACTIONABLE_CONFIDENCE
    return ClassificationDecision(
        is_quote=is_quote,
        label=QUOTE_LABEL if is_quote else NOT_QUOTE_LABEL,
        low_confidence=False,
        verdict=verdict,
    )


def _clamp(value: int) -> int:
    return max(0, min(100, value))
