"""Summary: Email templates sent to clients.

Importance: Produces the missing-data request, the quote-in-progress confirmation, and reminders.
Alternatives: Generate every email with the LLM.
"""

from __future__ import annotations

from dataclasses import dataclass

from quotedesk.config import AppConfig
from quotedesk.models import EmailMessage, Quotation

FIELD_DESCRIPTIONS: dict[str, str] = {
    "clientName": "nombre de contacto",
    "clientEmail": "dirección de email de contacto",
    "destination": "destino del viaje",
    "startDate": "fecha de inicio del viaje",
    "endDate": "fecha de regreso",
    "preferredMonth": "mes preferido para viajar",
    "numberOfPeople": "cantidad total de viajeros (adultos y niños)",
    "adults": "cantidad de adultos (mayores de 12 años)",
    "children": "cantidad de niños (menores de 12 años)",
    "childrenAges": "edades de los niños",
    "city": "ciudad de destino",
    "country": "país de destino",
    "interests": "actividades o experiencias que les interesan",
    "budget.amount": "presupuesto aproximado",
    "budget.currency": "moneda del presupuesto",
    "dietaryRequirements.preferences": "preferencias alimentarias",
    "dietaryRequirements.allergies": "alergias alimentarias",
    "dietaryRequirements.restrictions": "restricciones alimentarias",
}

PERSON_FIELDS = ("numberOfPeople", "adults", "children")
ESSENTIAL_REQUEST_FIELDS = ("destination", "startDate", "endDate", "preferredMonth", *PERSON_FIELDS)
DEFAULT_GREETING = "Estimado/a viajero/a"


@dataclass(frozen=True)
class DmcProfile:
    """Summary: Company details used to sign outgoing emails."""

    name: str
    signature: str
    phone: str = ""
    website: str = ""

    @staticmethod
    def from_config(config: AppConfig) -> "DmcProfile":
        return DmcProfile(
            name=config.dmc_name,
            signature=config.dmc_signature,
            phone=config.dmc_phone,
            website=config.dmc_website,
        )

    def sign(self) -> str:
        lines = [self.signature, self.name]
        if self.phone:
            lines.append(f"Teléfono: {self.phone}")
        if self.website:
            lines.append(f"Web: {self.website}")
        return "\n".join(lines)


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str


def describe_field(name: str) -> str:
    description = FIELD_DESCRIPTIONS.get(name, name)
    return description[:1].upper() + description[1:]


def additional_useful_fields(quotation: Quotation) -> list[str]:
    """Summary: Optional fields worth asking about while we are writing anyway.

    Importance: Lets the team personalize the proposal without another round trip.
    Alternatives: Only ask for required fields.
    """

    fields: list[str] = []
    if not quotation.interests:
        fields.append("interests")
    if not quotation.budget.amount:
        fields.append("budget.amount")
    if quotation.children > 0 and not quotation.children_ages:
        fields.append("childrenAges")
    if not quotation.dietary_requirements.restrictions:
        fields.append("dietaryRequirements.restrictions")
    return fields


def _person_count_section(missing: list[str]) -> str | None:
    wanted = [name for name in PERSON_FIELDS if name in missing]
    if not wanted:
        return None
    lines = ["Para confirmar la cantidad de viajeros necesitamos saber:"]
    lines.extend(f"- {describe_field(name)}" for name in wanted)
    lines.append("")
    lines.append("Por ejemplo: 'Viajamos 2 adultos y 1 niño de 8 años' o 'Somos 4 adultos'.")
    return "\n".join(lines)


def missing_data_email(
    quotation: Quotation, original: EmailMessage, profile: DmcProfile
) -> EmailTemplate:
    """Summary: Build the email that asks the client for missing information.

    Importance: Separates essential data from nice-to-have details and quotes the
    quotation id so the client's reply can be matched.
    Alternatives: Send a generic "please send more details" message.
    """

    greeting = quotation.client_name or DEFAULT_GREETING
    destination = quotation.destination or "su destino"
    essentials = [
        name
        for name in quotation.missing_fields
        if name in ESSENTIAL_REQUEST_FIELDS and name not in PERSON_FIELDS
    ]
    person_section = _person_count_section(quotation.missing_fields)
    extras = [name for name in additional_useful_fields(quotation) if name not in quotation.missing_fields]

    sections: list[str] = []
    if essentials or person_section:
        block = ["INFORMACIÓN ESENCIAL:"]
        if person_section:
            block.append(person_section)
        block.extend(f"- {describe_field(name)}" for name in essentials)
        sections.append("\n".join(block))
    if extras:
        heading = (
            "INFORMACIÓN ADICIONAL para personalizar su propuesta:"
            if sections
            else "Para preparar una propuesta a su medida nos sería muy útil conocer:"
        )
        sections.append("\n".join([heading, *(f"- {describe_field(name)}" for name in extras)]))
    information = "\n\n".join(sections)

    body = f"""{greeting},

Gracias por escribirnos por su viaje a {destination}. Con gusto preparamos su cotización
(referencia {quotation.id}).

Para enviarle una propuesta ajustada a lo que busca necesitamos algunos datos más:

{information}

Apenas recibamos su respuesta le enviaremos la cotización detallada en un plazo de 24 horas.

Saludos cordiales,

{profile.sign()}
"""
    return EmailTemplate(
        subject=f"Re: {original.subject} - Información adicional requerida",
        body=body,
    )


def quote_complete_email(
    quotation: Quotation, original: EmailMessage, profile: DmcProfile
) -> EmailTemplate:
    """Summary: Build the confirmation sent when a quotation has everything it needs."""

    greeting = quotation.client_name or DEFAULT_GREETING
    destination = quotation.destination or "su destino"
    details: list[str] = []
    if quotation.start_date and quotation.end_date:
        details.append(f"Fechas: del {quotation.start_date} al {quotation.end_date}")
    elif quotation.flex_dates and quotation.preferred_month:
        details.append(f"Mes preferido: {quotation.preferred_month}")
    if quotation.number_of_people > 0:
        plural = "s" if quotation.number_of_people > 1 else ""
        details.append(f"Viajeros: {quotation.number_of_people} persona{plural}")
        if quotation.adults > 0 and quotation.children > 0:
            details.append(f"  {quotation.adults} adultos y {quotation.children} niños")
    detail_block = ""
    if details:
        detail_block = "\nDetalles de su solicitud:\n" + "\n".join(f"- {item}" for item in details) + "\n"

    body = f"""{greeting},

Recibimos toda la información para su viaje a {destination} (referencia {quotation.id}).
{detail_block}
Nuestro equipo ya está preparando su cotización y la recibirá dentro de las próximas 24 horas,
con itinerario, alojamiento, actividades recomendadas y el detalle de precios.

Saludos cordiales,

{profile.sign()}
"""
    return EmailTemplate(subject=f"Re: {original.subject} - Cotización en proceso", body=body)


def follow_up_reminder_email(
    quotation: Quotation, days_elapsed: int, profile: DmcProfile
) -> EmailTemplate:
    """Summary: Build the reminder sent when a client has not answered a data request."""

    greeting = quotation.client_name or DEFAULT_GREETING
    destination = quotation.destination or "su destino"
    body = f"""{greeting},

Hace {days_elapsed} días le pedimos algunos datos para completar su cotización de viaje a
{destination} (referencia {quotation.id}).

Si sigue interesado/a, responda a este email con esa información y le enviaremos la propuesta
en 24 horas. Si ya no desea viajar, avísenos y no le escribiremos nuevamente.

Saludos cordiales,

{profile.sign()}
"""
    return EmailTemplate(
        subject=f"Seguimiento: su cotización para {destination} - {quotation.id}",
        body=body,
    )
