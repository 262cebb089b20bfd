"""Summary: Destination parsing backed by a pluggable gazetteer.

Importance: Splits free-text destinations into city and country for quotations.
Alternatives: Call an external geocoding service for every destination.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

DEFAULT_COUNTRIES = (
    "españa", "spain", "francia", "france", "italia", "italy", "alemania", "germany",
    "egipto", "egypt", "japón", "japan", "china", "brasil", "brazil", "argentina",
    "chile", "perú", "peru", "colombia", "méxico", "mexico", "estados unidos", "usa",
    "reino unido", "uk", "grecia", "greece", "turquía", "turkey", "marruecos", "morocco",
    "uruguay", "paraguay", "bolivia", "ecuador", "venezuela", "costa rica", "panamá",
    "panama", "guatemala", "honduras", "nicaragua", "el salvador", "república dominicana",
    "cuba", "portugal",
)

DEFAULT_CITIES = (
    "buenos aires", "madrid", "barcelona", "paris", "parís", "roma", "milán", "berlin",
    "londres", "new york", "nueva york", "los angeles", "san francisco", "chicago", "miami",
    "ciudad de méxico", "cancún", "cancun", "guadalajara", "monterrey", "bogotá",
    "medellín", "cali", "cartagena", "lima", "cusco", "arequipa", "santiago", "valparaíso",
    "montevideo", "asunción", "quito", "guayaquil", "caracas", "maracaibo", "la paz",
    "santa cruz", "cochabamba", "bariloche", "mendoza", "el cairo", "lisboa",
)

SPLIT_PATTERNS = (
    re.compile(r"^(.+?),\s*(.+)$"),
    re.compile(r"^(.+?)\s*-\s*(.+)$"),
    re.compile(r"^(.+?)\s+en\s+(.+)$", re.IGNORECASE),
    re.compile(r"^(.+?)\s+de\s+(.+)$", re.IGNORECASE),
)


@dataclass(frozen=True)
class Gazetteer:
    """Summary: Known countries and cities used to order destination parts.

    Importance: Correctness depends on list coverage, so the lists are injectable.
    Alternatives: Hardcode literal lists inside the parser.
    """

    countries: tuple[str, ...] = DEFAULT_COUNTRIES
    cities: tuple[str, ...] = DEFAULT_CITIES

    @staticmethod
    def from_file(path: Path) -> "Gazetteer":
        """Summary: Load a gazetteer from a JSON file with countries and cities lists.

        Importance: Lets operators extend coverage without code changes.
        Alternatives: Fetch lists from a remote service.
        """

        data = json.loads(path.read_text(encoding="utf-8"))
        return Gazetteer(
            countries=tuple(item.lower() for item in data.get("countries", [])) or DEFAULT_COUNTRIES,
            cities=tuple(item.lower() for item in data.get("cities", [])) or DEFAULT_CITIES,
        )

    def is_country(self, text: str) -> bool:
        return _mentions(text, self.countries)

    def is_city(self, text: str) -> bool:
        return _mentions(text, self.cities)

    def split(self, destination: str) -> tuple[str, str]:
        """Summary: Split a destination into (city, country).

        Importance: Fills city/country when the extraction left them empty.
        Alternatives: Require the LLM to always return both fields.
        """

        text = (destination or "").strip()
        if not text:
            return "", ""
        for index, pattern in enumerate(SPLIT_PATTERNS):
            match = pattern.match(text)
            if not match:
                continue
            first, second = match.group(1).strip(), match.group(2).strip()
            if self.is_country(second):
                return first, second
            if self.is_country(first):
                return second, first
            if self.is_city(first):
                return first, second
            if self.is_city(second):
                return second, first
            # "City, Country" is the common comma form; the other forms lead with the country.
            if index == 0:
                return first, second
            return second, first
        if self.is_country(text):
            return "", text
        return text, ""


def _mentions(text: str, names: tuple[str, ...]) -> bool:
    # Whole words only: "uk" must not match inside "phuket".
    lowered = text.lower()
    return any(re.search(rf"(?<!\w){re.escape(name)}(?!\w)", lowered) for name in names)


DEFAULT_GAZETTEER = Gazetteer()


def parse_destination(destination: str, gazetteer: Gazetteer = DEFAULT_GAZETTEER) -> tuple[str, str]:
    """Summary: Parse a destination string with the given gazetteer.

    Importance: Convenience wrapper used by extraction parsing.
    Alternatives: Call Gazetteer.split directly.
    """

    return gazetteer.split(destination)
