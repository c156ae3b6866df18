"""Normalization helpers shared by the agents and the dedup stage.

Everything here is pure: no I/O, no clock, no randomness.
"""

import re
from typing import Any, Dict, Optional

# Street-level keys shorter than this are too sparse to merge on
MIN_STREET_KEY_LENGTH = 5

# Full word -> canonical abbreviation, suffixes then directionals
STREET_ABBREVIATIONS = {
    "STREET": "ST",
    "AVENUE": "AVE",
    "BOULEVARD": "BLVD",
    "DRIVE": "DR",
    "LANE": "LN",
    "ROAD": "RD",
    "COURT": "CT",
    "PLACE": "PL",
    "CIRCLE": "CIR",
    "TERRACE": "TER",
    "HIGHWAY": "HWY",
    "PARKWAY": "PKWY",
    "NORTHEAST": "NE",
    "NORTHWEST": "NW",
    "SOUTHEAST": "SE",
    "SOUTHWEST": "SW",
    "NORTH": "N",
    "SOUTH": "S",
    "EAST": "E",
    "WEST": "W",
}

_UNIT_PATTERN = re.compile(r"(?:\b(?:APT|UNIT|STE|SUITE)\b\.?|#)\s*[^\s,]+")
_ABBREVIATION_PATTERN = re.compile(
    r"\b(" + "|".join(STREET_ABBREVIATIONS) + r")\b"
)
_WHITESPACE = re.compile(r"\s+")
_SPACE_BEFORE_COMMA = re.compile(r"\s+,")
_REPEATED_COMMAS = re.compile(r",(\s*,)+")
_TRAILING_PUNCTUATION = re.compile(r"[.,\s]+$")
_PRICE_FIGURE = re.compile(r"\d+(?:\.\d+)?")


def normalize_address(address: Optional[str]) -> str:
    """Canonicalize an address string for deduplication.

    Upper-cases, strips unit/apartment/suite designators, abbreviates
    street suffixes and directionals, collapses whitespace and removes
    trailing punctuation.

    Args:
        address: Raw address text

    Returns:
        str: Normalized address, empty string for empty input
    """
    if not address:
        return ""

    normalized = address.upper().strip()
    normalized = _UNIT_PATTERN.sub("", normalized)
    normalized = _ABBREVIATION_PATTERN.sub(
        lambda m: STREET_ABBREVIATIONS[m.group(1)], normalized
    )
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    normalized = _SPACE_BEFORE_COMMA.sub(",", normalized)
    normalized = _REPEATED_COMMAS.sub(",", normalized)
    normalized = _TRAILING_PUNCTUATION.sub("", normalized)

    return normalized


def build_dedup_key(address: str, city: str, state: str, zip_code: str) -> Optional[str]:
    """Build the merge key ``"{street}, {city}, {state} {zip}"``.

    Returns None when the street part is too sparse to trust, in which
    case the record must be kept as unique.
    """
    street = normalize_address(address)
    if len(street) < MIN_STREET_KEY_LENGTH:
        return None

    city_part = _WHITESPACE.sub(" ", (city or "").upper().strip())
    state_part = (state or "").upper().strip()
    zip_part = (zip_code or "").strip()

    return f"{street}, {city_part}, {state_part} {zip_part}".strip()


def parse_price(text: Optional[str]) -> Optional[float]:
    """Pull a dollar figure out of display text like ``"$245,900"``.

    A range such as ``"$150,000 - $175,000"`` yields its first figure.
    """
    if not text:
        return None
    match = _PRICE_FIGURE.search(str(text).replace(",", ""))
    return float(match.group(0)) if match else None


def parse_amount(text: Optional[str]) -> Optional[float]:
    """Like parse_price, but a zero amount means no amount."""
    amount = parse_price(text)
    return amount if amount else None


def as_number(value: Any) -> Optional[float]:
    """Return value when it is a real number, else None.

    Upstream JSON is loosely typed; strings and booleans are not numbers.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def as_int(value: Any) -> Optional[int]:
    number = as_number(value)
    return int(number) if number is not None else None


def city_slug(city: str) -> str:
    return _WHITESPACE.sub("-", city.strip().lower())


def state_slug(state: str) -> str:
    return state.strip().lower()


def first_present(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Value of the first key that is present and not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def as_text(value: Any, default: str = "") -> str:
    """Stringify a loosely typed upstream value; None becomes ``default``."""
    return default if value is None else str(value)
