"""
Address Matching
================

Normalization and component-weighted comparison of postal addresses.

Addresses are accepted either as free text (``"123 Main St, Los Angeles, CA 90210"``)
or as mappings with street/city/state/postal_code keys. After normalization
each matching component contributes its weight to a score in [0, 1].

Version: 0.1.0
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_POSTAL_AT_END = re.compile(r"(\d{5})(?:\s*-?\s*\d{4})?\s*$")
_PUNCTUATION = re.compile(r"[.,#]")
_WHITESPACE = re.compile(r"\s+")

# USPS Publication 28 suffixes and directionals
_STREET_ABBREVIATIONS = {
    "STREET": "ST",
    "AVENUE": "AVE",
    "ROAD": "RD",
    "BOULEVARD": "BLVD",
    "DRIVE": "DR",
    "LANE": "LN",
    "COURT": "CT",
    "PLACE": "PL",
    "TERRACE": "TER",
    "PARKWAY": "PKWY",
    "HIGHWAY": "HWY",
    "CIRCLE": "CIR",
    "SQUARE": "SQ",
    "APARTMENT": "APT",
    "SUITE": "STE",
    "NORTH": "N",
    "SOUTH": "S",
    "EAST": "E",
    "WEST": "W",
}

_STREET_KEYS = ("street", "street_1", "address_line1", "line1", "address-street-1")
_STREET_2_KEYS = ("street_2", "address_line2", "line2", "address-street-2")
_CITY_KEYS = ("city", "address-city")
_STATE_KEYS = ("state", "subdivision", "region", "address-subdivision")
_POSTAL_KEYS = ("postal_code", "zip", "zip_code", "postcode", "address-postal-code")


@dataclass(frozen=True)
class AddressWeights:
    """Per-component weights; they should sum to 1.0."""

    street: float = 0.4
    city: float = 0.2
    state: float = 0.2
    postal_code: float = 0.2


@dataclass(frozen=True)
class Address:
    """A normalized postal address."""

    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    @property
    def is_complete(self) -> bool:
        return all((self.street, self.city, self.state, self.postal_code))

    def canonical(self) -> str:
        """Single-line normalized form, used for commitments."""
        return "|".join((self.street, self.city, self.state, self.postal_code))


def normalize_text(value: str | None) -> str:
    """Uppercase, trim and collapse internal whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip().upper()


def normalize_street(value: str | None) -> str:
    words = normalize_text(_PUNCTUATION.sub(" ", value or "")).split(" ")
    return " ".join(_STREET_ABBREVIATIONS.get(w, w) for w in words if w)


def normalize_postal_code(value: str | None) -> str:
    """Keep digits only, truncated to the five-digit ZIP."""
    return re.sub(r"\D", "", value or "")[:5]


def _first(data: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = data.get(key)
        if value:
            return str(value)
    return ""


def _split_text(text: str) -> tuple[str, str, str, str]:
    tokens = [t.strip() for t in text.split(",") if t.strip()]
    if not tokens:
        return "", "", "", ""

    postal = ""
    match = _POSTAL_AT_END.search(tokens[-1])
    if match:
        postal = match.group(0)
        rest = tokens[-1][: match.start()].strip()
        if rest:
            tokens[-1] = rest
        else:
            tokens.pop()

    state = ""
    if len(tokens) >= 3:
        state = tokens.pop()
    elif len(tokens) == 2:
        # "Los Angeles CA" with no comma before the state
        head, _, tail = tokens[-1].rpartition(" ")
        if head and len(tail) == 2 and tail.isalpha():
            tokens[-1], state = head, tail

    city = tokens.pop() if len(tokens) >= 2 else ""
    street = ", ".join(tokens)
    return street, city, state, postal


def parse_address(value: "str | Mapping[str, Any] | Address") -> Address:
    """
    Parse and normalize an address.

    Args:
        value: Free text, a mapping of components, or an ``Address``

    Returns:
        Address: Normalized components (missing ones are empty strings)
    """
    if isinstance(value, Address):
        return value

    if isinstance(value, Mapping):
        street = _first(value, _STREET_KEYS)
        street_2 = _first(value, _STREET_2_KEYS)
        if street_2:
            street = f"{street} {street_2}"
        city = _first(value, _CITY_KEYS)
        state = _first(value, _STATE_KEYS)
        postal = _first(value, _POSTAL_KEYS)
    else:
        street, city, state, postal = _split_text(str(value))

    return Address(
        street=normalize_street(street),
        city=normalize_text(city),
        state=normalize_text(_PUNCTUATION.sub("", state)),
        postal_code=normalize_postal_code(postal),
    )


def address_match(
    candidate: "str | Mapping[str, Any] | Address",
    reference: "str | Mapping[str, Any] | Address",
    weights: AddressWeights | None = None,
) -> float:
    """
    Score how well ``candidate`` matches ``reference``.

    Components missing on either side never count as a match.

    Returns:
        float: Weighted score in [0, 1], rounded to 4 places
    """
    weights = weights or AddressWeights()
    a = parse_address(candidate)
    b = parse_address(reference)

    score = 0.0
    for component, weight in (
        ("street", weights.street),
        ("city", weights.city),
        ("state", weights.state),
        ("postal_code", weights.postal_code),
    ):
        left, right = getattr(a, component), getattr(b, component)
        if left and left == right:
            score += weight

    return round(min(score, 1.0), 4)
