"""
This module turns user-entered street names and house numbers into canonical strings.

Canonical strings are used both as geocode cache keys and as the components of a
LocationKey, so the same real-world address always produces the same value.
"""
import re
from typing import Optional, Tuple

from .models import Address, LocationKey

_whitespace_pattern = re.compile(r"\s+")
# "Kaiserstr.", "Kaiserstr", "Kaiser Str." and "Kaiserstrasse" all mean "Kaiserstraße".
_detached_suffix_pattern = re.compile(r"(\S) (?:str\.?|strasse|straße)(?=\s|$)")
_street_suffix_pattern = re.compile(r"(str\.?|strasse)(?=\s|$)")
_trailing_number_pattern = re.compile(r"^(?P<street>.*?\D)\s*(?P<number>\d+\s*[a-z]?)$", re.IGNORECASE)
_leading_digits_pattern = re.compile(r"^\d+")


def canonicalize_street(street: str) -> str:
    """Lower-cases, collapses whitespace and expands common street abbreviations."""
    value = _whitespace_pattern.sub(" ", street.strip().lower())
    value = value.rstrip(" ,;")
    value = _detached_suffix_pattern.sub(r"\1straße", value)
    value = _street_suffix_pattern.sub("straße", value)
    return value


def canonicalize_house_number(house_number: str) -> str:
    """Lower-cases and removes whitespace, e.g. '12 A' -> '12a'."""
    return _whitespace_pattern.sub("", house_number.strip().lower())


def split_street_and_number(text: str) -> Tuple[str, Optional[str]]:
    """
    Separates a trailing house number from a street name.

    Args:
        text: Free text such as "Kaiserstraße 12a".

    Returns:
        A tuple of (street, house_number); house_number is None if none was found.
    """
    value = text.strip()
    match = _trailing_number_pattern.match(value)
    if not match:
        return value, None
    return match.group("street").strip(" ,"), match.group("number").strip()


def normalize_address(address: Address) -> LocationKey:
    """Builds the canonical key for an address without consulting any service."""
    street = address.street
    house_number = address.house_number
    # Users sometimes type the number into the street field as well.
    embedded_street, embedded_number = split_street_and_number(street)
    if embedded_number and canonicalize_house_number(embedded_number) == canonicalize_house_number(house_number):
        street = embedded_street
    return LocationKey(
        street=canonicalize_street(street),
        house_number=canonicalize_house_number(house_number),
    )


def canonical_address(address: Address) -> str:
    """The cache key for an address: '<street> <house_number>' in canonical form."""
    key = normalize_address(address)
    return f"{key.street} {key.house_number}"


def house_number_value(house_number: str) -> Optional[int]:
    """Returns the numeric part of a house number ('12a' -> 12), or None."""
    match = _leading_digits_pattern.match(house_number.strip())
    return int(match.group(0)) if match else None
