"""
This module defines the data models for the waste collection notifier.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, FrozenSet, Optional


class WasteCategory(str, Enum):
    """A waste stream collected by the municipality."""

    BIO = "bio"
    PAPER = "paper"
    RESIDUAL = "residual"
    RECYCLING = "recycling"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def emoji(self) -> str:
        return _EMOJIS[self]


_DISPLAY_NAMES = {
    WasteCategory.BIO: "Bioabfall",
    WasteCategory.PAPER: "Papier",
    WasteCategory.RESIDUAL: "Restmüll",
    WasteCategory.RECYCLING: "Wertstoff",
}

_EMOJIS = {
    WasteCategory.BIO: "🟤",
    WasteCategory.PAPER: "🔵",
    WasteCategory.RESIDUAL: "⚫",
    WasteCategory.RECYCLING: "🟡",
}

# Order in which categories are listed in messages.
CATEGORY_ORDER = (
    WasteCategory.BIO,
    WasteCategory.PAPER,
    WasteCategory.RESIDUAL,
    WasteCategory.RECYCLING,
)


@dataclass(frozen=True)
class Address:
    """A street and house number as entered by a user."""

    street: str
    house_number: str

    def __post_init__(self):
        if not self.street or not self.street.strip():
            raise ValueError("Street must not be empty.")
        if not self.house_number or not self.house_number.strip():
            raise ValueError("House number must not be empty.")

    def __str__(self) -> str:
        return f"{self.street.strip()} {self.house_number.strip()}"


@dataclass(frozen=True)
class LocationKey:
    """
    A normalized identifier for a collection location.

    Both fields are canonical (see address_normalizer), so two spellings of the
    same real-world address produce equal keys.
    """

    street: str
    house_number: str

    def __str__(self) -> str:
        return f"{self.street}|{self.house_number}"

    @classmethod
    def parse(cls, value: str) -> "LocationKey":
        """Inverse of str(); raises ValueError for malformed input."""
        street, sep, house_number = value.partition("|")
        if not sep or not street or not house_number:
            raise ValueError(f"Malformed location key: {value!r}")
        return cls(street=street, house_number=house_number)


@dataclass
class Subscriber:
    """A registered user and the address they want to be notified about."""

    chat_id: int
    address: Address
    location_key: Optional[LocationKey] = None
    last_notified: Optional[date] = None
    first_name: Optional[str] = None


@dataclass(frozen=True)
class GeocodeCacheEntry:
    """A cached resolution result. location_key is None for negative entries."""

    address: str
    location_key: Optional[LocationKey]
    expires_at: float
    failure_reason: Optional[str] = None

    @property
    def is_negative(self) -> bool:
        return self.location_key is None


@dataclass(frozen=True)
class HouseNumberRange:
    """An inclusive range of house numbers, optionally restricted to one side of the street."""

    first: int
    last: int
    parity: Optional[str] = None  # "even", "odd" or None for both

    def contains(self, number: int) -> bool:
        if not self.first <= number <= self.last:
            return False
        if self.parity == "even":
            return number % 2 == 0
        if self.parity == "odd":
            return number % 2 == 1
        return True


@dataclass(frozen=True)
class CollectionRule:
    """Represents one calendar event: a waste stream collected on a street (section)."""

    uid: str
    category: WasteCategory
    street: str
    dates: FrozenSet[date]
    house_numbers: Optional[HouseNumberRange] = None


class NotificationOutcome(str, Enum):
    """Terminal state of one subscriber within a notification run."""

    SENT = "sent"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_ALREADY_NOTIFIED = "skipped_already_notified"
    FAILED_RESOLVE = "failed_resolve"
    FAILED_DISPATCH = "failed_dispatch"
    FAILED_RECORD = "failed_record"


@dataclass
class RunReport:
    """Collects the per-subscriber outcomes of one firing of the daily trigger."""

    run_date: date
    target_date: date
    outcomes: Dict[int, NotificationOutcome] = field(default_factory=dict)

    def count(self, outcome: NotificationOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value is outcome)

    def summary(self) -> str:
        counts = Counter(outcome.value for outcome in self.outcomes.values())
        details = ", ".join(f"{name}={counts[name]}" for name in sorted(counts))
        return (
            f"Run {self.run_date.isoformat()} for {self.target_date.isoformat()}: "
            f"{len(self.outcomes)} subscribers ({details or 'none'})"
        )
