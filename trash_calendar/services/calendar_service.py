"""
This module defines the CalendarService, which holds the collection calendar in memory.
"""
import asyncio
import logging
import threading
import time
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

import holidays
import requests
from thefuzz import process

from ..address_normalizer import canonicalize_street, house_number_value
from ..config import CALENDAR_MAX_RETRIES, CALENDAR_REFRESH_HOURS, CALENDAR_RETRY_DELAY, HOLIDAY_SUBDIVISION
from ..exceptions import CalendarLoadError
from ..ics_parser import parse_calendar
from ..models import CollectionRule, LocationKey, WasteCategory

# Get a logger instance for this module
logger = logging.getLogger(__name__)

EMPTY: FrozenSet[WasteCategory] = frozenset()


class CalendarSnapshot:
    """
    An immutable view of one loaded calendar.

    entries_for() is a pure function of (location key, date): it never raises and
    returns the union of the categories of every rule covering the location.
    """

    def __init__(
        self,
        rules: Iterable[CollectionRule] = (),
        coverage: Optional[Tuple[date, date]] = None,
        display_streets: Optional[Dict[str, str]] = None,
    ):
        by_street: Dict[str, List[CollectionRule]] = defaultdict(list)
        for rule in rules:
            by_street[rule.street].append(rule)
        self._rules: Dict[str, Tuple[CollectionRule, ...]] = {
            street: tuple(street_rules) for street, street_rules in by_street.items()
        }
        self.coverage = coverage
        self._display_streets = dict(display_streets or {})

    @property
    def rule_count(self) -> int:
        return sum(len(rules) for rules in self._rules.values())

    def covers(self, day: date) -> bool:
        """True if the calendar was published for this date."""
        if self.coverage is None:
            return False
        start, end = self.coverage
        return start <= day <= end

    def entries_for(self, location_key: LocationKey, day: date) -> FrozenSet[WasteCategory]:
        """Returns the waste categories collected at a location on a date (empty if none)."""
        rules = self._rules.get(location_key.street)
        if not rules:
            return EMPTY
        number = house_number_value(location_key.house_number)
        categories = set()
        for rule in rules:
            if day not in rule.dates:
                continue
            if rule.house_numbers is not None and (number is None or not rule.house_numbers.contains(number)):
                continue
            categories.add(rule.category)
        return frozenset(categories)

    def streets(self) -> List[str]:
        """Street names as they appear in the calendar source, sorted."""
        return sorted(self._display_streets.get(street, street) for street in self._rules)

    def has_street(self, street: str) -> bool:
        return canonicalize_street(street) in self._rules


class CalendarService:
    """Loads the collection calendar and answers date lookups against it."""

    def __init__(
        self,
        source: Optional[str] = None,
        refresh_hours: int = CALENDAR_REFRESH_HOURS,
        max_retries: int = CALENDAR_MAX_RETRIES,
        retry_delay: float = CALENDAR_RETRY_DELAY,
        holiday_shift: bool = True,
        holiday_subdivision: str = HOLIDAY_SUBDIVISION,
        timeout: int = 30,
    ):
        """
        Initializes the CalendarService with an empty calendar.

        Args:
            source: URL or file path of the ICS calendar.
            refresh_hours: Hours between two reloads in run_refresh_loop().
            max_retries: Download attempts per load.
            retry_delay: Seconds to wait between download attempts.
            holiday_shift: Move collections falling on public holidays to the next working day.
            holiday_subdivision: German state whose public holidays apply.
            timeout: Download timeout in seconds.
        """
        self.source = source
        self.refresh_hours = refresh_hours
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.holiday_shift = holiday_shift
        self.holiday_subdivision = holiday_subdivision
        self.timeout = timeout
        self._snapshot = CalendarSnapshot()
        self._reload_lock = threading.Lock()

    @property
    def snapshot(self) -> CalendarSnapshot:
        """The current calendar. Readers keep whichever snapshot they obtained."""
        return self._snapshot

    def entries_for(self, location_key: LocationKey, day: date) -> FrozenSet[WasteCategory]:
        return self._snapshot.entries_for(location_key, day)

    def covers(self, day: date) -> bool:
        return self._snapshot.covers(day)

    def load_calendar(self, source: Optional[str] = None) -> CalendarSnapshot:
        """
        Loads a calendar and replaces the current one in a single step.

        Args:
            source: URL or file path; defaults to the configured source.

        Returns:
            The newly installed snapshot.

        Raises:
            CalendarLoadError: If the calendar cannot be fetched or parsed. The
                previous calendar stays in effect.
        """
        source = source or self.source
        if not source:
            raise CalendarLoadError("No calendar source configured.")

        with self._reload_lock:
            ics_text = self._fetch(source)
            holiday_calendar = holidays.Germany(subdiv=self.holiday_subdivision) if self.holiday_shift else None
            parsed = parse_calendar(ics_text, holiday_calendar=holiday_calendar)
            display_streets = {}
            for rule in parsed.rules:
                display_streets.setdefault(rule.street, _display_name(rule.street))
            snapshot = CalendarSnapshot(
                parsed.rules,
                coverage=(parsed.coverage_start, parsed.coverage_end),
                display_streets=display_streets,
            )
            self._snapshot = snapshot

        logger.info(
            f"Loaded collection calendar from {source}: {snapshot.rule_count} rules, "
            f"{len(display_streets)} streets, {parsed.coverage_start.isoformat()} to {parsed.coverage_end.isoformat()}."
        )
        return snapshot

    def suggest_streets(self, query: str, limit: int = 5, score_cutoff: int = 80) -> List[str]:
        """
        Finds calendar streets matching a user's input, first trying an exact match,
        then falling back to fuzzy matching.
        """
        snapshot = self._snapshot
        if snapshot.has_street(query):
            return [_display_name(canonicalize_street(query))]
        matches = process.extractBests(query, snapshot.streets(), limit=limit, score_cutoff=score_cutoff)
        return [match for match, score in matches]

    async def run_refresh_loop(self) -> None:
        """
        Runs the calendar reload loop indefinitely.
        """
        while True:
            sleep_duration = self.refresh_hours * 3600
            logger.info(f"Next calendar reload in {self.refresh_hours} hours.")
            await asyncio.sleep(sleep_duration)
            try:
                await asyncio.to_thread(self.load_calendar)
            except CalendarLoadError as e:
                logger.error(f"Calendar reload failed, keeping the previous calendar: {e}")
            except Exception as e:
                logger.exception(f"An unexpected error occurred during the calendar reload: {e}")

    def _fetch(self, source: str) -> str:
        """Reads the ICS text from a URL (with retries) or a local file."""
        if not source.startswith(("http://", "https://")):
            try:
                return Path(source).read_text(encoding="utf-8")
            except OSError as e:
                raise CalendarLoadError(f"Cannot read calendar file {source}: {e}") from e

        for attempt in range(self.max_retries):
            try:
                response = requests.get(source, timeout=self.timeout)
                response.raise_for_status()
                logger.info(f"Successfully downloaded calendar from {source}")
                return response.text
            except requests.exceptions.RequestException as e:
                logger.warning(f"Attempt {attempt + 1} to download the calendar failed. Error: {e}")
                if attempt + 1 == self.max_retries:
                    raise CalendarLoadError(
                        f"All {self.max_retries} download attempts failed for {source}: {e}"
                    ) from e
                time.sleep(self.retry_delay)
        raise CalendarLoadError(f"No download attempt was made for {source}.")


def _display_name(street: str) -> str:
    """'kaiserstraße' -> 'Kaiserstraße'; 'am stadtgarten' -> 'Am Stadtgarten'."""
    return " ".join(part[:1].upper() + part[1:] for part in street.split(" "))
