"""
This module provides functionality for parsing the municipal collection calendar.

It uses the icalendar library to read the file and dateutil to expand recurrence
rules. Each VEVENT describes one waste stream on one street (section):

    SUMMARY:Papier
    LOCATION:Kaiserstraße 1-99 ungerade
    DTSTART;VALUE=DATE:20240105
    RRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=FR
    EXDATE;VALUE=DATE:20240329
    RDATE;VALUE=DATE:20240328
"""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Iterable, List, NamedTuple, Optional, Set, Tuple

from dateutil.rrule import rrulestr
from icalendar import Calendar

from .address_normalizer import canonicalize_street
from .exceptions import CalendarLoadError
from .models import CollectionRule, HouseNumberRange, WasteCategory

# Get a logger instance for this module
logger = logging.getLogger(__name__)

waste_type_pattern = re.compile(r"(Bio|Papier|Rest|Wertstoff|Gelbe)", re.IGNORECASE)
location_pattern = re.compile(
    r"^(?P<street>.+?)(?:\s+(?P<first>\d+)\s*-\s*(?P<last>\d+)(?:\s+(?P<parity>gerade|ungerade))?)?$",
    re.IGNORECASE,
)

CATEGORY_BY_KEYWORD = {
    "bio": WasteCategory.BIO,
    "papier": WasteCategory.PAPER,
    "rest": WasteCategory.RESIDUAL,
    "wertstoff": WasteCategory.RECYCLING,
    "gelbe": WasteCategory.RECYCLING,
}

PARITY_BY_KEYWORD = {"gerade": "even", "ungerade": "odd"}


class ParsedCalendar(NamedTuple):
    """The rules of a calendar and the period it was published for."""

    rules: List[CollectionRule]
    coverage_start: date
    coverage_end: date


def parse_calendar(ics_text: str, holiday_calendar=None) -> ParsedCalendar:
    """
    Parse an ICS document into collection rules.

    Args:
        ics_text: The iCalendar document.
        holiday_calendar: Optional container of public holidays (e.g. a
            holidays.HolidayBase). Regular occurrences on a holiday that are not
            explicitly excluded move to the next working day.

    Returns:
        A ParsedCalendar.

    Raises:
        CalendarLoadError: If the document cannot be parsed or holds no usable event.
    """
    try:
        cal = Calendar.from_ical(ics_text)
    except ValueError as e:
        raise CalendarLoadError(f"Failed to parse ICS file: {e}") from e

    events = list(cal.walk("VEVENT"))
    if not events:
        raise CalendarLoadError("The calendar contains no collection events.")

    coverage_start, coverage_end = _coverage(cal, events)
    logger.info(
        f"Expanding {len(events)} calendar events between {coverage_start.isoformat()} and {coverage_end.isoformat()}."
    )

    rules = []
    for component in events:
        uid = str(component.get("UID", "Unknown UID"))
        try:
            rule = _parse_event(component, coverage_start, coverage_end, holiday_calendar)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping event with UID {uid} due to an error: {e}")
            continue
        if rule is not None:
            rules.append(rule)

    if not rules:
        raise CalendarLoadError("None of the calendar events could be interpreted.")
    return ParsedCalendar(rules=rules, coverage_start=coverage_start, coverage_end=coverage_end)


def parse_category(summary: str, description: str = "") -> Optional[WasteCategory]:
    """Maps an event summary (or, as fallback, its description) to a waste category."""
    match = waste_type_pattern.search(summary)
    if not match and description:
        match = waste_type_pattern.search(description)
    if not match:
        return None
    return CATEGORY_BY_KEYWORD[match.group(1).lower()]


def parse_location(location: str) -> Tuple[str, Optional[HouseNumberRange]]:
    """Splits 'Kaiserstraße 1-99 ungerade' into the canonical street and its number range."""
    match = location_pattern.match(location.strip())
    if not match:
        raise ValueError(f"Unrecognised location {location!r}")
    street = canonicalize_street(match.group("street"))
    if match.group("first") is None:
        return street, None
    first, last = int(match.group("first")), int(match.group("last"))
    if first > last:
        raise ValueError(f"Invalid house number range in {location!r}")
    parity = match.group("parity")
    return street, HouseNumberRange(first, last, PARITY_BY_KEYWORD[parity.lower()] if parity else None)


def _parse_event(component, coverage_start: date, coverage_end: date, holiday_calendar) -> Optional[CollectionRule]:
    uid = str(component.get("UID", "Unknown UID"))
    dt_start = component.get("DTSTART")
    if dt_start is None:
        logger.warning(f"Skipping event with UID {uid} due to missing DTSTART.")
        return None

    summary = str(component.get("SUMMARY", "")).strip()
    description = str(component.get("DESCRIPTION", "")).replace("\\n", "\n").strip()
    category = parse_category(summary, description)
    if category is None:
        logger.warning(f"Skipping event with UID {uid}: unknown waste type '{summary}'.")
        return None

    location = str(component.get("LOCATION", "")).strip()
    if not location:
        logger.warning(f"Skipping event with UID {uid} due to missing LOCATION.")
        return None
    street, house_numbers = parse_location(location)

    first_date = _as_date(dt_start.dt)
    excluded = set(_date_list(component.get("EXDATE")))
    added = set(_date_list(component.get("RDATE")))

    regular = {first_date}
    rrule = component.get("RRULE")
    if rrule is not None:
        rule_text = rrule.to_ical().decode("utf-8")
        start = datetime.combine(first_date, datetime.min.time())
        recurrence = rrulestr(rule_text, dtstart=start, ignoretz=True)
        until = datetime.combine(coverage_end, datetime.min.time())
        regular.update(occurrence.date() for occurrence in recurrence.between(start, until, inc=True))

    regular -= excluded
    if holiday_calendar is not None:
        regular = {_shift_for_holiday(day, holiday_calendar) for day in regular}

    dates = frozenset(day for day in regular | added if coverage_start <= day <= coverage_end)
    return CollectionRule(uid=uid, category=category, street=street, dates=dates, house_numbers=house_numbers)


def _shift_for_holiday(day: date, holiday_calendar) -> date:
    """Moves a collection on a public holiday to the next day that is neither a Sunday nor a holiday."""
    if day not in holiday_calendar:
        return day
    shifted = day + timedelta(days=1)
    while shifted.weekday() == 6 or shifted in holiday_calendar:
        shifted += timedelta(days=1)
    logger.debug(f"Collection on holiday {day.isoformat()} moved to {shifted.isoformat()}.")
    return shifted


def _coverage(cal, events) -> Tuple[date, date]:
    """The published period: X-COVERAGE-START/END, else the DTSTART year(s)."""
    start = _coverage_property(cal, "X-COVERAGE-START")
    end = _coverage_property(cal, "X-COVERAGE-END")
    if start is not None and end is not None:
        if start > end:
            raise CalendarLoadError("X-COVERAGE-START lies after X-COVERAGE-END.")
        return start, end

    starts = [_as_date(component.get("DTSTART").dt) for component in events if component.get("DTSTART") is not None]
    if not starts:
        raise CalendarLoadError("No event has a DTSTART; cannot determine the calendar period.")
    return start or min(starts), end or date(max(starts).year, 12, 31)


def _coverage_property(cal, name: str) -> Optional[date]:
    value = cal.get(name)
    if value is None:
        return None
    try:
        return datetime.strptime(str(value).strip(), "%Y%m%d").date()
    except ValueError as e:
        raise CalendarLoadError(f"{name} must be a date in YYYYMMDD format, got {value!r}") from e


def _date_list(prop) -> Iterable[date]:
    """Flattens EXDATE/RDATE values, which icalendar returns as one list or a list of lists."""
    if prop is None:
        return []
    props = prop if isinstance(prop, list) else [prop]
    days: Set[date] = set()
    for item in props:
        for value in item.dts:
            days.add(_as_date(value.dt))
    return days


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
