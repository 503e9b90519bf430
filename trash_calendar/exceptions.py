"""
This module defines custom exceptions for the waste collection notifier.
"""
from enum import Enum


class TrashBotError(Exception):
    """Base class for all errors raised by the application."""

    pass


class ConfigurationError(TrashBotError):
    """Raised when required settings are missing or malformed. Fatal at startup."""

    pass


class ResolutionFailure(str, Enum):
    """Why an address could not be turned into a location key."""

    NOT_FOUND = "not_found"
    SERVICE_UNAVAILABLE = "service_unavailable"
    AMBIGUOUS = "ambiguous"


class ResolutionError(TrashBotError):
    """Custom exception for addresses the geocoding service cannot resolve."""

    def __init__(self, kind: ResolutionFailure, address: str, detail: str = ""):
        self.kind = kind
        self.address = address
        self.detail = detail
        message = f"Could not resolve '{address}': {kind.value}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class CalendarLoadError(TrashBotError):
    """Custom exception for errors while downloading or parsing the collection calendar."""

    pass


class PersistenceError(TrashBotError):
    """Custom exception for failed reads or writes against the subscriber data API."""

    pass


class DispatchError(TrashBotError):
    """Custom exception for messages the transport could not deliver."""

    def __init__(self, recipient_id: int, reason: str, detail: str = ""):
        self.recipient_id = recipient_id
        self.reason = reason
        message = f"Could not deliver message to {recipient_id}: {reason}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
