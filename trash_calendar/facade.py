"""
This module defines the central facade used by the chat front end.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .exceptions import PersistenceError, ResolutionError, ResolutionFailure
from .models import Address, LocationKey, Subscriber
from .services.calendar_service import CalendarService
from .services.geocoding_service import GeocodingService
from .services.subscriber_directory import SubscriberDirectory

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    """Outcome of a registration as shown to the user."""

    saved: bool
    location_key: Optional[LocationKey] = None
    resolution_failure: Optional[ResolutionFailure] = None


class TrashBotFacade:
    """
    The entry point for registering and removing addresses.
    It orchestrates the directory, the geocoder and the calendar.
    """

    def __init__(
        self,
        directory: SubscriberDirectory,
        geocoder: GeocodingService,
        calendar: CalendarService,
    ):
        self.directory = directory
        self.geocoder = geocoder
        self.calendar = calendar

    def register_address(
        self, chat_id: int, street: str, house_number: str, first_name: Optional[str] = None
    ) -> RegistrationResult:
        """
        Stores a user's address and tries to resolve it right away.

        The registration is kept even if resolution fails, so the daily run can
        retry once the geocoding service recovers or the cache entry expires.

        Raises:
            ValueError: If street or house number is empty.
        """
        address = Address(street=street, house_number=house_number)
        try:
            self.directory.register(chat_id, address, first_name)
        except PersistenceError as e:
            logger.error(f"Failed to register address for chat_id {chat_id}: {e}")
            return RegistrationResult(saved=False)

        try:
            location_key = self.geocoder.resolve(address)
        except ResolutionError as e:
            logger.warning(f"Registered chat_id {chat_id}, but the address did not resolve: {e}")
            return RegistrationResult(saved=True, resolution_failure=e.kind)

        try:
            self.directory.record_location_key(chat_id, location_key)
        except PersistenceError as e:
            logger.warning(f"Could not store location key for chat_id {chat_id}: {e}")
        return RegistrationResult(saved=True, location_key=location_key)

    def locate_address(self, latitude: float, longitude: float) -> Address:
        """
        Finds the address at a location shared by the user.

        Raises:
            ResolutionError: If no address in the configured city lies at the point,
                or the geocoding service is unavailable.
        """
        return self.geocoder.locate(latitude, longitude)

    def remove_user(self, chat_id: int) -> bool:
        """Deletes all data of a user. Returns False if nothing was deleted or the call failed."""
        try:
            return self.directory.remove(chat_id)
        except PersistenceError as e:
            logger.error(f"Failed to remove chat_id {chat_id}: {e}")
            return False

    def get_subscriber(self, chat_id: int) -> Optional[Subscriber]:
        """Retrieves a user's registration, or None."""
        try:
            return self.directory.get_subscriber(chat_id)
        except PersistenceError as e:
            logger.error(f"Failed to load chat_id {chat_id}: {e}")
            return None

    def suggest_streets(self, query: str) -> List[str]:
        """Street names from the collection calendar that resemble the user's input."""
        return self.calendar.suggest_streets(query)
