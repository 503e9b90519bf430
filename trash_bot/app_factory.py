"""
This module provides a factory for creating and configuring the application's core components.
"""

from trash_calendar.config import Settings
from trash_calendar.facade import TrashBotFacade
from trash_calendar.geocode_cache import GeocodeCache
from trash_calendar.services.calendar_service import CalendarService
from trash_calendar.services.geocoding_service import GeocodingService
from trash_calendar.services.persistence_service import PersistenceService
from trash_calendar.services.subscriber_directory import SubscriberDirectory

from .logging_config import setup_logging


def initialize_app(settings: Settings) -> None:
    """
    Initializes the local database and sets up logging.
    """
    # The logs table has to exist before the database handler writes to it.
    with PersistenceService(settings.local_db_path) as persistence_service:
        persistence_service.init_db()
    setup_logging(settings.log_level, settings.local_db_path)


def create_facade(settings: Settings) -> TrashBotFacade:
    """
    Initializes and returns the TrashBotFacade with all its dependencies.
    """
    cache = GeocodeCache(
        positive_ttl=settings.geocode_cache_ttl_days * 86400,
        negative_ttl=settings.geocode_negative_ttl_hours * 3600,
        db_path=settings.local_db_path,
    )
    geocoder = GeocodingService(
        cache=cache,
        base_url=settings.geocoder_url,
        reverse_url=settings.geocoder_reverse_url,
        city=settings.geocoder_city,
        user_agent=settings.geocoder_user_agent,
        min_interval=settings.geocoder_min_interval,
    )
    calendar = CalendarService(
        source=settings.calendar_source,
        refresh_hours=settings.calendar_refresh_hours,
        max_retries=settings.calendar_max_retries,
        retry_delay=settings.calendar_retry_delay,
        holiday_shift=settings.holiday_shift,
        holiday_subdivision=settings.holiday_subdivision,
    )
    directory = SubscriberDirectory(
        endpoint=settings.data_api_url,
        secret=settings.data_api_secret,
        page_size=settings.data_api_page_size,
        timeout=settings.data_api_timeout,
    )
    return TrashBotFacade(directory=directory, geocoder=geocoder, calendar=calendar)
