"""
This module defines the GeocodingService, which resolves addresses to location keys.
"""
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from ..address_normalizer import canonical_address, canonicalize_house_number, canonicalize_street
from ..config import (GEOCODER_CITY, GEOCODER_MIN_INTERVAL, GEOCODER_REVERSE_URL, GEOCODER_URL,
                      GEOCODER_USER_AGENT)
from ..exceptions import ResolutionError, ResolutionFailure
from ..geocode_cache import GeocodeCache
from ..models import Address, LocationKey

# Get a logger instance for this module
logger = logging.getLogger(__name__)

# Failures worth remembering; an unavailable service is retried on the next call.
CACHEABLE_FAILURES = (ResolutionFailure.NOT_FOUND, ResolutionFailure.AMBIGUOUS)

# Nominatim reports the municipality under one of these keys depending on its size.
CITY_FIELDS = ("city", "town", "village", "municipality")


class GeocodingService:
    """Resolves addresses and coordinates through Nominatim-compatible search and reverse endpoints."""

    def __init__(
        self,
        cache: GeocodeCache,
        base_url: str = GEOCODER_URL,
        reverse_url: str = GEOCODER_REVERSE_URL,
        city: str = GEOCODER_CITY,
        user_agent: str = GEOCODER_USER_AGENT,
        min_interval: float = GEOCODER_MIN_INTERVAL,
        timeout: int = 10,
        session: Optional[requests.Session] = None,
    ):
        """
        Initializes the GeocodingService.

        Args:
            cache: The shared resolution cache.
            base_url: The search endpoint; may point at a caching proxy.
            reverse_url: The reverse lookup endpoint for coordinates.
            city: The municipality all addresses must belong to.
            user_agent: Identifies this application to the service.
            min_interval: Minimum seconds between two upstream requests.
            timeout: Request timeout in seconds.
            session: Optional requests session (connection pooling, tests).
        """
        self.cache = cache
        self.base_url = base_url
        self.reverse_url = reverse_url
        self.city = city
        self.user_agent = user_agent
        self.min_interval = min_interval
        self.timeout = timeout
        self.session = session or requests.Session()
        self._throttle_lock = threading.Lock()
        self._last_request = 0.0

    def resolve(self, address: Address) -> LocationKey:
        """
        Resolves an address to its location key, consulting the cache first.

        Args:
            address: The street and house number as entered by the user.

        Returns:
            The canonical LocationKey of the address.

        Raises:
            ResolutionError: With kind NOT_FOUND, AMBIGUOUS or SERVICE_UNAVAILABLE.
        """
        cache_key = canonical_address(address)
        entry = self.cache.get(cache_key)
        if entry is not None:
            if entry.location_key is not None:
                logger.debug(f"Geocode cache hit for '{cache_key}'.")
                return entry.location_key
            logger.info(f"Negative geocode cache hit for '{cache_key}' ({entry.failure_reason}).")
            raise ResolutionError(ResolutionFailure(entry.failure_reason), str(address), "cached")

        try:
            location_key = self._lookup(address)
        except ResolutionError as e:
            if e.kind in CACHEABLE_FAILURES:
                self.cache.put_negative(cache_key, e.kind.value)
            raise

        self.cache.put(cache_key, location_key)
        logger.info(f"Resolved '{address}' to location key '{location_key}'.")
        return location_key

    def locate(self, latitude: float, longitude: float) -> Address:
        """
        Finds the street address at a coordinate, e.g. a location shared in the chat.

        The resolution is cached under the address, so registering it right
        afterwards needs no further upstream request.

        Returns:
            The address with street and house number as the service spells them.

        Raises:
            ResolutionError: NOT_FOUND if no house lies at the point or it is
                outside the configured city, SERVICE_UNAVAILABLE on transport errors.
        """
        point = f"{latitude:.6f},{longitude:.6f}"
        params = {
            "lat": latitude,
            "lon": longitude,
            "format": "jsonv2",
            "addressdetails": 1,
            "zoom": 18,
        }
        result = self._fetch(self.reverse_url, params, point)
        if not isinstance(result, dict):
            raise ResolutionError(ResolutionFailure.SERVICE_UNAVAILABLE, point, "unexpected response")
        if "error" in result:
            logger.info(f"No address at {point}: {result['error']}")
            raise ResolutionError(ResolutionFailure.NOT_FOUND, point)

        candidates = self._candidates([result])
        if not candidates:
            logger.info(f"No house in {self.city} at {point}.")
            raise ResolutionError(ResolutionFailure.NOT_FOUND, point)

        location_key = next(iter(candidates))
        details = result["address"]
        address = Address(street=details["road"], house_number=details["house_number"])
        self.cache.put(canonical_address(address), location_key)
        logger.info(f"Located '{address}' at {point}.")
        return address

    def _lookup(self, address: Address) -> LocationKey:
        """Queries the upstream service and classifies its answer."""
        results = self._request(address)
        candidates = self._candidates(results)

        if not candidates:
            logger.warning(f"Address '{address}' not found in {self.city}.")
            raise ResolutionError(ResolutionFailure.NOT_FOUND, str(address))
        if len(candidates) > 1:
            keys = ", ".join(sorted(str(key) for key in candidates))
            logger.warning(f"Address '{address}' is ambiguous: {keys}")
            raise ResolutionError(ResolutionFailure.AMBIGUOUS, str(address), keys)
        return next(iter(candidates))

    def _request(self, address: Address) -> List[dict]:
        """Searches for an address; the result must be a list of matches."""
        params = {
            "street": f"{address.house_number.strip()} {address.street.strip()}",
            "city": self.city,
            "format": "jsonv2",
            "addressdetails": 1,
            "limit": 5,
        }
        data = self._fetch(self.base_url, params, str(address))
        if not isinstance(data, list):
            raise ResolutionError(ResolutionFailure.SERVICE_UNAVAILABLE, str(address), "unexpected response")
        return data

    def _fetch(self, url: str, params: Dict[str, Any], subject: str) -> Any:
        """Performs the HTTP request; all transport problems become SERVICE_UNAVAILABLE."""
        headers = {"User-Agent": self.user_agent, "Accept-Language": "de"}

        self._wait_for_slot()
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Geocoding request for '{subject}' failed: {e}")
            raise ResolutionError(ResolutionFailure.SERVICE_UNAVAILABLE, subject, str(e)) from e
        except ValueError as e:
            logger.error(f"Geocoding service returned invalid JSON for '{subject}': {e}")
            raise ResolutionError(ResolutionFailure.SERVICE_UNAVAILABLE, subject, "invalid response") from e

    def _candidates(self, results: List[dict]) -> Dict[LocationKey, dict]:
        """Turns raw results into distinct location keys inside the configured city."""
        candidates: Dict[LocationKey, dict] = {}
        wanted_city = self.city.strip().lower()
        for result in results:
            details = result.get("address") or {}
            road = details.get("road")
            house_number = details.get("house_number")
            if not road or not house_number:
                continue
            if wanted_city:
                cities = {str(details.get(field, "")).strip().lower() for field in CITY_FIELDS}
                if wanted_city not in cities:
                    continue
            key = LocationKey(
                street=canonicalize_street(road),
                house_number=canonicalize_house_number(house_number),
            )
            candidates.setdefault(key, result)
        return candidates

    def _wait_for_slot(self) -> None:
        """Blocks until at least min_interval has passed since the previous request."""
        with self._throttle_lock:
            delay = self._last_request + self.min_interval - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            self._last_request = time.monotonic()
