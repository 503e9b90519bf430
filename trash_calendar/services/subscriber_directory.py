"""
This module defines the SubscriberDirectory, an adapter over the GraphQL data API.

The data API (a Hasura instance) owns the `users` table:

    chat_id        bigint primary key
    first_name     text
    street         text
    house_number   text
    location_key   text      -- cached LocationKey, NULL until resolved
    last_notified  date      -- written only by the notification run
"""
import logging
from datetime import date
from typing import Any, Dict, Iterator, Optional

import requests

from ..config import DATA_API_PAGE_SIZE, DATA_API_TIMEOUT
from ..exceptions import PersistenceError
from ..models import Address, LocationKey, Subscriber

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-hasura-admin-secret"

USER_FIELDS = "chat_id first_name street house_number location_key last_notified"

LIST_USERS = f"""
query ListUsers($limit: Int!, $offset: Int!) {{
  users(order_by: {{chat_id: asc}}, limit: $limit, offset: $offset) {{ {USER_FIELDS} }}
}}
"""

GET_USER = f"""
query GetUser($chat_id: bigint!) {{
  users_by_pk(chat_id: $chat_id) {{ {USER_FIELDS} }}
}}
"""

SET_LAST_NOTIFIED = """
mutation SetLastNotified($chat_id: bigint!, $date: date!) {
  update_users_by_pk(pk_columns: {chat_id: $chat_id}, _set: {last_notified: $date}) { chat_id }
}
"""

SET_LOCATION_KEY = """
mutation SetLocationKey($chat_id: bigint!, $location_key: String) {
  update_users_by_pk(pk_columns: {chat_id: $chat_id}, _set: {location_key: $location_key}) { chat_id }
}
"""

UPSERT_USER = """
mutation UpsertUser($user: users_insert_input!) {
  insert_users_one(
    object: $user,
    on_conflict: {
      constraint: users_pkey,
      update_columns: [first_name, street, house_number, location_key]
    }
  ) { chat_id }
}
"""

DELETE_USER = """
mutation DeleteUser($chat_id: bigint!) {
  delete_users_by_pk(chat_id: $chat_id) { chat_id }
}
"""


class SubscriberDirectory:
    """Lists subscribers and records per-subscriber state through the data API."""

    def __init__(
        self,
        endpoint: str,
        secret: str,
        page_size: int = DATA_API_PAGE_SIZE,
        timeout: int = DATA_API_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.secret = secret
        self.page_size = page_size
        self.timeout = timeout
        self.session = session or requests.Session()

    def list_subscribers(self) -> Iterator[Subscriber]:
        """
        Yields every subscriber with a usable address, one page at a time.

        Each call starts a new pass over the table. Rows without street or house
        number are skipped.

        Raises:
            PersistenceError: If a page cannot be fetched.
        """
        offset = 0
        while True:
            data = self._execute(LIST_USERS, {"limit": self.page_size, "offset": offset})
            rows = data.get("users") or []
            for row in rows:
                subscriber = self._to_subscriber(row)
                if subscriber is not None:
                    yield subscriber
            if len(rows) < self.page_size:
                return
            offset += len(rows)

    def get_subscriber(self, chat_id: int) -> Optional[Subscriber]:
        """Fetches one subscriber, or None if the user is not registered."""
        data = self._execute(GET_USER, {"chat_id": chat_id})
        row = data.get("users_by_pk")
        return self._to_subscriber(row) if row else None

    def record_notified(self, chat_id: int, notified_on: date) -> None:
        """
        Marks a subscriber as notified on a date. This is the commit point of a notification.

        Raises:
            PersistenceError: If the update fails or the subscriber no longer exists.
        """
        data = self._execute(SET_LAST_NOTIFIED, {"chat_id": chat_id, "date": notified_on.isoformat()})
        if not data.get("update_users_by_pk"):
            raise PersistenceError(f"Subscriber {chat_id} not found while recording notification.")

    def record_location_key(self, chat_id: int, location_key: Optional[LocationKey]) -> None:
        """Stores the resolved location key so later runs can skip geocoding."""
        value = str(location_key) if location_key else None
        data = self._execute(SET_LOCATION_KEY, {"chat_id": chat_id, "location_key": value})
        if not data.get("update_users_by_pk"):
            raise PersistenceError(f"Subscriber {chat_id} not found while recording location key.")

    def register(self, chat_id: int, address: Address, first_name: Optional[str] = None) -> None:
        """
        Creates or replaces a subscriber's address and clears the cached location key.

        `last_notified` is left alone, so re-registering on a collection eve does not
        produce a second reminder for the same day.
        """
        user = {
            "chat_id": chat_id,
            "first_name": first_name,
            "street": address.street.strip(),
            "house_number": address.house_number.strip(),
            "location_key": None,
        }
        self._execute(UPSERT_USER, {"user": user})
        logger.info(f"Registered address '{address}' for chat_id {chat_id}.")

    def remove(self, chat_id: int) -> bool:
        """Deletes a subscriber. Returns False if there was nothing to delete."""
        data = self._execute(DELETE_USER, {"chat_id": chat_id})
        removed = bool(data.get("delete_users_by_pk"))
        if removed:
            logger.info(f"Removed subscriber {chat_id}.")
        return removed

    def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Posts a GraphQL operation and returns its data, raising PersistenceError on any failure."""
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers={SECRET_HEADER: self.secret},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            raise PersistenceError(f"Data API request failed: {e}") from e
        except ValueError as e:
            raise PersistenceError(f"Data API returned invalid JSON: {e}") from e
        if not isinstance(body, dict):
            raise PersistenceError("Data API returned an unexpected response.")

        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            raise PersistenceError(f"Data API returned errors: {messages}")
        return body.get("data") or {}

    @staticmethod
    def _to_subscriber(row: Dict[str, Any]) -> Optional[Subscriber]:
        street = (row.get("street") or "").strip()
        house_number = (row.get("house_number") or "").strip()
        if not street or not house_number:
            logger.debug(f"Skipping chat_id {row.get('chat_id')} without a complete address.")
            return None

        location_key = None
        if row.get("location_key"):
            try:
                location_key = LocationKey.parse(row["location_key"])
            except ValueError:
                logger.warning(f"Ignoring malformed location key for chat_id {row['chat_id']}.")

        last_notified = None
        if row.get("last_notified"):
            try:
                last_notified = date.fromisoformat(row["last_notified"])
            except ValueError:
                logger.warning(f"Ignoring malformed last_notified for chat_id {row['chat_id']}.")

        return Subscriber(
            chat_id=int(row["chat_id"]),
            address=Address(street=street, house_number=house_number),
            location_key=location_key,
            last_notified=last_notified,
            first_name=row.get("first_name"),
        )
