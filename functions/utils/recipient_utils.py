# utils/recipient_utils.py

import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from firebase_functions import logger
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import ResolutionFailure
from .notification_utils import _mask_token

# Field alias policies. Each entry is a path into the document; paths are tried
# in order and the first truthy value wins, which must then be a non-empty string.
OWNER_USERNAME_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("username",),
    ("currentUser", "username"),
)
CONTACT_USERNAME_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("username",),
    ("contactUsername",),
    ("name",),
)
NOTIFICATION_TOKEN_FIELDS: Tuple[Tuple[str, ...], ...] = (
    ("fcmToken",),
    ("token",),
)


def _lookup_path(data: Any, path: Sequence[str]) -> Any:
    value = data
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def first_alias_value(data: Any, policy: Sequence[Sequence[str]]) -> Optional[str]:
    """
    Apply a field alias policy to a document.

    Returns the first truthy value found along the policy's paths if it is a
    non-empty string, otherwise None.
    """
    if not isinstance(data, dict):
        return None

    for path in policy:
        value = _lookup_path(data, path)
        if value:
            return value if isinstance(value, str) else None
    return None


class RecipientResolver:
    """
    Resolves the notification tokens to alert for a crash on a device.

    Walks device -> owner username -> owner account -> emergency contacts ->
    contact accounts -> tokens. Steps up to the contact list short-circuit to an
    empty set when data is simply absent; store failures on those steps raise
    ResolutionFailure. Each contact is resolved independently and a failing
    contact is skipped.
    """

    def __init__(
        self,
        db,
        devices_collection: str = "rideguard_id",
        users_collection: str = "users",
        lookup_timeout: Optional[float] = None,
        max_workers: int = 8,
    ):
        self.db = db
        self.devices_collection = devices_collection
        self.users_collection = users_collection
        self.lookup_timeout = lookup_timeout
        self.max_workers = max(1, max_workers)

    def resolve_targets(self, device_id: str) -> Set[str]:
        try:
            contacts = self._resolve_contact_usernames(device_id)
        except Exception as e:
            logger.error(f"Error getting tokens for rideguard {device_id}: {str(e)}")
            raise ResolutionFailure("Failed to retrieve tokens.", {"rideguard_id": device_id}) from e

        if not contacts:
            return set()

        tokens = self._resolve_contact_tokens(contacts)
        logger.info(f"Retrieved {len(tokens)} tokens for rideguard_id: {device_id}")
        return tokens

    # --- Sequential hops -------------------------------------------------

    def _resolve_contact_usernames(self, device_id: str) -> List[str]:
        device_data = self._get_device(device_id)
        if device_data is None:
            return []

        owner_username = self._owner_username(device_id, device_data)
        if owner_username is None:
            return []

        owner_data = self.find_user(owner_username)
        if owner_data is None:
            logger.info(f"User not found for username: {owner_username}")
            return []
        logger.info(f"Found rideguard user document for: {owner_username}")

        contacts = self._emergency_contacts(owner_username, owner_data)
        if not contacts:
            return []

        return self._contact_usernames(contacts)

    def _get_device(self, device_id: str) -> Optional[Dict[str, Any]]:
        device_doc = self.db.collection(self.devices_collection).document(device_id).get(timeout=self.lookup_timeout)
        if not device_doc.exists:
            logger.info(f"Rideguard device not found: {device_id}")
            return None
        return device_doc.to_dict() or {}

    def _owner_username(self, device_id: str, device_data: Dict[str, Any]) -> Optional[str]:
        username = first_alias_value(device_data, OWNER_USERNAME_FIELDS)
        if username is None:
            logger.info(f"No username found for rideguard device: {device_id}")
            return None
        logger.info(f"Found rideguard username: {username}")
        return username

    def _emergency_contacts(self, owner_username: str, owner_data: Dict[str, Any]) -> List[Any]:
        contacts = owner_data.get("emergencyContacts")
        if not isinstance(contacts, (list, tuple)) or not contacts:
            logger.info(f"No emergency contacts found for user: {owner_username}")
            return []
        logger.info(f"Found {len(contacts)} emergency contact(s) for user: {owner_username}")
        return list(contacts)

    def _contact_usernames(self, contacts: List[Any]) -> List[str]:
        usernames = []
        for contact in contacts:
            username = first_alias_value(contact, CONTACT_USERNAME_FIELDS)
            if username is None:
                logger.warn(f"Emergency contact missing username: {contact!r}")
                continue
            if username in usernames:
                logger.info(f"Emergency contact {username} listed more than once")
                continue
            usernames.append(username)
        return usernames

    # --- Per-contact fanout ----------------------------------------------

    def find_user(self, username: str) -> Optional[Dict[str, Any]]:
        """First user document whose username matches exactly, or None."""
        docs = (
            self.db.collection(self.users_collection)
            .where(filter=FieldFilter("username", "==", username))
            .limit(1)
            .get(timeout=self.lookup_timeout)
        )
        for doc in docs:
            return doc.to_dict() or {}
        return None

    def _token_for_contact(self, username: str) -> Optional[str]:
        contact_data = self.find_user(username)
        if contact_data is None:
            logger.warn(f"Emergency contact user not found for username: {username}")
            return None

        token = first_alias_value(contact_data, NOTIFICATION_TOKEN_FIELDS)
        if token is None:
            logger.warn(f"No token found for emergency contact: {username}")
            return None

        logger.info(f"Added token for emergency contact: {username}")
        return token

    def _resolve_contact_tokens(self, usernames: List[str]) -> Set[str]:
        """
        Look up every contact's token concurrently.

        At most max_workers lookups are live at once. A lookup's timeout runs
        from when it was started, and a lookup that overruns is abandoned and
        stops counting against max_workers, so hung contacts never starve the
        contacts queued behind them.
        """
        tokens: Set[str] = set()
        queued = deque(usernames)
        in_flight: Dict[Future, Tuple[str, float]] = {}
        # one thread per contact so abandoned lookups never hold a slot
        executor = ThreadPoolExecutor(max_workers=len(usernames))
        try:
            while queued or in_flight:
                while queued and len(in_flight) < self.max_workers:
                    username = queued.popleft()
                    in_flight[executor.submit(self._token_for_contact, username)] = (username, time.monotonic())

                done, _ = wait(list(in_flight), timeout=self._next_deadline(in_flight), return_when=FIRST_COMPLETED)

                for future in done:
                    username, _started = in_flight.pop(future)
                    try:
                        token = future.result()
                    except Exception as e:
                        logger.warn(f"Failed to lookup emergency contact {username}: {str(e)}")
                        continue
                    self._add_token(tokens, token)

                if self.lookup_timeout is None:
                    continue
                now = time.monotonic()
                for future, (username, started) in list(in_flight.items()):
                    if now - started >= self.lookup_timeout:
                        del in_flight[future]
                        future.cancel()
                        logger.warn(f"Timed out looking up emergency contact {username}")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return tokens

    def _next_deadline(self, in_flight: Dict[Future, Tuple[str, float]]) -> Optional[float]:
        if self.lookup_timeout is None:
            return None
        earliest = min(started for _username, started in in_flight.values())
        return max(0.0, earliest + self.lookup_timeout - time.monotonic())

    @staticmethod
    def _add_token(tokens: Set[str], token: Optional[str]) -> None:
        if token is None:
            return
        if token in tokens:
            logger.info(f"Token {_mask_token(token)} already queued, skipping duplicate")
            return
        tokens.add(token)
