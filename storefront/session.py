"""
Session state: bearer token and signed-in user, persisted to storage.
"""
import json
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from storefront.models import Identity, User
from storefront.storage import KeyValueStorage

logger = logging.getLogger(__name__)

TOKEN_KEY = "session:token"
USER_KEY = "session:user"

SessionListener = Callable[[str], None]


class SessionStore:
    """Current credentials for one client session"""

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self.token: Optional[str] = None
        self.user: Optional[User] = None
        self._listeners: List[SessionListener] = []

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token and self.user)

    @property
    def is_admin(self) -> bool:
        return bool(self.user and self.user.is_admin)

    @property
    def identity(self) -> Identity:
        if self.user is None:
            return Identity.guest()
        return Identity.user(self.user.id)

    def initialize(self) -> bool:
        """
        Restore credentials from storage.

        Both token and profile must be present and readable; anything
        else clears the stored session. Returns True when signed in.
        """
        token = self.storage.get(TOKEN_KEY)
        raw_user = self.storage.get(USER_KEY)

        if not token or not raw_user:
            self._reset()
            return False

        try:
            self.user = User.model_validate(json.loads(raw_user))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Discarding unreadable stored session: {e}")
            self._reset()
            return False

        self.token = token
        return True

    def start(self, token: str, user: User) -> None:
        self.token = token
        self.user = user
        self.storage.set(TOKEN_KEY, token)
        self.storage.set(USER_KEY, user.model_dump_json(by_alias=True))

    def update_user(self, user: User, token: Optional[str] = None) -> None:
        """Replace the stored profile, and the token when the backend issued a new one"""
        self.user = user
        self.storage.set(USER_KEY, user.model_dump_json(by_alias=True))
        if token:
            self.token = token
            self.storage.set(TOKEN_KEY, token)

    def clear(self) -> None:
        self._reset()

    def subscribe(self, listener: SessionListener) -> None:
        """Register a callback run with a message when the session expires"""
        self._listeners.append(listener)

    def expire(self, message: str) -> None:
        """Drop credentials after the backend rejected them and notify listeners"""
        was_signed_in = self.is_authenticated
        self._reset()
        if was_signed_in:
            logger.info("Session expired; credentials cleared")
        for listener in list(self._listeners):
            listener(message)

    def _reset(self) -> None:
        self.token = None
        self.user = None
        self.storage.delete(TOKEN_KEY)
        self.storage.delete(USER_KEY)
