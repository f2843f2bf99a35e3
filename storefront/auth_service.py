"""
Authentication calls against the backend.
"""
import logging
from typing import Tuple

from storefront.api_client import ApiClient, LOGIN_PATH, REGISTER_PATH
from storefront.exceptions import ApiError
from storefront.models import AuthResponse, ProfileUpdate, Registration, User

logger = logging.getLogger(__name__)


def _credentials(data, action: str) -> Tuple[str, User]:
    response = AuthResponse.model_validate(data or {})
    if not response.token or response.user is None or not response.user.id:
        raise ApiError(f"Invalid {action} response")
    return response.token, response.user


class AuthService:
    """Login, registration and profile calls"""

    def __init__(self, api: ApiClient):
        self.api = api

    def login(self, email: str, password: str) -> Tuple[str, User]:
        data = self.api.post(LOGIN_PATH, {"email": email, "password": password})
        return _credentials(data, "login")

    def register(self, registration: Registration) -> Tuple[str, User]:
        data = self.api.post(REGISTER_PATH, registration.to_wire())
        return _credentials(data, "registration")

    def get_profile(self) -> User:
        return User.model_validate(self.api.get("/auth/profile"))

    def update_profile(self, update: ProfileUpdate) -> Tuple[User, str]:
        """
        Update the signed-in user's profile.

        The backend re-issues a token with the updated profile; the
        returned token is empty when it did not.
        """
        data = self.api.put("/users/profile", update.to_wire()) or {}
        user = User.model_validate(data)
        return user, data.get("token") or ""

    def logout(self) -> None:
        """Best-effort server-side logout; local teardown proceeds regardless"""
        try:
            self.api.post("/auth/logout")
        except ApiError as e:
            logger.info(f"Logout call failed, proceeding with local logout: {e.message}")
