"""
Admin user management calls against the backend.
"""
from typing import List, Optional

from storefront.api_client import ApiClient
from storefront.models import User


class UserService:
    def __init__(self, api: ApiClient):
        self.api = api

    def list_users(self) -> List[User]:
        return [User.model_validate(u) for u in self.api.get("/users") or []]

    def get_user(self, user_id: str) -> User:
        return User.model_validate(self.api.get(f"/users/{user_id}"))

    def delete_user(self, user_id: str) -> None:
        self.api.delete(f"/users/{user_id}")

    def promote_to_admin(self, user_id: str) -> Optional[User]:
        """Promote a user; None when the backend answers without the user record"""
        data = self.api.put("/users/promote-to-admin", {"id": user_id})
        if isinstance(data, dict) and data.get("_id"):
            return User.model_validate(data)
        return None
