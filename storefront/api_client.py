"""
HTTP transport to the storefront backend.

Attaches the bearer token, applies a fixed timeout and turns every failure
into an ApiError carrying a friendly message and an optional per-field
error map.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from storefront.config import Config
from storefront.exceptions import ApiError, NetworkError, SessionExpiredError
from storefront.session import SessionStore

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
REGISTER_PATH = "/auth/register"
UNAUTHENTICATED_PATHS = (LOGIN_PATH, REGISTER_PATH)

BAD_CREDENTIALS = "Email or password is incorrect."
LOGIN_REQUIRED = "Please log in to continue."
FORBIDDEN = "You don't have permission to perform this action."
BAD_INPUT = "Please check your input and try again."
SERVER_ERROR = "Something went wrong on our side. Please try again."
UNEXPECTED = "Request failed. Please try again."


def _payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def normalize_field_errors(raw: Any, fallback: Optional[str] = None) -> Dict[str, str]:
    """
    Field error map from the backend's ``errors`` value.

    Accepts a list of ``{path|param|field, msg|message}`` entries or an
    existing ``{field: message}`` mapping.
    """
    if isinstance(raw, list):
        mapped: Dict[str, str] = {}
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            key = entry.get("path") or entry.get("param") or entry.get("field") or "form"
            mapped[str(key)] = (
                entry.get("msg") or entry.get("message") or fallback or "Validation error"
            )
        return mapped
    if isinstance(raw, dict):
        return {str(key): str(value) for key, value in raw.items()}
    return {}


def normalize_error(response: httpx.Response, path: str) -> ApiError:
    """Map an error response to the single client-facing error contract"""
    status = response.status_code
    data = _payload(response)
    server_message = data.get("message") or data.get("error")
    is_login = path.startswith(LOGIN_PATH)

    if status == 401:
        message = BAD_CREDENTIALS if is_login else LOGIN_REQUIRED
    elif status == 403:
        message = FORBIDDEN
    elif status == 400:
        message = server_message or BAD_INPUT
    elif status >= 500:
        message = BAD_CREDENTIALS if is_login else SERVER_ERROR
    else:
        message = server_message or UNEXPECTED

    field_errors = normalize_field_errors(data.get("errors"), server_message)

    if is_login and not field_errors:
        hint = (server_message or "").lower()
        if "email" in hint or "user" in hint or "not found" in hint:
            field_errors = {"email": "Incorrect email"}
        else:
            field_errors = {"password": "Incorrect password"}

    return ApiError(message, status_code=status, field_errors=field_errors)


class ApiClient:
    """Backend client bound to one session's credentials"""

    def __init__(
        self,
        session: SessionStore,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.session = session
        self.http = httpx.Client(
            base_url=base_url or Config.API_BASE_URL,
            timeout=timeout if timeout is not None else Config.API_TIMEOUT_SECONDS,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Send a request and return the decoded JSON body (None when empty).

        Raises:
            SessionExpiredError: the backend rejected the session token
            NetworkError: timeout or transport failure
            ApiError: any other non-2xx response
        """
        headers = {}
        if self.session.token and not path.startswith(UNAUTHENTICATED_PATHS):
            headers["Authorization"] = f"Bearer {self.session.token}"

        try:
            response = self.http.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout: {method} {path}: {e}")
            raise NetworkError()
        except httpx.TransportError as e:
            logger.warning(f"Transport failure: {method} {path}: {e}")
            raise NetworkError()

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                raise ApiError(SERVER_ERROR, status_code=response.status_code)

        error = normalize_error(response, path)
        if response.status_code >= 500:
            logger.error(f"Server error: {method} {path} {response.status_code}")

        if response.status_code == 401 and not path.startswith(LOGIN_PATH):
            self.session.expire(error.message)
            raise SessionExpiredError(error.message)

        raise error

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def put(self, path: str, json: Any = None) -> Any:
        return self.request("PUT", path, json=json)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    def close(self) -> None:
        self.http.close()
