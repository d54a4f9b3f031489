# opendrive_fs/opendrive_client/client.py
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests import Response, Session

from opendrive_fs.config.api_config import DEFAULT_ENDPOINT
from opendrive_fs.errors import ApiError, AuthError, ProtocolError, TransientNetworkError

LOGGER = logging.getLogger(__name__)

USER_AGENT = "opendrive-fs/0.1"
DEFAULT_TIMEOUT = 60


@dataclass(frozen=True)
class UserSessionInfo:
    """The session handed out by /session/login.json. Immutable once issued."""
    session_id: str
    user_name: str = ""
    user_id: str = ""

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "UserSessionInfo":
        session_id = data.get("SessionID") if isinstance(data, dict) else None
        if not session_id:
            raise ProtocolError("login response did not contain a SessionID")
        return cls(
            session_id=str(session_id),
            user_name=str(data.get("UserName", "")),
            user_id=str(data.get("UserID", "")),
        )


def _error_message(response: Response) -> str:
    # OpenDrive wraps errors as {"error": {"code": .., "message": ..}}
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.reason or "Unknown OpenDrive API error"


class OpenDriveClient:
    """
    Authenticated-request executor for the OpenDrive REST API.
    Wraps a requests.Session; knows nothing about pacing or retries.
    """

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, session: Optional[Session] = None,
                 timeout: float = DEFAULT_TIMEOUT):
        if not endpoint:
            raise ValueError("OpenDrive endpoint URL is required.")
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def _raise_if_error(self, response: Response) -> None:
        if response.ok:
            return
        message = _error_message(response)
        LOGGER.debug(f"OpenDrive API Error {response.status_code}: {message}")
        if response.status_code == 401:
            raise AuthError(response.status_code, message)
        raise ApiError(response.status_code, message)

    def call(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
             data: Optional[Dict[str, Any]] = None, files: Optional[Dict[str, Any]] = None,
             headers: Optional[Dict[str, str]] = None, stream: bool = False) -> Response:
        """
        Performs a raw request. Returns the response for 2xx statuses and
        raises ApiError / TransientNetworkError otherwise.
        """
        url = f"{self.endpoint}{path}"
        LOGGER.debug(f"{method} {path}")
        try:
            response = self._session.request(
                method, url, params=params, data=data, files=files,
                headers=headers, stream=stream, timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"{method} {path}: {e}") from e
        try:
            self._raise_if_error(response)
        except ApiError:
            response.close()
            raise
        return response

    def call_json(self, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                  params: Optional[Dict[str, Any]] = None) -> Any:
        """Sends body as JSON and decodes the JSON response (None if empty)."""
        url = f"{self.endpoint}{path}"
        LOGGER.debug(f"{method} {path} (json)")
        try:
            response = self._session.request(
                method, url, params=params, json=body,
                headers={"Accept": "application/json"}, timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(f"{method} {path}: {e}") from e
        self._raise_if_error(response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            LOGGER.error(f"Non-JSON response for {path}: {response.text[:200]}")
            raise ProtocolError(f"{method} {path}: response is not JSON") from e

    def login(self, username: str, password: str) -> UserSessionInfo:
        """Single login attempt; callers run it through the pacer."""
        data = self.call_json("POST", "/session/login.json",
                              {"username": username, "passwd": password})
        return UserSessionInfo.from_json(data)

    def close(self):
        self._session.close()
