"""
gateway/rest.py — REST API Client

Thin async httpx client for the request/response half of the chat API:

  GET  /            → InstanceInfo (where the gateway lives)
  GET  /users/{id}  → User, used when a presence update names an unknown user
  POST /messages    → post a chat message

Success and error bodies share the same endpoints; an error body looks like
{"type": "NOT_FOUND", "status": 404, "message": "..."} with optional extra
fields either inline or under "data".
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from parley.exceptions import RestError, UserLookupError
from parley.gateway.protocol import User
from parley.gateway.state import ChatState
from parley.observability.logger import get_logger

log = get_logger(__name__)

_DEFAULT_TIMEOUT = 10.0


class InstanceInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    instance_name: str
    description: Optional[str] = None
    gateway_url: str = Field(alias="pandemonium_url")
    rest_url: Optional[str] = Field(default=None, alias="oprish_url")


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("type")
        if message:
            return str(message)
    return f"unexpected response: {payload!r}"


def _retry_after_ms(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    for source in (payload, payload.get("data")):
        if isinstance(source, dict) and isinstance(source.get("retry_after"), int):
            return source["retry_after"]
    return None


class RestClient:
    """
    Async client for the REST API. Async context manager — closes the
    underlying httpx client on exit if it created it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ):
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RestError(f"{method} {path} failed: {e}") from e
        try:
            payload = resp.json()
        except ValueError as e:
            raise RestError(
                f"{method} {path} returned a non-JSON body", status=resp.status_code
            ) from e
        return resp.status_code, payload

    # ─────────────────────────────────────────────────────────────────────────
    # Endpoints
    # ─────────────────────────────────────────────────────────────────────────

    async def get_instance_info(self) -> InstanceInfo:
        status, payload = await self._request("GET", "/")
        if status >= 400:
            raise RestError(_error_message(payload), status=status)
        try:
            return InstanceInfo.model_validate(payload)
        except ValidationError as e:
            raise RestError(f"malformed instance info: {e}", status=status) from e

    async def get_user(self, user_id: int) -> User:
        """
        Fetch one user by id.

        Raises:
            UserLookupError: transport failure, error payload, or a body that
                             is not a user.
        """
        try:
            status, payload = await self._request("GET", f"/users/{user_id}")
        except RestError as e:
            raise UserLookupError(user_id, str(e), status=e.status) from e

        if status >= 400:
            raise UserLookupError(user_id, _error_message(payload), status=status)
        try:
            return User.model_validate(payload)
        except ValidationError:
            raise UserLookupError(user_id, _error_message(payload), status=status)

    async def send_message(self, author: str, content: str) -> None:
        """
        Post a chat message. The message comes back over the gateway as a
        MESSAGE_CREATE event, so nothing is returned here.
        """
        status, payload = await self._request(
            "POST", "/messages", json={"author": author, "content": content}
        )
        if status >= 400:
            raise RestError(
                _error_message(payload),
                status=status,
                retry_after_ms=_retry_after_ms(payload),
            )


async def submit_message(rest: RestClient, state: ChatState, content: str) -> bool:
    """
    Post `content` as the local user, reporting any failure as an error
    notice in the chat log. Returns True if the server accepted it.
    """
    if not content:
        return False
    try:
        await rest.send_message(state.name, content)
    except RestError as e:
        if e.status == 429 and e.retry_after_ms is not None:
            state.notice(
                f"You've been rate limited, try again in {e.retry_after_ms // 1000}s",
                error=True,
            )
        else:
            state.notice(f"Couldn't send message: {e}", error=True)
        log.warning("rest.send_message.failed", error=str(e), status=e.status)
        return False
    return True
