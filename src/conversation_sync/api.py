"""REST data-access layer for the chat module.

ChatBackend is the contract the synchronization core consumes; ChatApiClient
implements it against the chat-module HTTP API with httpx.
"""

from typing import Any, Protocol

import httpx

from conversation_sync.config import ApiConfig
from conversation_sync.errors import ApiError, MalformedEvent, NetworkError, NotFoundError
from conversation_sync.logging import get_logger
from conversation_sync.models import (
    Conversation,
    GroupDescriptor,
    Message,
    Peer,
    SendMessageRequest,
)

logger = get_logger("api")


class ChatBackend(Protocol):
    """Operations the synchronization core needs from the server."""

    async def fetch_conversations(self) -> list[Conversation]: ...

    async def fetch_group_by_id(self, group_id: str) -> GroupDescriptor | None: ...

    async def fetch_user_by_id(self, user_id: str) -> Peer | None: ...

    async def mark_conversation_read(self, conversation_id: str) -> None: ...

    async def send_message(self, request: SendMessageRequest) -> Message: ...


class ChatApiClient:
    """HTTP client for the chat-module REST API.

    Responses are expected in the {"success": bool, "data": ..., "error":
    {"message": str}} envelope. Transport failures raise NetworkError, error
    statuses and unsuccessful envelopes raise ApiError.
    """

    def __init__(self, config: ApiConfig, client: httpx.AsyncClient | None = None) -> None:
        """Initialize the client.

        Args:
            config: API connection settings
            client: Preconfigured httpx client (tests inject a MockTransport one)
        """
        self._config = config
        headers = {"Accept": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers=headers,
            timeout=config.timeout_seconds,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise NetworkError("NETWORK_ERROR", str(e), path=path) from e

        if resp.status_code == 404:
            raise NotFoundError("NOT_FOUND", f"{method} {path} not found", http_status=404)

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400:
            raise ApiError("API_ERROR", _error_message(body) or resp.text, http_status=resp.status_code)
        if not isinstance(body, dict) or not body.get("success"):
            raise ApiError(
                "API_ERROR",
                _error_message(body) or f"{method} {path} failed",
                http_status=resp.status_code,
            )
        return body.get("data")

    async def fetch_conversations(self) -> list[Conversation]:
        data = await self._request("GET", "/chat-module/conversations")
        conversations = []
        for item in _items(data, "conversations"):
            try:
                conversations.append(Conversation.from_api(item))
            except MalformedEvent as e:
                logger.warning("Skipping malformed conversation: error=%s", e.message)
        return conversations

    async def fetch_group_by_id(self, group_id: str) -> GroupDescriptor | None:
        """Look up one group among the groups the user belongs to."""
        data = await self._request("GET", "/chat-module/group/my")
        for item in _items(data, "groups"):
            if isinstance(item, dict) and str(item.get("id")) == group_id:
                return GroupDescriptor.from_api(item)
        return None

    async def fetch_user_by_id(self, user_id: str) -> Peer | None:
        try:
            data = await self._request("GET", f"/users/{user_id}")
        except NotFoundError:
            return None
        return Peer.from_api(data) if data else None

    async def mark_conversation_read(self, conversation_id: str) -> None:
        await self._request("POST", f"/chat-module/conversations/{conversation_id}/read")

    async def send_message(self, request: SendMessageRequest) -> Message:
        data = await self._request("POST", "/chat-module/message", data=request.to_form())
        return Message.from_api(data)

    async def aclose(self) -> None:
        await self._client.aclose()


def _items(data: Any, what: str) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedEvent("BAD_PAYLOAD", f"{what} response is not a list")
    return data


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return None
