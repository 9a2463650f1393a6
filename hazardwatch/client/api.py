"""HTTP client for the messaging endpoints, used by conversation sessions."""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

import httpx

from hazardwatch.conversations.schemas import GetConversationsResponseModel
from hazardwatch.core.errors import (
    ERRORS_BY_STATUS,
    InvalidArgument,
    MessagingError,
    Unavailable,
)
from hazardwatch.messages.schemas import GetMessagesResponseModel, SendMessageResponseModel
from hazardwatch.users.schemas import UserSearchResponseModel


logger = logging.getLogger(__name__)


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str):
        return detail
    if detail is not None:
        return str(detail)
    return response.reason_phrase


def raise_for_status(response: httpx.Response):
    """Map an error response back onto the messaging error taxonomy."""
    if response.is_success:
        return

    status = response.status_code
    detail = _detail(response)

    if status in ERRORS_BY_STATUS:
        raise ERRORS_BY_STATUS[status](detail)
    if status == 422:
        raise InvalidArgument(detail)
    if status >= 500:
        raise Unavailable(detail)

    error = MessagingError(detail)
    error.status_code = status
    raise error


class MessagesApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        if http_client is None and base_url is None:
            raise ValueError("Either base_url or http_client is required")

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {}
        if access_token:
            self._headers["Authorization"] = f"Bearer {access_token}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as error:
            logger.warning(f"api_unreachable method={method} path={path} error={error!r}")
            raise Unavailable(f"Could not reach messaging API: {error}")

        raise_for_status(response)
        return response

    async def send_message(
        self,
        recipient_id: int,
        content: str,
        message_type: str = "text",
        client_token: Optional[UUID] = None,
    ) -> SendMessageResponseModel:
        body = {
            "recipientId": recipient_id,
            "content": content,
            "messageType": message_type,
        }
        if client_token is not None:
            body["clientToken"] = str(client_token)

        response = await self._request("POST", "/messages", json=body)
        return SendMessageResponseModel.model_validate(response.json())

    async def list_messages(
        self,
        conversation_id: int,
        limit: int = 50,
        offset: int = 0,
        after_id: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> GetMessagesResponseModel:
        params = {"conversationId": conversation_id, "limit": limit, "offset": offset}
        if after_id is not None:
            params["afterId"] = after_id
        if since is not None:
            params["since"] = since.isoformat()

        response = await self._request("GET", "/messages", params=params)
        return GetMessagesResponseModel.model_validate(response.json())

    async def mark_read(self, conversation_id: int) -> int:
        response = await self._request(
            "POST", "/messages/read", json={"conversationId": conversation_id}
        )
        return response.json()["updated"]

    async def list_conversations(self) -> GetConversationsResponseModel:
        response = await self._request("GET", "/conversations")
        return GetConversationsResponseModel.model_validate(response.json())

    async def search_users(self, query: str) -> UserSearchResponseModel:
        response = await self._request("GET", "/users/search", params={"q": query})
        return UserSearchResponseModel.model_validate(response.json())

    async def aclose(self):
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
