"""
ElevenLabs ConvAI API client.
Low-level access to conversation listings, conversation details and audio.

Requests are not retried here: every failure surfaces as ElevenLabsAPIError
so the caller's poison handler decides on backoff. Every request carries an
explicit timeout.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CONVERSATIONS_PATH = "/convai/conversations"
MAX_PAGE_SIZE = 100


class ElevenLabsAPIError(Exception):
    """Custom exception for ElevenLabs API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class ElevenLabsNetworkError(ElevenLabsAPIError):
    """Transport-level failure (connection refused, DNS, timeout)."""


@dataclass(slots=True)
class ConversationPage:
    conversations: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    cursor: str | None = None


@dataclass(slots=True)
class ConversationAudio:
    url: str | None = None
    content: bytes | None = None
    content_type: str | None = None


def _format_timestamp(value: datetime | str | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class ElevenLabsClient:
    """
    Async client for the ConvAI conversation endpoints.

    Authenticates with the `xi-api-key` header. Pass `transport` to route
    requests through an httpx mock transport in tests.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ELEVENLABS_API_KEY
        self.base_url = (base_url or settings.ELEVENLABS_BASE_URL).rstrip("/")
        self.connect_timeout = connect_timeout or settings.ELEVENLABS_CONNECT_TIMEOUT
        self.read_timeout = read_timeout or settings.ELEVENLABS_READ_TIMEOUT
        self._transport = transport
        self._client = self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for the ConvAI API."""
        timeout = httpx.Timeout(self.read_timeout, connect=self.connect_timeout)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            limits=limits,
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _get_headers(self) -> dict:
        if not self.api_key:
            raise ElevenLabsAPIError("ELEVENLABS_API_KEY not configured")
        return {"xi-api-key": self.api_key, "Accept": "application/json"}

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, headers=self._get_headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("ElevenLabs request timed out", operation=operation, error=str(e))
            raise ElevenLabsNetworkError(f"Network timeout during {operation}: {e}") from e
        except httpx.RequestError as e:
            logger.warning("ElevenLabs request failed", operation=operation, error=str(e))
            raise ElevenLabsNetworkError(f"Network error during {operation}: {e}") from e

        if not response.is_success:
            self._raise_api_error(response, operation)
        return response

    def _raise_api_error(self, response: httpx.Response, operation: str) -> None:
        """Raise ElevenLabsAPIError with the status code in the message (used for error categorization)."""
        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {"raw": response.text[:200]}

        detail = error_data.get("detail") if isinstance(error_data, dict) else None
        if isinstance(detail, dict):
            detail = detail.get("message") or detail.get("status")

        logger.error(
            f"ElevenLabs {operation} failed",
            status_code=response.status_code,
            detail=detail,
        )
        raise ElevenLabsAPIError(
            self._map_error(response.status_code, detail or response.reason_phrase),
            status_code=response.status_code,
            response_data=error_data if isinstance(error_data, dict) else {},
        )

    def _map_error(self, status_code: int, detail: str | None) -> str:
        error_mappings = {
            401: "401 Unauthorized: ElevenLabs API key rejected",
            403: "403 Forbidden: agent not accessible with this API key",
            404: "404 Not Found: conversation does not exist",
            429: "429 Too Many Requests: ElevenLabs rate limit exceeded",
        }
        if status_code in error_mappings:
            return error_mappings[status_code]
        return f"HTTP {status_code} from ElevenLabs: {detail or 'unknown error'}"

    async def list_conversations(
        self,
        agent_id: str,
        limit: int = 50,
        cursor: str | None = None,
        after: datetime | str | None = None,
        before: datetime | str | None = None,
    ) -> ConversationPage:
        """
        List conversations for an agent, newest first.

        Args:
            agent_id: Monitored agent id
            limit: Page size (capped at 100)
            cursor: Opaque pagination cursor from a previous page
            after: Only conversations after this timestamp
            before: Only conversations before this timestamp

        Raises:
            ElevenLabsAPIError: on HTTP or transport failure
        """
        params: dict[str, Any] = {"agent_id": agent_id, "limit": min(limit, MAX_PAGE_SIZE)}
        if cursor:
            params["cursor"] = cursor
        if after is not None:
            params["after"] = _format_timestamp(after)
        if before is not None:
            params["before"] = _format_timestamp(before)

        response = await self._request("GET", CONVERSATIONS_PATH, "list_conversations", params=params)
        data = response.json() or {}

        page = ConversationPage(
            conversations=data.get("conversations") or [],
            has_more=bool(data.get("has_more", False)),
            cursor=data.get("cursor") or data.get("next_cursor"),
        )
        logger.debug(
            "Conversations listed",
            agent_id=agent_id,
            count=len(page.conversations),
            has_more=page.has_more,
        )
        return page

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        """Full conversation payload with transcript, metadata and analysis."""
        response = await self._request(
            "GET", f"{CONVERSATIONS_PATH}/{conversation_id}", "get_conversation"
        )
        return response.json() or {}

    async def get_conversation_audio(self, conversation_id: str) -> ConversationAudio:
        """Audio for a conversation: either a JSON body with a URL or the raw bytes."""
        response = await self._request(
            "GET", f"{CONVERSATIONS_PATH}/{conversation_id}/audio", "get_conversation_audio"
        )
        content_type = response.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            data = response.json() or {}
            return ConversationAudio(url=data.get("audio_url") or data.get("url"))
        return ConversationAudio(content=response.content, content_type=content_type or None)

    async def health_check(self) -> dict[str, Any]:
        return {
            "healthy": bool(self.api_key),
            "service": "elevenlabs",
            "api_base_url": self.base_url,
            "connect_timeout": self.connect_timeout,
            "read_timeout": self.read_timeout,
        }
