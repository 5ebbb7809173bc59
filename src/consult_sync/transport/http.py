"""JSON-over-HTTP transport backed by httpx."""

from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError as PayloadError

from ..config import SyncSettings
from ..domain.errors import TransportError
from ..domain.models import AuthorRole, Message
from .base import TransportPort

logger = structlog.get_logger()

NETWORK_ERROR_DETAIL = "Unable to reach the server"
TIMEOUT_DETAIL = "The server took too long to respond"
FORBIDDEN_DETAIL = "Access denied. The consultation must be validated to exchange messages"
NOT_FOUND_DETAIL = "Conversation not found"

# Accepted payload spellings, first match wins
_FIELD_ALIASES = {
    "author_id": ("author_id", "sender_id", "sender"),
    "author_role": ("author_role", "sender_role"),
    "author_name": ("author_name", "sender_name"),
    "created_at": ("created_at", "date_envoi", "timestamp"),
    "correlation_id": ("correlation_id", "client_id"),
}


def message_from_payload(payload: Dict[str, Any], conversation_id: str) -> Message:
    """Build a Message from a server JSON object."""
    data: Dict[str, Any] = {
        "id": payload.get("id"),
        "conversation_id": payload.get("conversation_id") or conversation_id,
        "content": payload.get("content", ""),
    }
    for field, keys in _FIELD_ALIASES.items():
        for key in keys:
            if payload.get(key) is not None:
                data[field] = payload[key]
                break
    data.setdefault("author_id", "unknown")
    return Message.model_validate(data)


def extract_error_detail(response: httpx.Response) -> Optional[str]:
    """Pull the most specific human-readable error out of a response body."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or None
    if isinstance(body, str):
        return body or None
    if isinstance(body, dict):
        for key in ("content", "fiche"):
            value = body.get(key)
            if isinstance(value, list) and value:
                return str(value[0]) if key == "content" else f"Consultation error: {value[0]}"
        if body.get("detail"):
            return str(body["detail"])
    return None


class HttpTransport(TransportPort):
    """Talks to ``{api_url}/chat/conversations/{id}/messages``."""

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        sender_role: AuthorRole = AuthorRole.PATIENT,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.sender_role = sender_role
        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(base_url=api_url.rstrip("/"), timeout=timeout)
        client.headers.update(headers)
        self._client = client
        logger.info("http_transport_init", api_url=api_url, using_token=bool(token))

    @classmethod
    def from_settings(
        cls, settings: SyncSettings, sender_role: AuthorRole = AuthorRole.PATIENT
    ) -> "HttpTransport":
        return cls(
            settings.api_url,
            token=settings.api_token,
            sender_role=sender_role,
            timeout=settings.request_timeout,
        )

    @staticmethod
    def _path(conversation_id: str) -> str:
        return f"/chat/conversations/{conversation_id}/messages"

    async def _request(self, method: str, conversation_id: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, self._path(conversation_id), **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("http_timeout", conversation_id=conversation_id, error=str(e))
            raise TransportError("Request timed out", detail=TIMEOUT_DETAIL) from e
        except httpx.RequestError as e:
            logger.warning("http_network_error", conversation_id=conversation_id, error=str(e))
            raise TransportError("Network error", detail=NETWORK_ERROR_DETAIL) from e

        if response.status_code >= 400:
            if response.status_code == 403:
                detail = FORBIDDEN_DETAIL
            elif response.status_code == 404:
                detail = NOT_FOUND_DETAIL
            else:
                detail = extract_error_detail(response)
            logger.warning(
                "http_error_response",
                conversation_id=conversation_id,
                status_code=response.status_code,
                detail=detail,
            )
            raise TransportError(
                f"HTTP {response.status_code}",
                detail=detail,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise TransportError("Malformed response body", status_code=response.status_code) from e

    async def fetch_messages(self, conversation_id: str) -> List[Message]:
        body = await self._request("GET", conversation_id)
        if isinstance(body, dict):
            body = body.get("results", body.get("messages"))
        if not isinstance(body, list):
            logger.warning("unexpected_messages_payload", conversation_id=conversation_id)
            return []
        messages = []
        for item in body:
            try:
                messages.append(message_from_payload(item, conversation_id))
            except (PayloadError, AttributeError) as e:
                logger.warning("message_payload_skipped", conversation_id=conversation_id, error=str(e))
        return messages

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> Message:
        payload: Dict[str, Any] = {"content": content, "sender_role": self.sender_role.value}
        if correlation_id is not None:
            payload["client_id"] = correlation_id
        body = await self._request("POST", conversation_id, json=payload)
        if not isinstance(body, dict):
            raise TransportError("Malformed response body")
        body.setdefault("client_id", correlation_id)
        try:
            return message_from_payload(body, conversation_id)
        except PayloadError as e:
            raise TransportError("Malformed message in response", detail=None) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
