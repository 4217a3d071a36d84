"""
SillyTavern API client.

Async HTTP access to the host endpoints RoleOut exports from: character and
chat export, user avatar files, and the character/chat/settings listings.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field, ValidationError

from roleout.services.export.models import FetchedResource, FetchKind, FetchSpec

logger = logging.getLogger(__name__)

USER_AGENT = "RoleOut/0.1.0"


class HostAPIError(Exception):
    """Base exception for SillyTavern API errors."""
    pass


class HostConnectionError(HostAPIError):
    """SillyTavern server is not reachable."""
    pass


class HostStatusError(HostAPIError):
    """Server answered with a non-success status."""

    def __init__(self, status_code: int, reason: str, endpoint: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.endpoint = endpoint
        super().__init__(f"HTTP {status_code}: {reason or 'Unknown error'}")


class HostResponseError(HostAPIError):
    """Response body did not have the expected shape."""
    pass


class TextExportResponse(BaseModel):
    """JSON body of a text export (e.g. chat JSONL)."""
    result: str = Field(min_length=1)


class ErrorResponse(BaseModel):
    """Any JSON body that is not a usable export."""
    message: str


ExportResponse = Union[TextExportResponse, ErrorResponse]


def parse_export_response(payload: Any) -> ExportResponse:
    """Classify a text export body as a result or an error."""
    try:
        return TextExportResponse.model_validate(payload)
    except ValidationError:
        pass

    if isinstance(payload, dict) and payload.get("error"):
        return ErrorResponse(message=str(payload.get("message") or payload["error"]))
    return ErrorResponse(message="Export returned no data")


class SillyTavernClient:
    """
    Client for the SillyTavern REST API.

    Handles:
    - CSRF token negotiation (cookies are kept by the underlying client)
    - Character and chat export
    - User avatar download
    - Character, recent chat and settings listings
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        timeout: float = 30.0,
        csrf: bool = True,
        basic_auth: Optional[tuple] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize SillyTavern client.

        Args:
            base_url: SillyTavern server URL
            timeout: HTTP request timeout (seconds)
            csrf: Fetch an X-CSRF-Token before the first API call
            basic_auth: Optional (username, password) for servers behind basic auth
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip('/')
        self.csrf = csrf
        self._csrf_token: Optional[str] = None
        # Concurrent jobs share one token request
        self._csrf_lock = asyncio.Lock()
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            auth=basic_auth,
            headers={"User-Agent": USER_AGENT},
            transport=transport
        )

        logger.info(f"SillyTavern client initialized: {self.base_url}")

    @classmethod
    def from_config(cls, host_config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "SillyTavernClient":
        return cls(
            base_url=host_config.base_url,
            timeout=host_config.timeout_seconds,
            csrf=host_config.csrf_enabled,
            basic_auth=host_config.basic_auth,
            transport=transport
        )

    async def fetch_csrf_token(self) -> str:
        """Request a CSRF token and attach it to subsequent requests."""
        response = await self._send("GET", "/csrf-token", with_csrf=False)
        try:
            token = response.json()["token"]
        except (ValueError, KeyError, TypeError):
            raise HostResponseError("CSRF token response missing 'token'")

        self._csrf_token = token
        self.client.headers["X-CSRF-Token"] = token
        logger.debug("CSRF token acquired")
        return token

    async def _send(
        self,
        method: str,
        endpoint: str,
        json_body: Optional[Dict[str, Any]] = None,
        with_csrf: bool = True
    ) -> httpx.Response:
        """
        Send a request and map transport and status failures to HostAPIError.

        Raises:
            HostConnectionError: Server not reachable
            HostStatusError: Non-2xx response
            HostAPIError: Any other transport failure
        """
        if with_csrf and self.csrf and self._csrf_token is None:
            async with self._csrf_lock:
                if self._csrf_token is None:
                    await self.fetch_csrf_token()

        try:
            logger.debug(f"{method} {endpoint}")
            response = await self.client.request(method, endpoint, json=json_body)
        except httpx.ConnectError as e:
            logger.error(f"Cannot connect to SillyTavern: {e}")
            raise HostConnectionError(f"SillyTavern server not reachable at {self.base_url}")
        except httpx.TimeoutException as e:
            raise HostConnectionError(f"Request to {endpoint} timed out: {e}")
        except httpx.HTTPError as e:
            raise HostAPIError(f"Request to {endpoint} failed: {e}")

        if response.is_error:
            raise HostStatusError(response.status_code, response.reason_phrase, endpoint)
        return response

    async def _post_json(self, endpoint: str, body: Dict[str, Any]) -> Any:
        response = await self._send("POST", endpoint, json_body=body)
        try:
            return response.json()
        except ValueError:
            raise HostResponseError(f"{endpoint} returned invalid JSON")

    async def export_character(self, avatar_url: str, format: str = "png") -> bytes:
        """Export a character card (PNG with embedded card, or JSON)."""
        response = await self._send(
            "POST",
            "/api/characters/export",
            json_body={"format": format, "avatar_url": avatar_url}
        )
        return response.content

    async def export_chat(
        self,
        file_name: str,
        avatar_url: Optional[str],
        format: str = "jsonl",
        export_filename: Optional[str] = None
    ) -> str:
        """
        Export a chat file as text.

        Raises:
            HostResponseError: If the response has no 'result'
        """
        payload = await self._post_json("/api/chats/export", {
            "file": file_name,
            "avatar_url": avatar_url,
            "format": format,
            "exportfilename": export_filename or f"{file_name}.{format}",
        })

        parsed = parse_export_response(payload)
        if isinstance(parsed, ErrorResponse):
            raise HostResponseError(parsed.message)
        return parsed.result

    async def fetch_user_avatar(self, avatar: str) -> bytes:
        """Download a persona avatar image."""
        response = await self._send("GET", f"/User%20Avatars/{quote(avatar, safe='')}")
        return response.content

    async def list_characters(self) -> List[Dict[str, Any]]:
        payload = await self._post_json("/api/characters/all", {})
        if not isinstance(payload, list):
            logger.warning("Unexpected characters response format")
            return []
        return payload

    async def list_recent_chats(self, max_items: int = 9999) -> List[Dict[str, Any]]:
        payload = await self._post_json("/api/chats/recent", {"max": max_items})
        if not isinstance(payload, list):
            logger.warning("Unexpected chats response format")
            return []
        return payload

    async def get_settings(self) -> Dict[str, Any]:
        """Return the host's settings object (its 'settings' field is a JSON string)."""
        payload = await self._post_json("/api/settings/get", {})
        settings = payload.get("settings") if isinstance(payload, dict) else None

        if isinstance(settings, str):
            try:
                settings = json.loads(settings)
            except json.JSONDecodeError:
                raise HostResponseError("Settings response is not valid JSON")

        if not isinstance(settings, dict):
            raise HostResponseError("Settings response missing 'settings'")
        return settings

    async def fetch(self, spec: FetchSpec) -> FetchedResource:
        """Resolve an export fetch spec; used by the batch orchestrator."""
        if spec.kind == FetchKind.CHARACTER_EXPORT:
            data = await self.export_character(
                spec.params.get("avatar_url") or spec.resource_id,
                spec.params.get("format", "png")
            )
            return FetchedResource(spec=spec, data=data)

        if spec.kind == FetchKind.CHAT_EXPORT:
            text = await self.export_chat(
                spec.params.get("file") or spec.resource_id,
                spec.params.get("avatar_url"),
                spec.params.get("format", "jsonl"),
                spec.params.get("exportfilename")
            )
            return FetchedResource(spec=spec, text=text)

        if spec.kind == FetchKind.RESOURCE_BYTES:
            data = await self.fetch_user_avatar(spec.resource_id)
            return FetchedResource(spec=spec, data=data)

        raise ValueError(f"Unsupported fetch kind: {spec.kind}")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
        logger.debug("SillyTavern client closed")

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
