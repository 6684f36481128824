"""Async client for the Carbon Voice REST API.

Authenticates with the caller's OAuth bearer token (HTTP transport) or the
configured API key (stdio transport). Every failure is normalised into a
CarbonVoiceApiError carrying a stable error code.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from .utils import obfuscate_auth_headers

logger = logging.getLogger(__name__)

SIMPLIFIED_PREFIX = "/simplified"
DEFAULT_TIMEOUT = 30.0

# Paths excluded from request logging
NOT_LOGGED_PATHS = ("/health",)

_STATUS_CODES: dict[int, tuple[str, str]] = {
    400: ("BAD_REQUEST", "Invalid request parameters"),
    401: ("UNAUTHORIZED", "Authentication required"),
    403: ("FORBIDDEN", "Access denied"),
    404: ("NOT_FOUND", "Resource not found"),
    429: ("RATE_LIMITED", "Too many requests"),
    500: ("SERVER_ERROR", "Internal server error"),
    502: ("SERVER_ERROR", "Internal server error"),
    503: ("SERVER_ERROR", "Internal server error"),
    504: ("SERVER_ERROR", "Internal server error"),
}

# Codes whose message is taken from the response body when it has one
_BODY_MESSAGE_CODES = ("BAD_REQUEST", "NOT_FOUND", "UNKNOWN_ERROR")


class CarbonVoiceApiError(Exception):
    """Normalised Carbon Voice API failure.

    Attributes:
        status_code: HTTP status, 0 when no response was received
        code: Stable error code (BAD_REQUEST, NETWORK_ERROR, ...)
        message: Human readable description
        details: Extra context such as retry-after
    """

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "error": {"code": self.code, "message": self.message, "details": self.details},
        }


class UnauthorizedError(CarbonVoiceApiError):
    """No credential available for the request."""

    def __init__(self, message: str = "No access token or API key available") -> None:
        super().__init__(401, "UNAUTHORIZED", message)


def error_from_response(response: httpx.Response) -> CarbonVoiceApiError:
    """Map a non-2xx response to CarbonVoiceApiError."""
    status = response.status_code
    code, message = _STATUS_CODES.get(status, ("UNKNOWN_ERROR", "An unexpected error occurred"))

    if code in _BODY_MESSAGE_CODES:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            message = str(body["message"])

    details: dict[str, Any] = {"url": str(response.request.url), "method": response.request.method}
    if code == "RATE_LIMITED":
        details = {"retryAfter": response.headers.get("retry-after")}
    return CarbonVoiceApiError(status, code, message, details)


class CarbonVoiceClient:
    """Thin async wrapper over the Carbon Voice REST API.

    Args:
        base_url: API root, e.g. https://api.carbonvoice.app
        access_token: OAuth bearer token of the calling user
        api_key: Service API key, used when no access token is given
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> CarbonVoiceClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if self._access_token:
            return {"Authorization": f"Bearer {self._access_token}"}
        if self._api_key:
            return {"x-api-key": self._api_key}
        raise UnauthorizedError()

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            UnauthorizedError: If no credential is configured
            CarbonVoiceApiError: On any HTTP or network failure
        """
        headers = self._auth_headers()
        params = {k: v for k, v in (params or {}).items() if v is not None} or None
        log_request = path not in NOT_LOGGED_PATHS

        if log_request:
            logger.debug(
                f"Making API request to: {method} {path} "
                f"params={params} headers={obfuscate_auth_headers(headers)}"
            )

        started = time.monotonic()
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            if log_request:
                logger.error(f"API request failed: {method} {path}: {e}")
            raise CarbonVoiceApiError(
                0, "NETWORK_ERROR", "No response received from server", {"reason": str(e)}
            ) from e

        duration_ms = int((time.monotonic() - started) * 1000)
        if response.is_error:
            error = error_from_response(response)
            if log_request:
                logger.error(
                    f"API request failed: {method} {path} -> {response.status_code} "
                    f"{error.code} ({duration_ms}ms)"
                )
            raise error

        if log_request:
            logger.debug(
                f"API response received from: {method} {path} "
                f"-> {response.status_code} ({duration_ms}ms)"
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise CarbonVoiceApiError(
                response.status_code, "UNKNOWN_ERROR", "Response body is not valid JSON"
            ) from e

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def get_whoami(self) -> Any:
        return await self.request("GET", "/whoami")

    async def list_conversations(self, workspace_id: str | None = None) -> Any:
        return await self.request(
            "GET", f"{SIMPLIFIED_PREFIX}/conversations", params={"workspace_id": workspace_id}
        )

    async def get_conversation(self, conversation_id: str) -> Any:
        return await self.request("GET", f"{SIMPLIFIED_PREFIX}/conversations/{conversation_id}")

    async def list_conversation_messages(
        self,
        conversation_id: str,
        limit: int | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> Any:
        return await self.request(
            "GET",
            f"{SIMPLIFIED_PREFIX}/conversations/{conversation_id}/messages",
            params={"limit": limit, "start_date": start_date, "end_date": end_date},
        )

    async def get_message(self, message_id: str) -> Any:
        return await self.request("GET", f"{SIMPLIFIED_PREFIX}/messages/{message_id}")

    async def get_api_status(self) -> dict[str, Any]:
        """Check the API health endpoint. Never raises."""
        try:
            response = await self._client.get("/health")
            data = response.json() if response.content else {}
            healthy = response.status_code == 200 and data.get("status") == "ok"
            return {"isHealthy": healthy, "apiUrl": self.base_url}
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"Error getting backend status: {e}")
            return {"isHealthy": False, "apiUrl": self.base_url, "error": str(e)}
