"""
HTTP client for the field-safety REST API.
Handles authentication headers, response parsing and error translation.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.errors import ApiError, AuthExpiredError, NetworkError
from app.core.session import SessionProvider

logger = logging.getLogger(__name__)

AUTH_EXPIRED_CODES = {"INVALID_TOKEN", "TOKEN_EXPIRED"}


class ApiClient:
    """
    Unified API client.

    Every failure leaves this class as one of ``AuthExpiredError``,
    ``NetworkError`` or ``ApiError`` so callers can branch on ``kind``.
    """

    def __init__(
        self,
        session: SessionProvider,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the API client.

        Args:
            session: Authentication state provider (supplies the bearer token)
            base_url: API root, defaults to settings.API_BASE_URL
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used by tests)
        """
        self.session = session
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        require_auth: bool = True,
    ) -> Any:
        """
        Send a request and return the decoded body.

        Raises:
            AuthExpiredError: server rejected the token (session is cleared first)
            NetworkError: server could not be reached
            ApiError: any other non-2xx response
        """
        headers = {}
        if require_auth:
            token = self.session.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._get_client().request(
                method,
                endpoint,
                json=json,
                params=params or None,
                headers=headers,
            )
        except httpx.TransportError as e:
            logger.warning(f"{method} {endpoint} failed: {e}")
            raise NetworkError() from e
        except httpx.HTTPError as e:
            raise ApiError(str(e) or "An unexpected error occurred", 0, "UNKNOWN_ERROR") from e

        data = self._parse_body(response)

        if not response.is_success:
            code = data.get("code") if isinstance(data, dict) else None

            if code in AUTH_EXPIRED_CODES:
                logger.warning(f"{method} {endpoint}: authentication expired ({code})")
                self._expire_session()
                raise AuthExpiredError()

            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            if not message:
                message = f"Request failed with status {response.status_code}"
            raise ApiError(message, response.status_code, code)

        return data

    def _expire_session(self):
        expire = getattr(self.session, "expire", None)
        if callable(expire):
            expire()
        else:
            self.session.clear()

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                logger.warning("Response declared JSON but could not be decoded")
        return response.text

    # Convenience methods for common HTTP verbs

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("GET", endpoint, params=params, **kwargs)

    async def post(self, endpoint: str, body: Any = None, **kwargs) -> Any:
        return await self.request("POST", endpoint, json=body, **kwargs)

    async def put(self, endpoint: str, body: Any = None, **kwargs) -> Any:
        return await self.request("PUT", endpoint, json=body, **kwargs)

    async def patch(self, endpoint: str, body: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", endpoint, json=body, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> Any:
        return await self.request("DELETE", endpoint, **kwargs)
