# app/core/session.py
"""
Authentication state provider consumed by the API client and the services.

Token issuance happens elsewhere; this module only holds the current session
and clears it when the server reports that the token has expired.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionProvider(Protocol):
    """Interface every session backend must satisfy."""

    def is_authenticated(self) -> bool: ...

    def get_token(self) -> Optional[str]: ...

    def clear(self) -> None: ...


class InMemorySession:
    """
    In-memory session store.
    Holds the logged-in user and bearer token for the lifetime of the process.
    """

    def __init__(self, user: Optional[Dict[str, Any]] = None, token: Optional[str] = None):
        self._user = user
        self._token = token
        self._expired_callbacks: List[Callable] = []

    def store(self, user: Dict[str, Any], token: str) -> None:
        """Store user data and token after a successful login."""
        self._user = user
        self._token = token

    def get_user(self) -> Optional[Dict[str, Any]]:
        return self._user

    def get_token(self) -> Optional[str]:
        return self._token

    def is_authenticated(self) -> bool:
        return bool(self._user and self._token)

    def clear(self) -> None:
        """Drop stored credentials (logout)."""
        self._user = None
        self._token = None

    def on_expired(self, callback: Callable) -> Callable[[], None]:
        """
        Register a global handler invoked when the server rejects the token.

        Returns:
            Callable that removes the handler
        """
        self._expired_callbacks.append(callback)

        def unsubscribe():
            if callback in self._expired_callbacks:
                self._expired_callbacks.remove(callback)

        return unsubscribe

    def expire(self) -> None:
        """Clear credentials and notify the registered handlers."""
        self.clear()
        for callback in list(self._expired_callbacks):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    asyncio.ensure_future(result)
            except Exception as e:
                logger.error(f"Error in session expiry handler: {e}")
