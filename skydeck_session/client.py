"""
AT Protocol session client.

Talks to a PDS over HTTPS for the two session XRPC procedures and maps
every failure onto the :mod:`skydeck_session.exceptions` taxonomy:

=====================  ====================================================
Condition              Error
=====================  ====================================================
timeout / connection   ``NetworkError`` (retried by :meth:`with_retry`)
createSession 401      ``InvalidCredentials``
refreshSession 401     ``TokenExpired``
5xx                    ``ServerError`` (status + body)
other non-2xx          ``Unknown`` (create) / ``ServerError`` (refresh)
unparseable body       ``ServerError``
=====================  ====================================================

Security Note:
    Credentials are only ever sent to ``https://`` URLs. Never log
    passwords or JWTs.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
import orjson
from pydantic import ValidationError

from .conf import DEFAULT_SERVER_URL
from .exceptions import (
    InvalidCredentials,
    InvalidServerUrl,
    NetworkError,
    ServerError,
    TokenExpired,
    Unknown,
)
from .models import SessionTokens

logger = logging.getLogger("skydeck.session")

T = TypeVar("T")

CREATE_SESSION = "com.atproto.server.createSession"
REFRESH_SESSION = "com.atproto.server.refreshSession"

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF = 1.0


def normalize_server_url(server_url: Optional[str] = None) -> str:
    """Return an ``https://`` base URL for ``server_url``.

    ``https://`` is prepended when no scheme is given; anything that does
    not end up as HTTPS is rejected.

    Raises:
        InvalidServerUrl: If the URL is empty or not HTTPS.
    """
    url = (server_url or DEFAULT_SERVER_URL).strip()
    if not url:
        raise InvalidServerUrl("Server URL cannot be empty")
    if "://" not in url:
        url = f"https://{url}"
    if not url.lower().startswith("https://"):
        raise InvalidServerUrl("Server URL must use HTTPS protocol")
    if len(url) == len("https://"):
        raise InvalidServerUrl("Server URL has no host")
    return url.rstrip("/")


class SessionClient:
    """Client for ``createSession`` / ``refreshSession`` on one PDS.

    Use as an async context manager; an ``aiohttp.ClientSession`` is
    created on first use and closed on exit unless one was injected.
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._server_url = normalize_server_url(server_url)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep

    @property
    def server_url(self) -> str:
        return self._server_url

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(
        self,
        nsid: str,
        payload: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> tuple[int, str]:
        """POST to ``/xrpc/{nsid}`` and return ``(status, body)``.

        Raises:
            NetworkError: On timeout or connection failure.
        """
        url = f"{self._server_url}/xrpc/{nsid}"
        try:
            async with self._get_session().post(
                url, json=payload, headers=headers, timeout=self._timeout,
            ) as response:
                body = await response.text()
                return response.status, body
        except (asyncio.TimeoutError, TimeoutError) as err:
            raise NetworkError("Request timeout") from err
        except aiohttp.ClientConnectionError as err:
            raise NetworkError(f"Cannot connect to server: {err}") from err
        except aiohttp.ClientError as err:
            raise NetworkError(f"Request failed: {err}") from err

    @staticmethod
    def _parse(body: str, what: str) -> SessionTokens:
        try:
            return SessionTokens.model_validate(orjson.loads(body))
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise ServerError(f"Failed to parse {what}: {err}") from err

    # ------------------------------------------------------------------
    # Session procedures
    # ------------------------------------------------------------------

    async def create_session(self, identifier: str, password: str) -> SessionTokens:
        """Create a session with handle/email and password.

        Raises:
            InvalidCredentials: On HTTP 401.
            ServerError: On HTTP 5xx or an unparseable body.
            NetworkError: On timeout or connection failure.
            Unknown: On any other non-2xx status.
        """
        status, body = await self._post(
            CREATE_SESSION,
            payload={"identifier": identifier, "password": password},
        )
        if not 200 <= status < 300:
            if status == 401:
                raise InvalidCredentials("Invalid handle or password")
            if status >= 500:
                raise ServerError(
                    f"Server error ({status}): {body}", status=status, body=body,
                )
            raise Unknown(f"HTTP {status} error: {body}", status=status)
        tokens = self._parse(body, "response")
        logger.info("Session created for %s on %s", tokens.handle, self._server_url)
        return tokens

    async def refresh_session(self, refresh_jwt: str) -> SessionTokens:
        """Exchange a refresh token for a new token pair.

        Raises:
            TokenExpired: On HTTP 401; the user must log in again.
            ServerError: On any other non-2xx status or an unparseable body.
            NetworkError: On timeout or connection failure.
        """
        status, body = await self._post(
            REFRESH_SESSION,
            headers={"Authorization": f"Bearer {refresh_jwt}"},
        )
        if not 200 <= status < 300:
            if status == 401:
                raise TokenExpired("Refresh token rejected by server")
            raise ServerError(
                f"Refresh failed with status {status}", status=status, body=body,
            )
        tokens = self._parse(body, "refresh response")
        logger.info("Session refreshed for %s", tokens.handle)
        return tokens

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` retrying only on ``NetworkError``.

        Up to ``max_attempts`` attempts with exponential backoff
        (1s, 2s, 4s, ...) awaited between them. Any other error
        propagates on the first failure.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except NetworkError as err:
                if attempt >= self._max_attempts:
                    logger.error(
                        "Giving up after %d attempt(s): %s", attempt, err,
                    )
                    raise
                delay = self._backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    "Attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt, self._max_attempts, err, delay,
                )
                await self._sleep(delay)
