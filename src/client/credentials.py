"""Anti-forgery token lifecycle.

Every query needs a token issued for the currently bound tenant. A tenant
switch makes the cached token unusable; the switcher clears it and asks for
a forced refresh.
"""

import asyncio
import logging

import httpx

from src.client.retry import retry_policy
from src.client.transport import RemoteTransport, describe
from src.core.config import HttpConfig
from src.core.errors import CredentialRefreshFailed, SessionInvalid, SessionMissing
from src.session.state import SessionState

logger = logging.getLogger(__name__)

_AUTH_REJECTED = (401, 403)


class _TokenFetchError(Exception):
    """A token fetch failure worth retrying."""


class CredentialRefresher:
    """Owns the token field of one SessionState.

    Usage::

        refresher = CredentialRefresher(transport, session, config, ["ashby_session_token"])
        token = await refresher.ensure_token()
        token = await refresher.ensure_token(force=True)  # after a tenant switch
    """

    def __init__(
        self,
        transport: RemoteTransport,
        session: SessionState,
        config: HttpConfig,
        auth_cookie_names: list[str],
    ) -> None:
        self._transport = transport
        self._session = session
        self._config = config
        self._auth_cookie_names = auth_cookie_names
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def session(self) -> SessionState:
        return self._session

    def invalidate(self) -> None:
        """Drop the cached token. The next ensure_token() fetches a new one."""
        self._session.invalidate_token()

    async def ensure_token(self, force: bool = False) -> str:
        """Return a usable token, fetching one when missing or forced.

        Raises:
            SessionMissing: no authentication cookie in the session.
            SessionInvalid: the token endpoint rejected the credentials.
            CredentialRefreshFailed: every retry failed for another reason.
        """
        cached = self._session.csrf_token
        if cached and not force:
            return cached

        async with self._lock:
            # Another task may have refreshed while we waited.
            if self._session.csrf_token and not force:
                return self._session.csrf_token
            if not self._session.has_auth_cookie(self._auth_cookie_names):
                msg = "Session has no authentication cookies. Run 'auth' to log in."
                raise SessionMissing(msg)

            logger.debug("Fetching anti-forgery token (force=%s)", force)
            token = await self._fetch_with_retry()
            self._session.csrf_token = token
            self.refresh_count += 1
            return token

    async def _fetch_with_retry(self) -> str:
        token = ""
        try:
            async for attempt in retry_policy(self._config, _TokenFetchError):
                with attempt:
                    token = await self._fetch_once()
        except _TokenFetchError as e:
            attempts = self._config.max_retries + 1
            msg = f"Failed to fetch anti-forgery token after {attempts} attempt(s): {e}"
            raise CredentialRefreshFailed(msg) from e
        return token

    async def _fetch_once(self) -> str:
        try:
            response = await self._transport.fetch_token(self._session)
        except httpx.TimeoutException as e:
            msg = f"token request timed out: {e}"
            raise _TokenFetchError(msg) from e
        except httpx.TransportError as e:
            msg = f"token request network error: {e}"
            raise _TokenFetchError(msg) from e

        if response.status_code in _AUTH_REJECTED:
            msg = (
                f"Token endpoint rejected the session ({describe(response)}). "
                "Session appears expired; refresh cookies with 'auth' or 'auth-cookie'."
            )
            raise SessionInvalid(msg)
        if not response.is_success:
            raise _TokenFetchError(describe(response))

        try:
            data = response.json()
        except ValueError as e:
            msg = f"token response is not JSON: {response.text[:200]}"
            raise _TokenFetchError(msg) from e
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            msg = "token response has no 'token' field"
            raise _TokenFetchError(msg)
        return token
