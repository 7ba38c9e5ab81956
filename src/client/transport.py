"""HTTP layer for the remote application's internal endpoints.

Four logical operations are consumed:

  GET  /api/csrf/token                     anti-forgery token issuance
  GET  /api/auth/available_identities      identities (one per tenant)
  POST /api/auth/change_user/{user_id}     tenant switch
  POST /api/graphql?op={operationName}     named query documents

Every request carries the session cookies as an explicit ``Cookie`` header,
so SessionState stays the single source of truth for credentials. Responses
are returned raw; classification belongs to the callers.
"""

import logging
from types import TracebackType
from typing import Any

import httpx

from src.core.config import HttpConfig
from src.session.state import SessionState

logger = logging.getLogger(__name__)

TOKEN_PATH = "/api/csrf/token"
IDENTITIES_PATH = "/api/auth/available_identities"
SWITCH_PATH = "/api/auth/change_user/{user_id}"
GRAPHQL_PATH = "/api/graphql"


class RemoteTransport:
    """Async context manager that owns one httpx client for the run.

    Usage::

        async with RemoteTransport(config) as transport:
            response = await transport.fetch_token(session)

    ``transport`` lets tests inject an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: HttpConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """The underlying client. Raises if not entered."""
        if self._client is None:
            msg = "RemoteTransport not entered, use 'async with'"
            raise RuntimeError(msg)
        return self._client

    async def __aenter__(self) -> "RemoteTransport":
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout_s,
            transport=self._transport,
            follow_redirects=False,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_token(self, session: SessionState) -> httpx.Response:
        return await self.client.get(TOKEN_PATH, headers=_headers(session, token=None))

    async def list_identities(self, session: SessionState, token: str) -> httpx.Response:
        return await self.client.get(IDENTITIES_PATH, headers=_headers(session, token))

    async def switch_user(
        self, session: SessionState, token: str, user_id: str,
    ) -> httpx.Response:
        headers = _headers(session, token)
        headers["content-type"] = "application/json"
        return await self.client.post(SWITCH_PATH.format(user_id=user_id), headers=headers)

    async def graphql(
        self,
        session: SessionState,
        token: str,
        operation_name: str,
        document: str,
        variables: dict[str, Any],
    ) -> httpx.Response:
        headers = _headers(session, token)
        headers["content-type"] = "application/json"
        payload = {"operationName": operation_name, "query": document, "variables": variables}
        logger.debug("POST graphql op=%s vars=%s", operation_name, sorted(variables))
        return await self.client.post(
            GRAPHQL_PATH,
            params={"op": operation_name},
            json=payload,
            headers=headers,
        )


def _headers(session: SessionState, token: str | None) -> dict[str, str]:
    headers = {"accept": "application/json", "cookie": session.cookie_header()}
    if token:
        headers["x-csrf-token"] = token
    return headers


def response_cookies(response: httpx.Response) -> dict[str, str]:
    """Cookies set by a response, as a flat name → value map."""
    cookies: dict[str, str] = {}
    for header in response.headers.get_list("set-cookie"):
        name_value = header.split(";", 1)[0]
        name, sep, value = name_value.partition("=")
        if sep and name.strip() and value.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def describe(response: httpx.Response) -> str:
    """Short status + body prefix for error messages."""
    body = response.text[:200] if response.content else ""
    return f"HTTP {response.status_code} {response.reason_phrase}: {body}".rstrip(": ")
