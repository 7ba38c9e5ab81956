"""Query execution against the currently bound tenant.

Outcome classification:
  - 401/403, or a GraphQL error flagged unauthenticated → SessionInvalid,
    never retried
  - unparseable body / GraphQL errors / missing data → QueryFatalError
  - timeouts, connection errors, any other non-2xx   → retried, then
    QueryTransientError

Pagination follows ``nextCursor`` / ``moreDataAvailable`` and refuses to loop
on a cursor that does not advance.
"""

import logging
from typing import Any

import httpx

from src.client.credentials import CredentialRefresher
from src.client.retry import retry_policy
from src.client.transport import RemoteTransport, describe
from src.core.config import HttpConfig
from src.core.errors import (
    PaginationInconsistency,
    QueryFatalError,
    QueryTransientError,
    SessionInvalid,
)
from src.core.schemas import PageCursor, QueryOperation

logger = logging.getLogger(__name__)

_UNAUTHENTICATED_CODES = {"UNAUTHENTICATED", "FORBIDDEN", "UNAUTHORIZED"}


class QueryExecutor:
    """Runs named operations with the session's current token.

    Usage::

        executor = QueryExecutor(transport, refresher, config)
        data = await executor.run(operation, {"applicationId": "..."})
        rows = await executor.run_paginated(listing_operation)
    """

    def __init__(
        self,
        transport: RemoteTransport,
        refresher: CredentialRefresher,
        config: HttpConfig,
        *,
        page_size: int = 100,
        max_pages: int = 500,
    ) -> None:
        self._transport = transport
        self._refresher = refresher
        self._config = config
        self._page_size = page_size
        self._max_pages = max_pages
        self.request_count = 0

    async def run(
        self,
        operation: QueryOperation,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute one operation and return its ``data`` object."""
        merged = operation.build_variables(variables)
        data: dict[str, Any] = {}
        async for attempt in retry_policy(self._config, QueryTransientError):
            with attempt:
                data = await self._attempt(operation, merged)
        return data

    async def run_paginated(
        self,
        operation: QueryOperation,
        base_variables: dict[str, Any] | None = None,
        *,
        connection: str = "result",
        items_key: str = "results",
    ) -> list[dict[str, Any]]:
        """Follow the cursor until no more pages; return all items in arrival order."""
        items: list[dict[str, Any]] = []
        cursor = PageCursor()
        seen_tokens: set[str] = set()
        pages = 0

        while cursor.more:
            if pages >= self._max_pages:
                msg = f"{operation.name}: more than {self._max_pages} pages, giving up"
                raise PaginationInconsistency(msg, self._tenant_id)

            variables = {"limit": self._page_size, **(base_variables or {}), "cursor": cursor.token}
            data = await self.run(operation, variables)
            page, next_cursor = _read_page(data, connection, items_key, operation.name, self._tenant_id)
            pages += 1
            items.extend(page)
            logger.debug(
                "%s page %d: %d items (total %d, more=%s)",
                operation.name, pages, len(page), len(items), next_cursor.more,
            )

            if next_cursor.more:
                if not page:
                    msg = f"{operation.name}: empty page reported more data available"
                    raise PaginationInconsistency(msg, self._tenant_id)
                if not next_cursor.token or next_cursor.token in seen_tokens:
                    msg = f"{operation.name}: cursor did not advance after page {pages}"
                    raise PaginationInconsistency(msg, self._tenant_id)
                seen_tokens.add(next_cursor.token)
            cursor = next_cursor

        return items

    @property
    def _tenant_id(self) -> str | None:
        return self._refresher.session.bound_tenant_id

    async def _attempt(self, operation: QueryOperation, variables: dict[str, Any]) -> dict[str, Any]:
        token = await self._refresher.ensure_token()
        response = await self._post(operation, variables, token)

        if response.status_code in (401, 403):
            msg = f"{operation.name}: authorization rejected ({describe(response)})"
            raise SessionInvalid(msg)
        if not response.is_success:
            msg = f"{operation.name}: {describe(response)}"
            raise QueryTransientError(msg, self._tenant_id)

        return self._parse(operation, response)

    async def _post(
        self, operation: QueryOperation, variables: dict[str, Any], token: str,
    ) -> httpx.Response:
        self.request_count += 1
        try:
            return await self._transport.graphql(
                self._refresher.session, token, operation.name, operation.document, variables,
            )
        except httpx.TimeoutException as e:
            msg = f"{operation.name}: request timed out: {e}"
            raise QueryTransientError(msg, self._tenant_id) from e
        except httpx.TransportError as e:
            msg = f"{operation.name}: network error: {e}"
            raise QueryTransientError(msg, self._tenant_id) from e

    def _parse(self, operation: QueryOperation, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            msg = f"{operation.name}: invalid JSON response: {response.text[:200]}"
            raise QueryFatalError(msg, self._tenant_id) from e
        if not isinstance(body, dict):
            msg = f"{operation.name}: response is not a JSON object"
            raise QueryFatalError(msg, self._tenant_id)

        errors = body.get("errors")
        if errors:
            messages = _error_messages(errors)
            if _is_unauthenticated(errors):
                msg = f"{operation.name}: {messages}"
                raise SessionInvalid(msg)
            msg = f"{operation.name}: GraphQL errors: {messages}"
            raise QueryFatalError(msg, self._tenant_id)

        data = body.get("data")
        if not isinstance(data, dict):
            msg = f"{operation.name}: response has no 'data' object"
            raise QueryFatalError(msg, self._tenant_id)
        return data


def _read_page(
    data: dict[str, Any],
    connection: str,
    items_key: str,
    operation_name: str,
    tenant_id: str | None,
) -> tuple[list[dict[str, Any]], PageCursor]:
    block = data.get(connection)
    if not isinstance(block, dict):
        msg = f"{operation_name}: response has no '{connection}' block"
        raise QueryFatalError(msg, tenant_id)
    items = block.get(items_key)
    if not isinstance(items, list):
        msg = f"{operation_name}: '{connection}.{items_key}' is not a list"
        raise QueryFatalError(msg, tenant_id)
    token = block.get("nextCursor")
    more = bool(block.get("moreDataAvailable"))
    return items, PageCursor(token=token if isinstance(token, str) else None, more=more)


def _error_messages(errors: Any) -> str:
    if not isinstance(errors, list):
        return str(errors)
    return "; ".join(
        str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
    )


def _is_unauthenticated(errors: Any) -> bool:
    if not isinstance(errors, list):
        return False
    for error in errors:
        if not isinstance(error, dict):
            continue
        extensions = error.get("extensions") or {}
        code = extensions.get("code") if isinstance(extensions, dict) else None
        if isinstance(code, str) and code.upper() in _UNAUTHENTICATED_CODES:
            return True
    return False
