"""Tests for query execution, outcome classification and pagination."""

import json
from pathlib import Path

import httpx
import pytest

from src.client.catalog import QueryCatalog
from src.client.credentials import CredentialRefresher
from src.client.executor import QueryExecutor
from src.client.queries import ACTIVE_APPLICATIONS, OPEN_JOBS, SESSION_USER
from src.client.transport import RemoteTransport
from src.core.config import HttpConfig
from src.core.errors import (
    PaginationInconsistency,
    QueryFatalError,
    QueryTransientError,
    SessionInvalid,
)
from src.core.schemas import QueryOperation
from src.session.state import SessionState

AUTH = ["ashby_session_token"]
OP = QueryOperation(name="ApiThing", document="query ApiThing { thing }", variables={"x": 1})


def _config(max_retries: int = 1) -> HttpConfig:
    return HttpConfig(
        base_url="https://ashby.test", max_retries=max_retries,
        backoff_base_s=0.0, backoff_max_s=0.0,
    )


async def _run_with(handler, *, max_retries: int = 1, operation: QueryOperation = OP, variables=None):
    """Run one operation against a bare handler with a pre-seeded token."""
    session = SessionState(cookies={"ashby_session_token": "s"}, csrf_token="tok")
    config = _config(max_retries)
    async with RemoteTransport(config, transport=httpx.MockTransport(handler)) as transport:
        refresher = CredentialRefresher(transport, session, config, AUTH)
        executor = QueryExecutor(transport, refresher, config)
        return await executor.run(operation, variables)


# ---------------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------------


class TestRequestShape:
    async def test_posts_named_operation(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"thing": 1}})

        data = await _run_with(handler, variables={"y": 2})
        assert data == {"thing": 1}
        request = seen[0]
        assert request.url.path == "/api/graphql"
        assert request.url.params["op"] == "ApiThing"
        assert request.headers["x-csrf-token"] == "tok"
        assert "ashby_session_token=s" in request.headers["cookie"]
        body = json.loads(request.content)
        assert body["operationName"] == "ApiThing"
        assert body["variables"] == {"x": 1, "y": 2}

    async def test_captured_listing_sent_under_its_own_name(self, tmp_path: Path) -> None:
        document = (
            "query ApiWhatever($cursor: String) "
            "{ result: applicationsByPrebuiltView { results { id } nextCursor moreDataAvailable } }"
        )
        log = tmp_path / "recon.json"
        log.write_text(json.dumps([{
            "url": "https://app.ashbyhq.com/api/graphql?op=ApiWhatever",
            "method": "POST",
            "postData": json.dumps({"operationName": "ApiWhatever", "query": document, "variables": {}}),
        }]))
        operation = QueryCatalog.from_recon_log(log).resolve(ACTIVE_APPLICATIONS)
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"result": {
                "results": [{"id": "a1"}], "nextCursor": None, "moreDataAvailable": False,
            }}})

        session = SessionState(cookies={"ashby_session_token": "s"}, csrf_token="tok")
        config = _config()
        async with RemoteTransport(config, transport=httpx.MockTransport(handler)) as transport:
            refresher = CredentialRefresher(transport, session, config, AUTH)
            rows = await QueryExecutor(transport, refresher, config).run_paginated(operation)

        assert rows == [{"id": "a1"}]
        assert bodies[0]["operationName"] == "ApiWhatever"
        assert f"query {bodies[0]['operationName']}" in bodies[0]["query"]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassification:
    async def test_graphql_errors_are_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "bad field"}]})

        with pytest.raises(QueryFatalError, match="bad field"):
            await _run_with(handler)

    async def test_unauthenticated_graphql_error_is_session_invalid(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "errors": [{"message": "no", "extensions": {"code": "UNAUTHENTICATED"}}],
            })

        with pytest.raises(SessionInvalid):
            await _run_with(handler)

    async def test_invalid_json_is_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>login</html>")

        with pytest.raises(QueryFatalError):
            await _run_with(handler)

    async def test_missing_data_is_fatal(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": None})

        with pytest.raises(QueryFatalError):
            await _run_with(handler)

    async def test_fatal_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={"errors": [{"message": "bad"}]})

        with pytest.raises(QueryFatalError):
            await _run_with(handler, max_retries=3)
        assert calls == 1

    async def test_401_is_session_invalid(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401)

        with pytest.raises(SessionInvalid):
            await _run_with(handler)

    async def test_server_error_retried_then_transient(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        with pytest.raises(QueryTransientError):
            await _run_with(handler, max_retries=2)
        assert calls == 3

    async def test_transient_then_success(self) -> None:
        responses = [httpx.Response(500), httpx.Response(200, json={"data": {"ok": True}})]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        assert await _run_with(handler) == {"ok": True}

    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(QueryTransientError, match="timed out"):
            await _run_with(handler, max_retries=0)


class TestTokenRejection:
    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejection_is_not_retried(self, status: int) -> None:
        posts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal posts
            posts += 1
            if posts == 1:
                return httpx.Response(status)
            return httpx.Response(200, json={"data": {"thing": 1}})

        with pytest.raises(SessionInvalid, match="authorization rejected"):
            await _run_with(handler)
        assert posts == 1

    async def test_stale_token_is_session_invalid(self, stack, fake) -> None:
        fake.add_tenant("t1", "Acme")
        stack.session.csrf_token = "stale"
        with pytest.raises(SessionInvalid):
            await stack.executor.run(stack.catalog.resolve(SESSION_USER))
        assert fake.token_requests == 0
        assert fake.op_count(SESSION_USER) == 1


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class TestPagination:
    async def test_follows_cursor_until_done(self, stack, fake, make_application) -> None:
        fake.add_tenant("t1", "Acme", applications=[make_application(f"a{i}") for i in range(120)])
        rows = await stack.executor.run_paginated(stack.catalog.resolve(ACTIVE_APPLICATIONS))
        assert len(rows) == 120
        assert [r["id"] for r in rows[:2]] == ["a0", "a1"]
        assert fake.op_count(ACTIVE_APPLICATIONS) == 2
        assert fake.listing_variables[0]["cursor"] is None
        assert fake.listing_variables[1]["cursor"] == "c100"

    async def test_single_page(self, stack, fake, make_application) -> None:
        fake.add_tenant("t1", "Acme", applications=[make_application("a1")])
        rows = await stack.executor.run_paginated(stack.catalog.resolve(ACTIVE_APPLICATIONS))
        assert [r["id"] for r in rows] == ["a1"]
        assert fake.op_count(ACTIVE_APPLICATIONS) == 1

    async def test_empty_listing(self, stack, fake) -> None:
        fake.add_tenant("t1", "Acme")
        assert await stack.executor.run_paginated(stack.catalog.resolve(ACTIVE_APPLICATIONS)) == []

    async def test_page_size_passed_as_limit(self, fake, http_config, session, make_application) -> None:
        fake.add_tenant("t1", "Acme", applications=[make_application(f"a{i}") for i in range(5)])
        async with RemoteTransport(http_config, transport=fake.transport()) as transport:
            refresher = CredentialRefresher(transport, session, http_config, AUTH)
            executor = QueryExecutor(transport, refresher, http_config, page_size=2)
            rows = await executor.run_paginated(QueryCatalog().resolve(ACTIVE_APPLICATIONS))
        assert len(rows) == 5
        assert [v["limit"] for v in fake.listing_variables] == [2, 2, 2]

    async def test_cursor_not_advancing(self, stack, fake, make_application) -> None:
        fake.add_tenant("t1", "Acme", applications=[make_application(f"a{i}") for i in range(150)])
        fake.frozen_cursor_tenants.add("t1")
        with pytest.raises(PaginationInconsistency):
            await stack.executor.run_paginated(stack.catalog.resolve(ACTIVE_APPLICATIONS))
        assert fake.op_count(ACTIVE_APPLICATIONS) == 2

    async def test_more_without_cursor(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"result": {
                "results": [{"id": "a1"}], "nextCursor": None, "moreDataAvailable": True,
            }}})

        session = SessionState(cookies={"ashby_session_token": "s"}, csrf_token="tok")
        config = _config()
        async with RemoteTransport(config, transport=httpx.MockTransport(handler)) as transport:
            refresher = CredentialRefresher(transport, session, config, AUTH)
            executor = QueryExecutor(transport, refresher, config)
            with pytest.raises(PaginationInconsistency):
                await executor.run_paginated(OP)

    async def test_page_cap(self) -> None:
        counter = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal counter
            counter += 1
            return httpx.Response(200, json={"data": {"result": {
                "results": [{"id": f"a{counter}"}],
                "nextCursor": f"c{counter}",
                "moreDataAvailable": True,
            }}})

        session = SessionState(cookies={"ashby_session_token": "s"}, csrf_token="tok")
        config = _config()
        async with RemoteTransport(config, transport=httpx.MockTransport(handler)) as transport:
            refresher = CredentialRefresher(transport, session, config, AUTH)
            executor = QueryExecutor(transport, refresher, config, max_pages=3)
            with pytest.raises(PaginationInconsistency, match="more than 3 pages"):
                await executor.run_paginated(OP)
        assert counter == 3

    async def test_missing_connection_is_fatal(self, stack, fake) -> None:
        fake.add_tenant("t1", "Acme")
        with pytest.raises(QueryFatalError):
            await stack.executor.run_paginated(stack.catalog.resolve(OPEN_JOBS))

    async def test_errors_carry_bound_tenant(self, stack, fake) -> None:
        fake.add_tenant("t1", "Acme")
        fake.listing_status["t1"] = 500
        stack.session.bound_tenant_id = "t1"
        with pytest.raises(QueryTransientError) as exc_info:
            await stack.executor.run_paginated(stack.catalog.resolve(ACTIVE_APPLICATIONS))
        assert exc_info.value.tenant_id == "t1"

    async def test_malformed_page_carries_bound_tenant(self, stack, fake) -> None:
        fake.add_tenant("t1", "Acme")
        stack.session.bound_tenant_id = "t1"
        with pytest.raises(QueryFatalError) as exc_info:
            await stack.executor.run_paginated(stack.catalog.resolve(OPEN_JOBS))
        assert exc_info.value.tenant_id == "t1"
