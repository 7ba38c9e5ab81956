"""Shared fixtures: an in-memory fake of the remote application.

The fake keeps one active tenant per session, issues anti-forgery tokens
bound to the tenant active at issue time, and rejects stale tokens with 403,
the way the real application does after a tenant switch.
"""

import asyncio
import json
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from src.client.catalog import QueryCatalog
from src.client.credentials import CredentialRefresher
from src.client.executor import QueryExecutor
from src.client.transport import RemoteTransport
from src.core.config import HttpConfig
from src.session.state import SessionState
from src.tenants.switcher import TenantContextSwitcher

AUTH_COOKIES = ["ashby_session_token", "authenticated"]
BASE_URL = "https://ashby.test"


@dataclass
class FakeTenant:
    tenant_id: str
    name: str | None
    user_id: str
    jobs: list[dict[str, Any]] = field(default_factory=list)
    applications: list[dict[str, Any]] = field(default_factory=list)
    details: dict[str, dict[str, Any]] = field(default_factory=dict)


class FakeAshby:
    """Request handler for ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.tenants: dict[str, FakeTenant] = {}
        self.current: str | None = None
        self.tokens: dict[str, str | None] = {}
        self.token_requests = 0
        self.calls: list[tuple[str, str]] = []
        self.graphql_ops: list[str] = []
        self.listing_variables: list[dict[str, Any]] = []
        # Failure injection
        self.token_status: int | None = None
        self.identities_status: int | None = None
        self.switch_fail_users: set[str] = set()
        self.switch_ignored_users: set[str] = set()
        self.listing_status: dict[str, int] = {}
        self.listing_fail_times: dict[str, int] = {}
        self.detail_fail_ids: set[str] = set()
        self.frozen_cursor_tenants: set[str] = set()
        # Concurrency tracking for detail requests
        self.detail_delay_s = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def add_tenant(
        self,
        tenant_id: str,
        name: str | None = None,
        *,
        user_id: str | None = None,
        jobs: list[dict[str, Any]] | None = None,
        applications: list[dict[str, Any]] | None = None,
    ) -> FakeTenant:
        tenant = FakeTenant(
            tenant_id=tenant_id,
            name=name,
            user_id=user_id or f"user-{tenant_id}",
            jobs=jobs or [],
            applications=applications or [],
        )
        self.tenants[tenant_id] = tenant
        if self.current is None:
            self.current = tenant_id
        return tenant

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def op_count(self, name: str) -> int:
        return self.graphql_ops.count(name)

    # --- routing -----------------------------------------------------------

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if "ashby_session_token=" not in request.headers.get("cookie", ""):
            return httpx.Response(401, json={"error": "not logged in"})

        if path == "/api/csrf/token":
            return self._token()
        if path == "/api/auth/available_identities":
            return self._identities()
        if path.startswith("/api/auth/change_user/"):
            return self._switch(request, path.rsplit("/", 1)[-1])
        if path == "/api/graphql":
            return await self._graphql(request)
        return httpx.Response(404)

    def _token(self) -> httpx.Response:
        self.token_requests += 1
        if self.token_status is not None:
            return httpx.Response(self.token_status, text="token unavailable")
        token = f"tok-{self.token_requests}"
        self.tokens[token] = self.current
        return httpx.Response(200, json={"token": token})

    def _identities(self) -> httpx.Response:
        if self.identities_status is not None:
            return httpx.Response(self.identities_status, text="nope")
        return httpx.Response(200, json=[
            {
                "user": {"id": t.user_id},
                "organization": {"id": t.tenant_id, "name": t.name},
            }
            for t in self.tenants.values()
        ])

    def _token_ok(self, request: httpx.Request) -> bool:
        token = request.headers.get("x-csrf-token")
        return token in self.tokens and self.tokens[token] == self.current

    def _switch(self, request: httpx.Request, user_id: str) -> httpx.Response:
        if not self._token_ok(request):
            return httpx.Response(403, text="bad token")
        if user_id in self.switch_fail_users:
            return httpx.Response(500, text="switch exploded")
        if user_id in self.switch_ignored_users:
            return httpx.Response(200, json={"success": True})
        for tenant in self.tenants.values():
            if tenant.user_id == user_id:
                self.current = tenant.tenant_id
                return httpx.Response(
                    200,
                    json={"success": True},
                    headers={"set-cookie": f"ashby_org={tenant.tenant_id}; Path=/; HttpOnly"},
                )
        return httpx.Response(404, text="unknown user")

    async def _graphql(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        op = body["operationName"]
        variables = body.get("variables") or {}
        self.graphql_ops.append(op)
        if not self._token_ok(request):
            return httpx.Response(403, text="stale token")
        tenant = self.tenants[self.current] if self.current else None

        if op == "ApiGetSessionUser":
            user = {"id": tenant.user_id, "organizationId": tenant.tenant_id,
                    "organizationName": tenant.name} if tenant else None
            return httpx.Response(200, json={"data": {"user": user}})
        if op == "ApiOpenJobs":
            return httpx.Response(200, json={"data": {"jobsPipelines": tenant.jobs}})
        if op == "ApiGetActiveApplications":
            return self._listing(tenant, variables)
        if op == "ApiApplication":
            return await self._detail(tenant, variables["applicationId"])
        return httpx.Response(200, json={"errors": [{"message": f"unknown op {op}"}]})

    def _listing(self, tenant: FakeTenant, variables: dict[str, Any]) -> httpx.Response:
        self.listing_variables.append(dict(variables))
        status = self.listing_status.get(tenant.tenant_id)
        if status is not None:
            return httpx.Response(status, text="listing failed")
        remaining = self.listing_fail_times.get(tenant.tenant_id, 0)
        if remaining:
            self.listing_fail_times[tenant.tenant_id] = remaining - 1
            return httpx.Response(503, text="try again")

        limit = int(variables.get("limit") or 100)
        cursor = variables.get("cursor")
        offset = int(cursor[1:]) if cursor else 0
        page = tenant.applications[offset:offset + limit]
        more = offset + limit < len(tenant.applications)
        next_cursor = f"c{offset + limit}" if more else None
        if tenant.tenant_id in self.frozen_cursor_tenants and more:
            next_cursor = "c0"
        return httpx.Response(200, json={"data": {"result": {
            "results": page,
            "nextCursor": next_cursor,
            "moreDataAvailable": more,
        }}})

    async def _detail(self, tenant: FakeTenant, application_id: str) -> httpx.Response:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.detail_delay_s)
        finally:
            self.in_flight -= 1
        if application_id in self.detail_fail_ids:
            return httpx.Response(500, text="detail failed")
        detail = tenant.details.get(application_id, {"id": application_id})
        return httpx.Response(200, json={"data": {"application": detail}})


def application(
    app_id: str,
    *,
    job_id: str = "job-1",
    job_title: str = "Backend Engineer",
    candidate_id: str | None = None,
    name: str = "Ada Lovelace",
    stage_type: str | None = "Technical Interview",
    stage_title: str | None = "Tech Screen",
    status: str | None = "Needs Decision",
    created_at: str | None = "2026-01-01T00:00:00Z",
) -> dict[str, Any]:
    """One row of the active-applications listing."""
    return {
        "id": app_id,
        "createdAt": created_at,
        "candidate": {"id": candidate_id or f"cand-{app_id}", "name": name},
        "job": {"id": job_id, "title": job_title},
        "applicationStatus": {"description": status, "priority": 1, "dueAt": None},
        "currentInterviewStage": {"id": "stage-2", "title": stage_title, "stageType": stage_type},
        "creditedToUser": {"firstName": "Grace", "lastName": "Hopper"},
        "source": {"title": "Referral"},
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake() -> FakeAshby:
    return FakeAshby()


@pytest.fixture()
def http_config() -> HttpConfig:
    return HttpConfig(
        base_url=BASE_URL,
        max_retries=1,
        backoff_base_s=0.0,
        backoff_max_s=0.0,
        switch_settle_s=0.0,
    )


@pytest.fixture()
def session() -> SessionState:
    return SessionState(cookies={"ashby_session_token": "sess", "authenticated": "true"})


@pytest.fixture()
async def stack(fake: FakeAshby, http_config: HttpConfig, session: SessionState):
    """Wired client components over the fake remote."""
    async with RemoteTransport(http_config, transport=fake.transport()) as transport:
        refresher = CredentialRefresher(transport, session, http_config, AUTH_COOKIES)
        executor = QueryExecutor(transport, refresher, http_config, page_size=100)
        catalog = QueryCatalog()
        switcher = TenantContextSwitcher(transport, refresher, executor, catalog, settle_s=0.0)
        yield SimpleNamespace(
            transport=transport,
            refresher=refresher,
            executor=executor,
            catalog=catalog,
            switcher=switcher,
            session=session,
        )


@pytest.fixture()
def make_application():
    return application
