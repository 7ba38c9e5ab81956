"""Tenant discovery.

Primary source is the identity list (one identity per organization the login
can act as). When it is empty or unavailable, the implicitly bound tenant is
reported as a single synthetic descriptor so there is always one unit of work.
"""

import logging
from typing import Any

import httpx

from src.client.catalog import QueryCatalog
from src.client.credentials import CredentialRefresher
from src.client.executor import QueryExecutor
from src.client.queries import SESSION_USER
from src.client.transport import RemoteTransport, describe
from src.core.errors import QueryFatalError, QueryTransientError, SessionInvalid
from src.core.schemas import TenantDescriptor

logger = logging.getLogger(__name__)

# Placeholder id for the bound tenant when even the session user is unknown.
CURRENT_TENANT_ID = "current"


class TenantRegistry:
    """Discovers the tenants the session's identity can access."""

    def __init__(
        self,
        transport: RemoteTransport,
        refresher: CredentialRefresher,
        executor: QueryExecutor,
        catalog: QueryCatalog,
    ) -> None:
        self._transport = transport
        self._refresher = refresher
        self._executor = executor
        self._catalog = catalog

    async def discover(self) -> list[TenantDescriptor]:
        """Return accessible tenants, deduplicated by tenant id (first identity wins)."""
        # A token kept from an earlier run may belong to another tenant.
        token = await self._refresher.ensure_token(force=True)
        tenants = await self._list_identities(token)
        if not tenants:
            logger.info("No identities listed, falling back to the current tenant")
            tenants = [await self._current_tenant()]

        self._refresher.session.remember_tenants(
            [t.tenant_id for t in tenants if not t.synthetic],
        )
        for tenant in tenants:
            if tenant.name is None:
                logger.info("Tenant %s has no display name (%s)", tenant.tenant_id, tenant.known_name)
        return tenants

    async def _list_identities(self, token: str) -> list[TenantDescriptor]:
        session = self._refresher.session
        try:
            response = await self._transport.list_identities(session, token)
        except httpx.TransportError as e:
            logger.warning("Could not fetch available identities: %s", e)
            return []

        if response.status_code == 401:
            msg = f"Identity listing rejected the session ({describe(response)})"
            raise SessionInvalid(msg)
        if not response.is_success:
            logger.warning("Could not fetch available identities: %s", describe(response))
            return []
        try:
            identities = response.json()
        except ValueError:
            logger.warning("Identity listing is not JSON: %s", response.text[:200])
            return []
        return parse_identities(identities)

    async def _current_tenant(self) -> TenantDescriptor:
        operation = self._catalog.resolve(SESSION_USER)
        try:
            data = await self._executor.run(operation)
        except (QueryFatalError, QueryTransientError) as e:
            logger.warning("Could not identify the current tenant: %s", e)
            return TenantDescriptor(tenant_id=CURRENT_TENANT_ID, synthetic=True)

        user = data.get("user") or {}
        tenant_id = user.get("organizationId") if isinstance(user, dict) else None
        if not tenant_id:
            return TenantDescriptor(tenant_id=CURRENT_TENANT_ID, synthetic=True)
        return TenantDescriptor(
            tenant_id=str(tenant_id),
            name=user.get("organizationName") or None,
            synthetic=True,
        )


def parse_identities(identities: Any) -> list[TenantDescriptor]:
    """Map the identity listing to descriptors, keeping the first user per tenant.

    Accepts both the nested shape (``{"user": {...}, "organization": {...}}``)
    and the flat one (``{"organizationId", "organizationName", "userId"}``).
    """
    if not isinstance(identities, list):
        logger.warning("Identity listing is not a JSON array")
        return []

    tenants: dict[str, TenantDescriptor] = {}
    for identity in identities:
        if not isinstance(identity, dict):
            continue
        organization = identity.get("organization")
        user = identity.get("user")
        if isinstance(organization, dict):
            tenant_id = organization.get("id")
            name = organization.get("name")
            user_id = user.get("id") if isinstance(user, dict) else None
        else:
            tenant_id = identity.get("organizationId")
            name = identity.get("organizationName")
            user_id = identity.get("userId")
        if not tenant_id:
            continue
        tenant_id = str(tenant_id)
        if tenant_id in tenants:
            continue
        tenants[tenant_id] = TenantDescriptor(
            tenant_id=tenant_id,
            name=name or None,
            user_id=str(user_id) if user_id else None,
        )
    return list(tenants.values())
