"""Tenant context switching as an explicit state machine.

States and transitions::

    Unbound ──switch(T)──▶ Switching(T) ──ok──▶ Verifying(T) ──reports T──▶ Bound(T)
                               │                     │
                               └─fail─▶ SwitchFailed(T, SwitchRequestFailed)
                                                     └─other/none─▶ SwitchFailed(T, VerificationMismatch)
    Bound(T) ──switch(T')──▶ Switching(T')
    SwitchFailed ──reset()──▶ Unbound

The remote session has exactly one active tenant. The anti-forgery token is
cleared after every switch attempt and force-refreshed before verification,
so no query can run against the new tenant with the old token.
"""

import asyncio
import logging
from enum import Enum

import httpx

from src.client.catalog import QueryCatalog
from src.client.credentials import CredentialRefresher
from src.client.executor import QueryExecutor
from src.client.queries import SESSION_USER
from src.client.transport import RemoteTransport, describe, response_cookies
from src.core.errors import (
    ExtractionError,
    QueryFatalError,
    QueryTransientError,
    SessionInvalid,
    TenantSwitchFailed,
    VerificationMismatch,
)
from src.core.schemas import TenantDescriptor
from src.tenants.registry import CURRENT_TENANT_ID

logger = logging.getLogger(__name__)


class SwitchState(str, Enum):
    UNBOUND = "Unbound"
    SWITCHING = "Switching"
    VERIFYING = "Verifying"
    BOUND = "Bound"
    SWITCH_FAILED = "SwitchFailed"


class SwitchFailureReason(str, Enum):
    SWITCH_REQUEST_FAILED = "SwitchRequestFailed"
    VERIFICATION_MISMATCH = "VerificationMismatch"


class TenantContextSwitcher:
    """Binds the shared session to one tenant at a time."""

    def __init__(
        self,
        transport: RemoteTransport,
        refresher: CredentialRefresher,
        executor: QueryExecutor,
        catalog: QueryCatalog,
        *,
        settle_s: float = 0.5,
    ) -> None:
        self._transport = transport
        self._refresher = refresher
        self._executor = executor
        self._catalog = catalog
        self._settle_s = settle_s
        self._state = SwitchState.UNBOUND
        self._target: TenantDescriptor | None = None
        self._failure_reason: SwitchFailureReason | None = None
        self.history: list[tuple[SwitchState, str | None]] = [(SwitchState.UNBOUND, None)]

    # --- introspection -----------------------------------------------------

    @property
    def state(self) -> SwitchState:
        return self._state

    @property
    def target(self) -> TenantDescriptor | None:
        return self._target

    @property
    def failure_reason(self) -> SwitchFailureReason | None:
        return self._failure_reason

    @property
    def bound_tenant(self) -> TenantDescriptor | None:
        if self._state is SwitchState.BOUND:
            return self._target
        return None

    def is_bound_to(self, tenant_id: str) -> bool:
        bound = self.bound_tenant
        return bound is not None and bound.tenant_id == tenant_id

    # --- transitions -------------------------------------------------------

    def reset(self) -> None:
        """Return to Unbound. Required after SwitchFailed."""
        self._target = None
        self._failure_reason = None
        self._refresher.session.bound_tenant_id = None
        self._transition(SwitchState.UNBOUND, None)

    async def ensure_bound(self, tenant: TenantDescriptor) -> TenantDescriptor:
        """Switch only if the session is not already bound to ``tenant``."""
        if self.is_bound_to(tenant.tenant_id):
            return tenant
        if self._state is SwitchState.SWITCH_FAILED:
            self.reset()
        return await self.switch(tenant)

    async def switch(self, tenant: TenantDescriptor) -> TenantDescriptor:
        """Run the full switch + verify sequence for ``tenant``.

        Raises:
            TenantSwitchFailed: the switch request failed (state SwitchFailed).
            VerificationMismatch: the session reports another tenant.
            SessionInvalid / CredentialRefreshFailed: run-fatal, state SwitchFailed.
        """
        if self._state is SwitchState.SWITCH_FAILED:
            msg = "Switcher is in SwitchFailed, call reset() first"
            raise RuntimeError(msg)
        if self._state in (SwitchState.SWITCHING, SwitchState.VERIFYING):
            msg = f"Switch to {self._target.tenant_id if self._target else '?'} already in progress"
            raise RuntimeError(msg)

        self._target = tenant
        self._failure_reason = None
        self._refresher.session.bound_tenant_id = None

        if tenant.user_id is None:
            if not tenant.synthetic:
                self._transition(SwitchState.SWITCHING, tenant.tenant_id)
                self._refresher.invalidate()
                msg = f"Tenant {tenant.display_name} has no user id to switch with"
                raise self._fail(SwitchFailureReason.SWITCH_REQUEST_FAILED, msg)
            # Nothing to switch: verify the implicitly bound tenant instead.
            self._transition(SwitchState.VERIFYING, tenant.tenant_id)
            return self._bind(await self._verify(tenant, force_refresh=False))

        self._transition(SwitchState.SWITCHING, tenant.tenant_id)
        await self._request_switch(tenant, tenant.user_id)

        self._transition(SwitchState.VERIFYING, tenant.tenant_id)
        return self._bind(await self._verify(tenant, force_refresh=True))

    # --- steps -------------------------------------------------------------

    async def _request_switch(self, tenant: TenantDescriptor, user_id: str) -> None:
        session = self._refresher.session
        try:
            token = await self._refresher.ensure_token()
            response = await self._transport.switch_user(session, token, user_id)
        except httpx.TransportError as e:
            msg = f"Switch request for {tenant.display_name} failed: {e}"
            raise self._fail(SwitchFailureReason.SWITCH_REQUEST_FAILED, msg) from e
        except ExtractionError:
            self._mark_failed(SwitchFailureReason.SWITCH_REQUEST_FAILED)
            raise
        finally:
            # The remote authorization context may have changed either way.
            self._refresher.invalidate()

        if response.status_code == 401:
            self._mark_failed(SwitchFailureReason.SWITCH_REQUEST_FAILED)
            msg = f"Switch request rejected the session ({describe(response)})"
            raise SessionInvalid(msg)
        if not response.is_success:
            msg = f"Switch request for {tenant.display_name} failed: {describe(response)}"
            raise self._fail(SwitchFailureReason.SWITCH_REQUEST_FAILED, msg)

        cookies = response_cookies(response)
        if cookies:
            session.update_cookies(cookies)
            logger.debug("Switch response updated %d cookies", len(cookies))
        if self._settle_s:
            await asyncio.sleep(self._settle_s)

    async def _verify(self, tenant: TenantDescriptor, *, force_refresh: bool) -> TenantDescriptor:
        """Check the active tenant; return ``tenant`` completed from what the session reports."""
        try:
            await self._refresher.ensure_token(force=force_refresh)
            data = await self._executor.run(self._catalog.resolve(SESSION_USER))
        except (QueryFatalError, QueryTransientError) as e:
            msg = f"Could not verify switch to {tenant.display_name}: {e}"
            raise self._fail(SwitchFailureReason.VERIFICATION_MISMATCH, msg) from e
        except ExtractionError:
            self._mark_failed(SwitchFailureReason.VERIFICATION_MISMATCH)
            raise

        user = data.get("user")
        if not isinstance(user, dict):
            user = {}
        reported = user.get("organizationId")
        reported_name = user.get("organizationName") or None
        if tenant.tenant_id == CURRENT_TENANT_ID and reported:
            logger.info("Placeholder tenant resolved to %s", reported)
            tenant = tenant.model_copy(update={"tenant_id": str(reported)})
        elif reported != tenant.tenant_id:
            msg = (
                f"Switched to {tenant.display_name} but session reports "
                f"tenant {reported or 'none'}"
            )
            raise self._fail(SwitchFailureReason.VERIFICATION_MISMATCH, msg)
        return _with_name(tenant, reported_name)

    def _bind(self, tenant: TenantDescriptor) -> TenantDescriptor:
        self._target = tenant
        self._refresher.session.bound_tenant_id = tenant.tenant_id
        self._transition(SwitchState.BOUND, tenant.tenant_id)
        logger.info("Bound to tenant %s (%s)", tenant.display_name, tenant.tenant_id)
        return tenant

    def _fail(self, reason: SwitchFailureReason, message: str) -> TenantSwitchFailed:
        self._mark_failed(reason)
        tenant_id = self._target.tenant_id if self._target else None
        logger.warning("%s: %s", reason.value, message)
        if reason is SwitchFailureReason.VERIFICATION_MISMATCH:
            return VerificationMismatch(message, tenant_id)
        return TenantSwitchFailed(message, tenant_id)

    def _mark_failed(self, reason: SwitchFailureReason) -> None:
        self._failure_reason = reason
        self._refresher.session.bound_tenant_id = None
        self._transition(SwitchState.SWITCH_FAILED, self._target.tenant_id if self._target else None)

    def _transition(self, state: SwitchState, tenant_id: str | None) -> None:
        logger.debug("Switcher: %s -> %s(%s)", self._state.value, state.value, tenant_id or "")
        self._state = state
        self.history.append((state, tenant_id))


def _with_name(tenant: TenantDescriptor, reported_name: str | None) -> TenantDescriptor:
    """Fill a missing display name from the verification response."""
    if tenant.name or not reported_name:
        return tenant
    return tenant.model_copy(update={"name": reported_name})
