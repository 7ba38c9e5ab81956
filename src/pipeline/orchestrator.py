"""Orchestrator: wires discovery, tenant switching, extraction and enrichment.

Data flow:
  1. Discover tenants (once)
  2. Filter by name substring, cap the count
  3. Per tenant, strictly sequential:
       switch + verify → open jobs → active applications (paginated) → normalize
  4. Optional enrichment, grouped by tenant
  5. Result = union of successful tenants + failure report

Tenant-local errors are recorded and the loop continues; run-fatal errors
stop the loop and the partial result is returned.
"""

import asyncio
import logging
from datetime import datetime, timezone

from src.client.catalog import QueryCatalog
from src.client.credentials import CredentialRefresher
from src.client.executor import QueryExecutor
from src.client.queries import ACTIVE_APPLICATIONS, OPEN_JOBS
from src.client.transport import RemoteTransport
from src.core.config import ExtractionConfig, Settings
from src.core.errors import ExtractionError, QueryFatalError, TenantLocalError
from src.core.schemas import (
    ExtractionResult,
    QueryOperation,
    TenantDescriptor,
    TenantExtraction,
    TenantFailure,
)
from src.pipeline.enrichment import EnrichmentPipeline
from src.pipeline.normalize import normalize_tenant
from src.pipeline.scheduling import SchedulingPolicy
from src.session.state import SessionState
from src.tenants.registry import TenantRegistry
from src.tenants.switcher import TenantContextSwitcher

logger = logging.getLogger(__name__)


def select_tenants(
    tenants: list[TenantDescriptor],
    options: ExtractionConfig,
) -> list[TenantDescriptor]:
    """Apply the name filter, then the count cap. Order is preserved."""
    selected = tenants
    if options.tenant_filter:
        needle = options.tenant_filter.lower()
        selected = [t for t in selected if needle in t.display_name.lower()]
        logger.info("Tenants matching '%s': %d", options.tenant_filter, len(selected))
    if options.max_tenants is not None:
        selected = selected[:options.max_tenants]
    return selected


class ExtractionOrchestrator:
    """Runs the base extraction across tenants, one at a time."""

    def __init__(
        self,
        switcher: TenantContextSwitcher,
        executor: QueryExecutor,
        catalog: QueryCatalog,
        policy: SchedulingPolicy,
        options: ExtractionConfig,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._switcher = switcher
        self._executor = executor
        self._catalog = catalog
        self._policy = policy
        self._options = options
        self._cancel_event = cancel_event
        self.bound_tenants: dict[str, TenantDescriptor] = {}

    async def extract(self, tenants: list[TenantDescriptor]) -> ExtractionResult:
        """Extract every selected tenant. Never raises for tenant-local failures."""
        operations = self._catalog.resolve_all([OPEN_JOBS, ACTIVE_APPLICATIONS])
        selected = select_tenants(tenants, self._options)
        result = ExtractionResult()
        logger.info("Processing %d tenant(s)", len(selected))

        for position, tenant in enumerate(selected):
            if self._cancel_event is not None and self._cancel_event.is_set():
                logger.warning("Cancellation requested, stopping before %s", tenant.display_name)
                result.cancelled = True
                result.skipped_tenants = [t.tenant_id for t in selected[position:]]
                break

            logger.info(
                "[%d/%d] Tenant %s (%s)",
                position + 1, len(selected), tenant.display_name, tenant.tenant_id,
            )
            try:
                extraction = await self._extract_tenant(tenant, operations)
            except TenantLocalError as e:
                self._record_failure(result, tenant, e)
                self._switcher.reset()
            except ExtractionError as e:
                logger.error("Run aborted at %s: %s", tenant.display_name, e)
                self._record_failure(result, tenant, e)
                self._switcher.reset()
                result.aborted_reason = e.code
                result.skipped_tenants = [t.tenant_id for t in selected[position + 1:]]
                break
            else:
                result.add(extraction)
                logger.info(
                    "  %d jobs, %d candidates",
                    len(extraction.jobs), len(extraction.candidates),
                )

            if position < len(selected) - 1 and self._options.tenant_delay_s:
                await asyncio.sleep(self._options.tenant_delay_s)

        result.finished_at = datetime.now()
        return result

    async def _extract_tenant(
        self,
        tenant: TenantDescriptor,
        operations: dict[str, QueryOperation],
    ) -> TenantExtraction:
        bound = await self._switcher.switch(tenant)
        self.bound_tenants[bound.tenant_id] = bound

        jobs_data = await self._executor.run(operations[OPEN_JOBS])
        jobs_pipelines = jobs_data.get("jobsPipelines")
        if not isinstance(jobs_pipelines, list):
            msg = f"{OPEN_JOBS}: 'jobsPipelines' is not a list"
            raise QueryFatalError(msg, tenant.tenant_id)
        logger.info("  Found %d open jobs", len(jobs_pipelines))

        applications = await self._executor.run_paginated(operations[ACTIVE_APPLICATIONS])
        logger.info("  Fetched %d active applications", len(applications))

        return normalize_tenant(
            bound,
            jobs_pipelines,
            applications,
            self._policy,
            days_source=self._options.days_in_stage_source,
            now=datetime.now(timezone.utc),
        )

    @staticmethod
    def _record_failure(
        result: ExtractionResult,
        tenant: TenantDescriptor,
        error: ExtractionError,
    ) -> None:
        logger.warning("  Tenant %s failed: %s: %s", tenant.display_name, error.code, error)
        result.failures.append(TenantFailure(
            tenant_id=tenant.tenant_id,
            tenant_name=tenant.name,
            reason=error.code,
            detail=str(error)[:300],
        ))


async def run_extraction(
    settings: Settings,
    session: SessionState,
    *,
    enrich: bool | None = None,
    transport: RemoteTransport | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ExtractionResult:
    """Full run: discover, extract, optionally enrich.

    Raises:
        SessionMissing / SessionInvalid / CredentialRefreshFailed: before any
            tenant was processed (discovery could not run).
    """
    catalog = QueryCatalog.from_recon_log(settings.catalog.recon_log_path)
    transport = transport or RemoteTransport(settings.http)
    policy = SchedulingPolicy.from_config(settings.scheduling)
    do_enrich = settings.enrichment.enabled if enrich is None else enrich

    async with transport:
        refresher = CredentialRefresher(
            transport, session, settings.http, settings.session.auth_cookie_names,
        )
        executor = QueryExecutor(
            transport,
            refresher,
            settings.http,
            page_size=settings.extraction.page_size,
            max_pages=settings.extraction.max_pages,
        )
        switcher = TenantContextSwitcher(
            transport, refresher, executor, catalog, settle_s=settings.http.switch_settle_s,
        )

        tenants = await TenantRegistry(transport, refresher, executor, catalog).discover()
        logger.info("Found %d accessible tenant(s)", len(tenants))

        orchestrator = ExtractionOrchestrator(
            switcher, executor, catalog, policy, settings.extraction, cancel_event=cancel_event,
        )
        result = await orchestrator.extract(tenants)

        if do_enrich and result.candidates and result.aborted_reason is None and not result.cancelled:
            # Names learned during verification replace missing ones.
            known = {t.tenant_id: t for t in tenants}
            known.update(orchestrator.bound_tenants)
            pipeline = EnrichmentPipeline(
                switcher,
                executor,
                catalog,
                policy,
                max_concurrent=settings.enrichment.max_concurrent,
                only_if_flagged=settings.enrichment.only_if_flagged,
                cancel_event=cancel_event,
            )
            result.candidates = await pipeline.enrich(result.candidates, list(known.values()))
            if pipeline.aborted_reason:
                result.aborted_reason = pipeline.aborted_reason
            result.cancelled = result.cancelled or pipeline.cancelled

    result.finished_at = datetime.now()
    logger.info(
        "Run %s: %d companies, %d jobs, %d candidates, %d failed tenant(s)",
        result.status.value, len(result.companies), len(result.jobs),
        len(result.candidates), len(result.failures),
    )
    return result
