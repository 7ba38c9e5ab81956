"""Per-record detail enrichment, grouped by tenant.

Records are grouped by tenant so each tenant is switched to at most once.
Within a bound tenant, detail fetches run in batches of ``max_concurrent``;
cancellation is checked between batches, letting in-flight fetches drain.
"""

import asyncio
import logging

from src.client.catalog import QueryCatalog
from src.client.executor import QueryExecutor
from src.client.queries import APPLICATION_DETAIL
from src.core.errors import ExtractionError, TenantSwitchFailed
from src.core.schemas import CandidateRecord, QueryOperation, TenantDescriptor
from src.pipeline.details import parse_application_detail
from src.pipeline.scheduling import SchedulingPolicy
from src.tenants.switcher import TenantContextSwitcher

logger = logging.getLogger(__name__)


class EnrichmentPipeline:
    """Adds interview/feedback detail to extracted candidates.

    Usage::

        pipeline = EnrichmentPipeline(switcher, executor, catalog, policy, max_concurrent=5)
        candidates = await pipeline.enrich(candidates, tenants)
    """

    def __init__(
        self,
        switcher: TenantContextSwitcher,
        executor: QueryExecutor,
        catalog: QueryCatalog,
        policy: SchedulingPolicy,
        *,
        max_concurrent: int = 5,
        only_if_flagged: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        if max_concurrent < 1:
            msg = "max_concurrent must be at least 1"
            raise ValueError(msg)
        self._switcher = switcher
        self._executor = executor
        self._catalog = catalog
        self._policy = policy
        self._max_concurrent = max_concurrent
        self._only_if_flagged = only_if_flagged
        self._cancel_event = cancel_event
        self.enriched = 0
        self.failed = 0
        self.aborted_reason: str | None = None
        self.cancelled = False

    async def enrich(
        self,
        records: list[CandidateRecord],
        tenants: list[TenantDescriptor],
    ) -> list[CandidateRecord]:
        """Return ``records`` in the same order, enriched where possible."""
        operation = self._catalog.resolve(APPLICATION_DETAIL)
        by_id = {t.tenant_id: t for t in tenants}
        result = list(records)

        groups: dict[str, list[int]] = {}
        for index, record in enumerate(records):
            groups.setdefault(record.tenant_id, []).append(index)
        logger.info(
            "Enriching %d candidates across %d tenants (max %d concurrent)",
            len(records), len(groups), self._max_concurrent,
        )

        for tenant_id, indexes in groups.items():
            if self._is_cancelled():
                break
            eligible = [i for i in indexes if self._is_eligible(records[i])]
            if not eligible:
                continue
            tenant = by_id.get(tenant_id)
            if tenant is None:
                logger.warning("No descriptor for tenant %s, skipping %d records", tenant_id, len(eligible))
                continue

            try:
                await self._switcher.ensure_bound(tenant)
            except TenantSwitchFailed as e:
                logger.warning("Skipping enrichment for %s: %s", tenant.display_name, e)
                self._switcher.reset()
                continue
            except ExtractionError as e:
                self._abort(e)
                break

            if not await self._enrich_group(operation, eligible, result):
                break
            logger.info("Enriched tenant %s (%d records)", tenant.display_name, len(eligible))

        logger.info("Enrichment done: %d enriched, %d failed", self.enriched, self.failed)
        return result

    async def _enrich_group(
        self, operation: QueryOperation, indexes: list[int], result: list[CandidateRecord],
    ) -> bool:
        """Enrich one tenant's records in place. False when the run must stop."""
        for start in range(0, len(indexes), self._max_concurrent):
            if self._is_cancelled():
                return False
            batch = indexes[start:start + self._max_concurrent]
            outcomes = await asyncio.gather(
                *(self._enrich_one(operation, result[i]) for i in batch),
                return_exceptions=True,
            )
            fatal: ExtractionError | None = None
            for index, outcome in zip(batch, outcomes):
                if isinstance(outcome, ExtractionError):
                    fatal = fatal or outcome
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result[index] = outcome
            if fatal is not None:
                self._abort(fatal)
                return False
        return True

    async def _enrich_one(self, operation: QueryOperation, record: CandidateRecord) -> CandidateRecord:
        try:
            data = await self._executor.run(operation, {"applicationId": record.application_id})
            application = data.get("application")
            if not isinstance(application, dict):
                logger.warning("No detail returned for application %s", record.application_id)
                self.failed += 1
                return record
            enrichment = parse_application_detail(application)
        except ExtractionError as e:
            if e.fatal_for_run:
                raise
            logger.warning("Detail fetch failed for application %s: %s", record.application_id, e)
            self.failed += 1
            return record
        except Exception:
            logger.warning(
                "Could not parse detail for application %s, keeping base record",
                record.application_id,
                exc_info=True,
            )
            self.failed += 1
            return record

        stage = application.get("currentInterviewStage") or {}
        self.enriched += 1
        return record.model_copy(update={
            "pipeline_stage": stage.get("title") or record.pipeline_stage,
            "enrichment": enrichment,
        })

    def _is_eligible(self, record: CandidateRecord) -> bool:
        if not record.application_id:
            return False
        return not self._only_if_flagged or self._policy(record)

    def _is_cancelled(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            if not self.cancelled:
                logger.warning("Cancellation requested, no further enrichment batches")
            self.cancelled = True
            return True
        return False

    def _abort(self, error: ExtractionError) -> None:
        logger.error("Enrichment stopped: %s", error)
        self.aborted_reason = error.code
