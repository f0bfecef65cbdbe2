"""Scheduled entry points for the deal update pipeline."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from dealwatch import metrics
from dealwatch.config import settings
from dealwatch.db.base import DealRepository
from dealwatch.logging_config import get_logger
from dealwatch.stores.base import StoreType
from dealwatch.worker.orchestrator import (
    DealUpdateOrchestrator,
    NewListingQuery,
    RefreshReport,
    RunCancelledError,
)

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for the three scheduled jobs.

    Each job logs a start line and an end summary, records a scheduler
    metric, and never lets an exception reach the scheduler.
    """

    def __init__(self, orchestrator: DealUpdateOrchestrator, repository: DealRepository):
        self.orchestrator = orchestrator
        self.repository = repository
        # Set on shutdown; running jobs stop admitting new items
        self.cancel_event = asyncio.Event()
        self.running_jobs = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def request_stop(self):
        self.cancel_event.set()

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no job is running. Returns False if the timeout expired first."""
        if self._idle.is_set():
            return True
        try:
            await asyncio.wait_for(self._idle.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    @asynccontextmanager
    async def _running(self):
        self.running_jobs += 1
        self._idle.clear()
        try:
            yield
        finally:
            self.running_jobs -= 1
            if self.running_jobs == 0:
                self._idle.set()

    async def refresh_deals(self, batch_size: Optional[int] = None) -> Optional[RefreshReport]:
        """Refresh a batch of due deals."""
        async with self._running():
            return await self._refresh_deals(batch_size)

    async def sweep_expired_deals(self) -> Optional[int]:
        """Expire deals past their expiration timestamp."""
        async with self._running():
            return await self._sweep_expired_deals()

    async def ingest_new_listings(self, store_keys: Optional[list[str]] = None) -> Optional[int]:
        """Search each configured store for new listings of active products."""
        async with self._running():
            return await self._ingest_new_listings(store_keys)

    async def _refresh_deals(self, batch_size: Optional[int]) -> Optional[RefreshReport]:
        if batch_size is None:
            batch_size = settings.refresh_batch_size
        log = get_logger(__name__, job="refresh", run_id=uuid4().hex)
        log.info(f"RefreshDeals started (batch size {batch_size})")

        try:
            report = await self.orchestrator.refresh_deals(batch_size, self.cancel_event)
        except RunCancelledError as e:
            report = e.result
            log.warning(
                f"RefreshDeals cancelled. Total={report.total} Updated={report.updated} "
                f"Expired={report.expired} Sold={report.sold} Errors={report.errors}"
            )
            metrics.record_scheduler_run("refresh", success=False)
            return report
        except Exception as e:
            log.error(f"RefreshDeals failed: {e}", exc_info=True)
            metrics.record_scheduler_run("refresh", success=False)
            return None

        log.info(
            f"RefreshDeals completed. Total={report.total} Updated={report.updated} "
            f"Expired={report.expired} Sold={report.sold} Errors={report.errors}"
        )
        metrics.record_scheduler_run("refresh", success=True)
        return report

    async def _sweep_expired_deals(self) -> Optional[int]:
        log = get_logger(__name__, job="sweep", run_id=uuid4().hex)
        log.info("SweepExpiredDeals started")

        try:
            expired = await self.orchestrator.sweep_expired_deals(self.cancel_event)
        except RunCancelledError as e:
            log.warning(f"SweepExpiredDeals cancelled. Expired={e.result}")
            metrics.record_scheduler_run("sweep", success=False)
            return e.result
        except Exception as e:
            log.error(f"SweepExpiredDeals failed: {e}", exc_info=True)
            metrics.record_scheduler_run("sweep", success=False)
            return None

        log.info(f"SweepExpiredDeals completed. Expired={expired}")
        metrics.record_scheduler_run("sweep", success=True)
        return expired

    async def build_queries(self) -> list[NewListingQuery]:
        """One search per active product, using its name as the search text."""
        products = await self.repository.get_active_products()
        return [
            NewListingQuery(product_id=p.id, query=p.name.strip())
            for p in products
            if p.name and p.name.strip()
        ]

    async def _ingest_new_listings(self, store_keys: Optional[list[str]]) -> Optional[int]:
        store_keys = store_keys if store_keys is not None else settings.ingest_store_keys
        log = get_logger(__name__, job="ingest", run_id=uuid4().hex)
        log.info(f"IngestNewListings started (stores: {', '.join(store_keys) or 'none'})")

        created = 0
        try:
            queries = await self.build_queries()
            if not queries:
                log.info("No active products with names; nothing to ingest")

            for key in store_keys:
                store_type = StoreType.from_key(key)
                if store_type is None:
                    log.info(f"Store '{key}' is not a known store type; skipping")
                    continue
                created += await self.orchestrator.ingest_new_listings(
                    store_type,
                    settings.ingest_max_results_per_query,
                    queries,
                    self.cancel_event,
                )
        except RunCancelledError as e:
            created += e.result
            log.warning(f"IngestNewListings cancelled. Created={created}")
            metrics.record_scheduler_run("ingest", success=False)
            return created
        except Exception as e:
            log.error(f"IngestNewListings failed: {e}", exc_info=True)
            metrics.record_scheduler_run("ingest", success=False)
            return None

        log.info(f"IngestNewListings completed. Created={created}")
        metrics.record_scheduler_run("ingest", success=True)
        return created
