"""Worker entry point: wires the pipeline and runs the scheduler or a single job."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from prometheus_client import start_http_server

from dealwatch.config import settings
from dealwatch.db.models import Base
from dealwatch.db.repository import SqlAlchemyDealRepository
from dealwatch.db.session import create_engine, create_session_factory
from dealwatch.ingest.fetchers.headless import PlaywrightRenderer
from dealwatch.ingest.scraper import ListingScraper
from dealwatch.logging_config import setup_logging
from dealwatch.stores.base import StoreClient
from dealwatch.stores.ebay import EbayAuthService, EbayStoreClient
from dealwatch.worker.orchestrator import DealUpdateOrchestrator
from dealwatch.worker.scheduler import setup_scheduler
from dealwatch.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)


class Worker:
    """Owns the engine, HTTP clients and the task runner for one process."""

    def __init__(self, database_url: Optional[str] = None):
        self.engine = create_engine(database_url)
        self.repository = SqlAlchemyDealRepository(create_session_factory(self.engine))
        self.scraper = ListingScraper(
            renderer=PlaywrightRenderer() if settings.js_fallback_enabled else None,
        )
        self.store_clients = self._build_store_clients()
        self.orchestrator = DealUpdateOrchestrator(
            self.repository,
            self.scraper,
            store_clients=self.store_clients,
        )
        self.task_runner = TaskRunner(self.orchestrator, self.repository)

    @staticmethod
    def _build_store_clients() -> list[StoreClient]:
        clients: list[StoreClient] = []
        auth = EbayAuthService()
        if auth.configured:
            clients.append(EbayStoreClient(auth))
        else:
            logger.info("eBay credentials not set; eBay API refresh and ingestion disabled")
        return clients

    async def initialize(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready")

    async def close(self):
        for client in self.store_clients:
            try:
                await client.close()
            except Exception:
                logger.exception(f"Error closing {client.store_type.value} client")
        await self.scraper.close()
        await self.engine.dispose()


async def run_scheduler(worker: Worker):
    """Run all jobs on their schedules until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops
            pass

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Metrics exposed on :{settings.metrics_port}")

    scheduler = setup_scheduler(worker.task_runner)
    scheduler.start()
    logger.info("Scheduler started")

    await stop.wait()

    logger.info("Shutting down...")
    worker.task_runner.request_stop()
    scheduler.shutdown(wait=False)
    if not await worker.task_runner.wait_idle(settings.shutdown_grace_seconds):
        logger.warning(
            f"{worker.task_runner.running_jobs} job(s) still running after "
            f"{settings.shutdown_grace_seconds}s; closing anyway"
        )


async def run(args: argparse.Namespace) -> int:
    worker = Worker(args.database_url)
    try:
        await worker.initialize()

        if args.command == "run":
            await run_scheduler(worker)
            return 0
        if args.command == "refresh":
            report = await worker.task_runner.refresh_deals(args.batch_size)
            return 0 if report is not None else 1
        if args.command == "sweep":
            expired = await worker.task_runner.sweep_expired_deals()
            return 0 if expired is not None else 1
        if args.command == "ingest":
            store_keys = [k.strip().lower() for k in args.stores.split(",") if k.strip()] if args.stores else None
            created = await worker.task_runner.ingest_new_listings(store_keys)
            return 0 if created is not None else 1
        return 2
    finally:
        await worker.close()
        logger.info("Shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dealwatch", description="Deal price and availability worker")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run all jobs on their schedules")

    refresh = subparsers.add_parser("refresh", help="Refresh one batch of due deals")
    refresh.add_argument("--batch-size", type=int, default=None)

    subparsers.add_parser("sweep", help="Expire deals past their expiration time")

    ingest = subparsers.add_parser("ingest", help="Search stores for new listings")
    ingest.add_argument("--stores", default=None, help="Comma-separated store keys (default: INGEST_STORES)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
