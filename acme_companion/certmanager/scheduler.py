"""Periodic job scheduling and the certificate expiry sweep."""

import asyncio
import logging
from typing import List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .acme_client import ACMEClient
from .challenges import ChallengeStore
from .pipeline import AcquisitionPipeline
from .registry import DomainRegistry

logger = logging.getLogger(__name__)


def create_scheduler() -> AsyncIOScheduler:
    """Scheduler shared by the periodic loops.

    ``max_instances=1`` keeps a loop from overlapping itself and
    ``coalesce`` collapses missed runs into one.
    """
    return AsyncIOScheduler(
        jobstores={
            'default': MemoryJobStore()
        },
        executors={
            'default': AsyncIOExecutor()
        },
        job_defaults={
            'coalesce': True,
            'max_instances': 1
        }
    )


class ExpiryScheduler:
    """Re-queues managed domain sets whose certificate is missing or near expiry."""

    JOB_ID = 'expiry_sweep'

    def __init__(
        self,
        registry: DomainRegistry,
        pipeline: AcquisitionPipeline,
        production: ACMEClient,
        check_interval: int = 86400,
        threshold_days: int = 15,
        scheduler: Optional[AsyncIOScheduler] = None,
        challenge_stores: Optional[List[ChallengeStore]] = None
    ):
        self.registry = registry
        self.pipeline = pipeline
        self.production = production
        self.check_interval = check_interval
        self.threshold_days = threshold_days
        self.scheduler = scheduler or create_scheduler()
        self.challenge_stores = list(challenge_stores or [])

    def start(self):
        """Schedule the periodic sweep, starting the scheduler if needed."""
        self.scheduler.add_job(
            self.sweep,
            'interval',
            seconds=self.check_interval,
            id=self.JOB_ID,
            replace_existing=True
        )
        if not self.scheduler.running:
            self.scheduler.start()

        logger.info(f"Expiry sweep scheduled every {self.check_interval}s (threshold {self.threshold_days} days)")

    def stop(self):
        """Remove the sweep job."""
        if self.scheduler.get_job(self.JOB_ID):
            self.scheduler.remove_job(self.JOB_ID)
            logger.info("Expiry sweep stopped")

    async def _needs_acquisition(self, hostnames: List[str]) -> bool:
        loop = asyncio.get_running_loop()
        record = await loop.run_in_executor(self.pipeline.executor, self.production.check, hostnames)
        if record is None:
            return True
        return record.needs_renewal(self.threshold_days)

    async def sweep(self) -> List[str]:
        """Check every managed domain set and queue the ones that need a certificate.

        Expired challenge secrets are dropped first. Returns the keys that were queued.
        """
        logger.info("Checking certificates for renewal")
        for store in self.challenge_stores:
            purged = store.purge_expired()
            if purged:
                logger.info(f"Purged {purged} expired {store.environment} challenges")

        queued = []

        for domain_set in self.registry.snapshot():
            try:
                if not await self._needs_acquisition(domain_set.hostnames):
                    continue
                # Removed while the check was running
                if self.registry.get(domain_set.key) is not domain_set:
                    continue
                if self.pipeline.submit(domain_set):
                    queued.append(domain_set.key)
                    logger.info(f"Scheduled renewal for {','.join(domain_set.hostnames)}")
            except Exception as e:
                logger.error(f"Error checking certificate for {domain_set.key}: {e}")

        logger.info(f"Renewal check finished: {len(queued)} of {len(self.registry)} domain sets queued")
        return queued
