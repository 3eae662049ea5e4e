"""Serialized certificate acquisition with staging pre-control and retry/backoff."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from .acme_client import ACMEClient
from .models import CertificateRecord, DomainSet, Task
from .registry import DomainRegistry
from ..shared.config import Settings
from ..shared.exceptions import (
    AcquisitionError,
    AcquisitionTimeoutError,
    IssuanceError,
    RenewalError,
    StagingValidationError,
)
from ..shared.work_queue import SerialWorkQueue

logger = logging.getLogger(__name__)


class AcquisitionPipeline:
    """Obtains certificates for domain sets, one task at a time.

    Successful results are pushed to the webhook dispatcher (if any).
    Failed tasks are re-queued after ``retry_count * retry_interval``
    seconds until ``max_retry`` is exceeded.
    """

    def __init__(
        self,
        registry: DomainRegistry,
        staging: ACMEClient,
        production: ACMEClient,
        config: Settings,
        webhook=None,
        executor: Optional[ThreadPoolExecutor] = None,
        issuer_executor: Optional[ThreadPoolExecutor] = None
    ):
        self.registry = registry
        self.staging = staging
        self.production = production
        self.config = config
        self.webhook = webhook
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="acme")
        # At most one issuer call in flight, including one orphaned by a timeout
        self.issuer_executor = issuer_executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="acme-issue")
        self.queue = SerialWorkQueue("acquisition", self.process)
        # One outstanding task per key: queued, in flight or waiting to retry
        self._outstanding: Dict[str, Task] = {}

    def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.issuer_executor.shutdown(wait=False, cancel_futures=True)

    def is_outstanding(self, key: str) -> bool:
        return key in self._outstanding

    def submit(self, domain_set: DomainSet) -> bool:
        """Queue an acquisition for ``domain_set`` unless one is already outstanding."""
        if domain_set.key in self._outstanding:
            logger.debug(f"Acquisition already outstanding for {domain_set.key}, not queueing again")
            return False
        task = Task(domain_set)
        self._outstanding[domain_set.key] = task
        self.queue.push(task)
        logger.info(f"Queued certificate acquisition for {','.join(domain_set.hostnames)}")
        return True

    def cancel(self, key: str) -> bool:
        """Drop the outstanding task for ``key``; an in-flight attempt is left to finish."""
        task = self._outstanding.pop(key, None)
        if task is None:
            return False
        task.cancelled = True
        self.queue.cancel_timer(task.retry_handle)
        task.retry_handle = None
        logger.info(f"Cancelled pending acquisition for {key}")
        return True

    def _release(self, task: Task) -> None:
        if self._outstanding.get(task.key) is task:
            del self._outstanding[task.key]

    async def _run_blocking(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, func, *args)

    async def _run_issuer(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.issuer_executor, func, *args)

    async def acquire(self, domain_set: DomainSet) -> CertificateRecord:
        """Return a valid certificate for ``domain_set``, issuing or renewing as needed."""
        hostnames = list(domain_set.hostnames)
        names = ','.join(hostnames)

        logger.info(f"Checking certificate for domains {names} ...")
        try:
            cached = await self._run_blocking(self.production.check, hostnames)
        except Exception as e:
            raise IssuanceError(f"Cannot read stored certificate for {names}: {e}", hostnames) from e

        threshold = self.config.renewal_threshold_days
        if cached and not cached.needs_renewal(threshold):
            logger.info(
                f"Found certificate in storage for domains {names} "
                f"({cached.remaining().days} days remaining)"
            )
            return cached

        if self.config.disable_staging_precontrol:
            logger.debug(f"Staging pre-control disabled, skipping for {names}")
        else:
            logger.info(f"Trying to acquire staging certificate for domains {names} ...")
            try:
                await self._run_issuer(self.staging.issue, hostnames, domain_set.email)
            except Exception as e:
                raise StagingValidationError(
                    f"Staging pre-control failed for {names}: {e}", hostnames
                ) from e

        if cached:
            logger.info(f"Trying to renew production certificate for domains {names} ...")
            try:
                record = await self._run_issuer(self.production.renew, hostnames, domain_set.email)
            except Exception as e:
                raise RenewalError(f"Failed to renew production certificate for {names}: {e}", hostnames) from e
        else:
            logger.info(f"Trying to acquire production certificate for domains {names} ...")
            try:
                record = await self._run_issuer(self.production.issue, hostnames, domain_set.email)
            except Exception as e:
                raise IssuanceError(f"Failed to get production certificate for {names}: {e}", hostnames) from e

        logger.info(f"Successfully got certificate for domains {names}")
        return record

    async def process(self, task: Task) -> None:
        """Queue handler: run one acquisition attempt and apply the retry policy."""
        task.retry_handle = None
        if task.cancelled or task.key not in self.registry:
            logger.info(f"Skipping acquisition for {task.key}: no longer managed")
            self._release(task)
            return

        domain_set = task.domain_set
        try:
            record = await asyncio.wait_for(
                self.acquire(domain_set),
                timeout=self.config.acquisition_timeout
            )
        except asyncio.TimeoutError:
            error = AcquisitionTimeoutError(
                f"Acquisition for {task.key} exceeded {self.config.acquisition_timeout}s",
                domain_set.hostnames
            )
        except AcquisitionError as e:
            error = e
        except Exception as e:
            logger.error(f"Unexpected error acquiring certificate for {task.key}: {e}", exc_info=True)
            error = e
        else:
            self._on_success(task, record)
            return

        self._on_failure(task, error)

    def _on_success(self, task: Task, record: CertificateRecord) -> None:
        task.retry_count = 0
        task.domain_set.retry_count = 0
        self._release(task)

        if task.cancelled or task.key not in self.registry:
            logger.info(f"Discarding certificate for {record.subject}: {task.key} is no longer managed")
            return

        if self.webhook is not None:
            self.webhook.push(record)

    def _on_failure(self, task: Task, error: Exception) -> None:
        task.retry_count += 1
        task.domain_set.retry_count = task.retry_count

        if task.cancelled:
            self._release(task)
            return

        if task.retry_count > self.config.max_retry:
            logger.error(
                f"Giving up on {task.key} after {task.retry_count} failed attempts "
                f"(max {self.config.max_retry}): {error}"
            )
            self._release(task)
            return

        delay = task.retry_count * self.config.retry_interval
        logger.warning(
            f"{type(error).__name__} for {task.key} (attempt {task.retry_count}): {error}; "
            f"retrying in {delay}s"
        )
        task.retry_handle = self.queue.push_later(delay, task)
