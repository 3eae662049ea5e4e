"""Keeps the domain registry in line with the labelled Swarm services."""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .discovery import DockerServiceDiscovery
from .models import DiscoveredService, ReconcileResult
from ..certmanager.models import DomainSet
from ..certmanager.pipeline import AcquisitionPipeline
from ..certmanager.registry import DomainRegistry, parse_hostnames
from ..certmanager.scheduler import create_scheduler
from ..shared.exceptions import DiscoveryError

logger = logging.getLogger(__name__)


class DiscoveryReconciler:
    """Diffs discovered labels against the registry.

    A label is queued for acquisition once, when first seen. Labels that
    disappear are removed from the registry and their pending task is
    cancelled. All hostnames of one label share one certificate.
    """

    JOB_ID = 'docker_polling'

    def __init__(
        self,
        registry: DomainRegistry,
        pipeline: AcquisitionPipeline,
        discovery: DockerServiceDiscovery,
        default_email: Optional[str] = None,
        poll_interval: int = 60,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.registry = registry
        self.pipeline = pipeline
        self.discovery = discovery
        self.default_email = default_email
        self.poll_interval = poll_interval
        self.scheduler = scheduler or create_scheduler()

    def reconcile(self, services: Iterable[DiscoveredService]) -> ReconcileResult:
        """Apply one discovery snapshot to the registry."""
        result = ReconcileResult()

        current: Dict[str, DiscoveredService] = {}
        for service in services:
            # Several services may share one label; the first one wins
            current.setdefault(service.label, service)

        for key in self.registry.keys():
            if key not in current:
                logger.info(f"Removing certificate from managed list {key}")
                self.pipeline.cancel(key)
                self.registry.remove(key)
                result.removed.append(key)

        for label, service in current.items():
            if label in self.registry:
                continue

            hostnames = parse_hostnames(label)
            if not hostnames:
                logger.warning(f"Service {service.service_name} has no usable hostnames in label {label!r}")
                result.skipped.append(label)
                continue

            email = service.email or self.default_email
            if not email:
                logger.warning(f"Service {service.service_name} has no contact email for {label}, skipping")
                result.skipped.append(label)
                continue

            domain_set = DomainSet(key=label, hostnames=hostnames, email=email)
            if self.registry.add(domain_set):
                logger.info(f"Adding new certificate to queue {label}")
                self.pipeline.submit(domain_set)
                result.added.append(label)

        return result

    async def poll(self) -> Optional[ReconcileResult]:
        """Query Docker and reconcile; discovery errors are logged, never raised."""
        logger.info("Polling docker labels ...")
        try:
            services = await self.discovery.list_services()
        except DiscoveryError as e:
            logger.error(f"Docker discovery failed: {e}")
            return None

        try:
            result = self.reconcile(services)
        except Exception as e:
            logger.error(f"An unexpected error occurred while reconciling services: {e}", exc_info=True)
            return None

        if result.changed:
            logger.info(f"Reconciled services: {len(result.added)} added, {len(result.removed)} removed")
        return result

    def start(self):
        """Schedule polling at a fixed interval, with a first run right away."""
        self.scheduler.add_job(
            self.poll,
            'interval',
            seconds=self.poll_interval,
            id=self.JOB_ID,
            next_run_time=datetime.now(),
            replace_existing=True
        )
        if not self.scheduler.running:
            self.scheduler.start()

        logger.info(f"Docker service polling every {self.poll_interval}s")

    def stop(self):
        if self.scheduler.get_job(self.JOB_ID):
            self.scheduler.remove_job(self.JOB_ID)
            logger.info("Docker service polling stopped")
