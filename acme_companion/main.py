"""Main entry point for the ACME companion."""

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from .api.server import create_challenge_app
from .certmanager import (
    ACMEClient,
    AcquisitionPipeline,
    CertificateStorage,
    ChallengeResponder,
    ChallengeStore,
    DomainRegistry,
    ExpiryScheduler,
    PRODUCTION,
    STAGING,
    create_scheduler,
)
from .docker import DiscoveryReconciler, DockerServiceDiscovery
from .shared.config import Settings, get_config
from .shared.python_logger_config import setup_python_logging
from .webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything the running process owns, wired together."""
    config: Settings
    registry: DomainRegistry
    responder: ChallengeResponder
    pipeline: AcquisitionPipeline
    expiry: ExpiryScheduler
    scheduler: AsyncIOScheduler
    app: FastAPI
    webhook: Optional[WebhookDispatcher] = None
    reconciler: Optional[DiscoveryReconciler] = None


def initialize_components(config: Settings) -> Components:
    """Build all components and inject their shared dependencies."""
    staging_store = ChallengeStore(STAGING, ttl=config.challenge_ttl)
    production_store = ChallengeStore(PRODUCTION, ttl=config.challenge_ttl)
    responder = ChallengeResponder(staging_store, production_store)

    staging = ACMEClient(
        STAGING,
        config.acme_staging_url,
        CertificateStorage(config.acme_staging_storage, STAGING),
        staging_store,
        rsa_key_size=config.rsa_key_size,
        poll_timeout=config.acme_poll_timeout
    )
    production = ACMEClient(
        PRODUCTION,
        config.acme_directory_url,
        CertificateStorage(config.acme_production_storage, PRODUCTION),
        production_store,
        rsa_key_size=config.rsa_key_size,
        poll_timeout=config.acme_poll_timeout
    )

    webhook = WebhookDispatcher.from_config(config) if config.webhook_enabled else None
    if webhook is None:
        logger.info("No webhook host configured, certificates will not be pushed")

    registry = DomainRegistry()
    pipeline = AcquisitionPipeline(registry, staging, production, config, webhook=webhook)

    scheduler = create_scheduler()
    expiry = ExpiryScheduler(
        registry,
        pipeline,
        production,
        check_interval=config.expiry_check_interval,
        threshold_days=config.renewal_threshold_days,
        scheduler=scheduler,
        challenge_stores=[staging_store, production_store]
    )

    reconciler = None
    if config.docker_polling:
        discovery = DockerServiceDiscovery(
            host_label=config.docker_label_host,
            email_label=config.docker_label_email,
            docker_host=config.docker_host
        )
        reconciler = DiscoveryReconciler(
            registry,
            pipeline,
            discovery,
            default_email=config.acme_email,
            poll_interval=config.docker_polling_interval,
            scheduler=scheduler
        )
    else:
        logger.info("Docker polling disabled")

    return Components(
        config=config,
        registry=registry,
        responder=responder,
        pipeline=pipeline,
        expiry=expiry,
        scheduler=scheduler,
        app=create_challenge_app(responder),
        webhook=webhook,
        reconciler=reconciler
    )


async def run_server(config: Settings) -> None:
    """Run the challenge server and all background loops until cancelled."""
    from hypercorn.asyncio import serve
    from hypercorn.config import Config as HypercornConfig

    components = initialize_components(config)

    hypercorn_config = HypercornConfig()
    hypercorn_config.bind = [f"{config.server_host}:{config.http_port}"]
    hypercorn_config.loglevel = "WARNING"

    logger.info(f"Starting letsencrypt server on port {config.http_port}")
    # A bind failure (e.g. port 80 in use) surfaces when awaiting the task
    server_task = asyncio.create_task(serve(components.app, hypercorn_config))

    if components.webhook:
        components.webhook.start()
    components.pipeline.start()
    components.expiry.start()
    if components.reconciler:
        logger.info("Starting docker service polling")
        components.reconciler.start()

    try:
        await server_task
    finally:
        if components.scheduler.running:
            components.scheduler.shutdown(wait=False)
        await components.pipeline.stop()
        if components.webhook:
            await components.webhook.stop()
        logger.info("All components stopped")


def main() -> None:
    """Main entry point for CLI execution."""
    try:
        config = get_config()
        setup_python_logging(config.effective_log_level)

        logger.info("=" * 60)
        logger.info("ACME COMPANION STARTING")
        logger.info("=" * 60)
        logger.info(
            f"Configuration loaded: port={config.http_port}, staging_precontrol="
            f"{not config.disable_staging_precontrol}, renewal_threshold={config.renewal_threshold_days}d"
        )

        asyncio.run(run_server(config))

    except KeyboardInterrupt:
        logger.info("Shutting down ACME companion (interrupted)")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Failed to start ACME companion: {e}", exc_info=True)
        print(f"ERROR: Failed to start ACME companion: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
