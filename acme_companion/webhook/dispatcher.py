"""Pushes issued certificates to the downstream proxy, in order, one at a time."""

import logging
from typing import Optional

import httpx

from ..certmanager.models import CertificateRecord
from ..shared.config import DEFAULT_WEBHOOK_PATH
from ..shared.exceptions import WebhookDeliveryError
from ..shared.work_queue import SerialWorkQueue

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Delivers certificate material to a configured HTTP endpoint.

    Failed deliveries are logged and not retried; the certificate stays in
    storage and is pushed again on the next acquisition for its domain set.
    """

    def __init__(
        self,
        host: str,
        port: int = 8080,
        path: str = DEFAULT_WEBHOOK_PATH,
        method: str = "PUT",
        scheme: str = "http",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.host = host
        self.port = port
        self.path = path
        self.method = method.upper()
        self.scheme = scheme
        self.client = client or httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(timeout)
        )
        self.queue = SerialWorkQueue("webhook", self._deliver_logged)

    @classmethod
    def from_config(cls, config) -> "WebhookDispatcher":
        return cls(
            host=config.webhook_host,
            port=config.webhook_port,
            path=config.webhook_path,
            method=config.webhook_method,
            scheme=config.webhook_scheme,
            timeout=config.webhook_timeout
        )

    def url_for(self, subject: str) -> str:
        path = self.path.replace("{cert_subject}", subject)
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.scheme}://{self.host}:{self.port}{path}"

    def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()
        await self.client.aclose()

    def push(self, cert: CertificateRecord) -> None:
        """Queue a certificate for delivery."""
        self.queue.push(cert)

    async def deliver(self, cert: CertificateRecord) -> int:
        """Send one certificate; returns the response status.

        Raises:
            WebhookDeliveryError: transport failure or non-2xx response
        """
        url = self.url_for(cert.subject)
        logger.info(f"Pushing certificate for {cert.subject} to {self.method} {url}")
        try:
            response = await self.client.request(
                self.method,
                url,
                content=cert.webhook_body().encode('utf-8'),
                headers={"Content-Type": "text/plain; charset=utf-8"}
            )
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(
                f"Webhook request for {cert.subject} failed: {e}", cert.subject
            ) from e

        logger.info(f"Webhook Status: {response.status_code}")
        if response.text:
            logger.debug(f"Webhook response: {response.text}")

        if not response.is_success:
            raise WebhookDeliveryError(
                f"Webhook rejected certificate for {cert.subject} with status {response.status_code}",
                cert.subject,
                status_code=response.status_code
            )
        return response.status_code

    async def _deliver_logged(self, cert: CertificateRecord) -> None:
        try:
            await self.deliver(cert)
        except WebhookDeliveryError as e:
            # TODO: retry failed deliveries using the acquisition backoff policy
            logger.error(f"Certificate delivery failed for {e.subject}, not retrying: {e}")
