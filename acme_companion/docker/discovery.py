"""Swarm service listing through the Docker CLI client."""

import asyncio
import logging
from typing import List, Optional

from python_on_whales import DockerClient
from python_on_whales.exceptions import DockerException

from .models import DiscoveredService
from ..shared.exceptions import DiscoveryError

logger = logging.getLogger(__name__)


class DockerServiceDiscovery:
    """Lists Swarm services labelled with managed hostnames."""

    def __init__(
        self,
        host_label: str = "com.df.letsencrypt.host",
        email_label: str = "com.df.letsencrypt.email",
        docker_host: Optional[str] = None,
        client: Optional[DockerClient] = None
    ):
        self.host_label = host_label
        self.email_label = email_label
        self.docker_host = docker_host
        self.client = client or DockerClient(host=docker_host)

    def _list_services_sync(self) -> List[DiscoveredService]:
        discovered = []
        for service in self.client.service.list():
            labels = (service.spec.labels if service.spec else None) or {}
            label = labels.get(self.host_label)
            if not label:
                continue
            discovered.append(DiscoveredService(
                service_name=service.spec.name or "",
                label=label,
                email=labels.get(self.email_label)
            ))
        return discovered

    async def list_services(self) -> List[DiscoveredService]:
        """Return every service carrying the host label.

        Raises:
            DiscoveryError: the Docker API could not be queried
        """
        loop = asyncio.get_running_loop()
        try:
            services = await loop.run_in_executor(None, self._list_services_sync)
        except DockerException as e:
            raise DiscoveryError(f"Failed to get Docker service list: {e}") from e
        except Exception as e:
            raise DiscoveryError(f"Docker service listing failed: {e}") from e

        logger.debug(f"Found {len(services)} services labelled {self.host_label}")
        return services
