"""In-memory registry of managed domain sets."""

import logging
import re
import threading
from typing import Dict, List, Optional

from .models import DomainSet

logger = logging.getLogger(__name__)

_LABEL_SEPARATORS = re.compile(r'[,;]')


def parse_hostnames(label: str) -> List[str]:
    """Split a discovery label into an ordered, de-duplicated hostname list."""
    hostnames = []
    for part in _LABEL_SEPARATORS.split(label or ""):
        hostname = part.strip().lower()
        if hostname and hostname not in hostnames:
            hostnames.append(hostname)
    return hostnames


class DomainRegistry:
    """Managed domain sets keyed by their discovery label.

    Created once at startup and shared by the reconciler, the expiry
    scheduler and the acquisition pipeline. Only the reconciler adds or
    removes entries.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._domains: Dict[str, DomainSet] = {}

    def add(self, domain_set: DomainSet) -> bool:
        """Insert a domain set; returns False if its key is already managed."""
        with self._lock:
            if domain_set.key in self._domains:
                return False
            self._domains[domain_set.key] = domain_set
            return True

    def get(self, key: str) -> Optional[DomainSet]:
        with self._lock:
            return self._domains.get(key)

    def remove(self, key: str) -> Optional[DomainSet]:
        with self._lock:
            return self._domains.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._domains)

    def snapshot(self) -> List[DomainSet]:
        with self._lock:
            return list(self._domains.values())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._domains

    def __len__(self) -> int:
        with self._lock:
            return len(self._domains)
