"""HTTP-01 challenge secrets and the lookup bridge used by the challenge server."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from .models import ChallengeToken
from ..shared.exceptions import ChallengeLookupError

logger = logging.getLogger(__name__)


def normalize_hostname(host: Optional[str]) -> str:
    """Lower-case a Host header value and strip its port."""
    host = (host or "").strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. [::1]:80
        end = host.find("]")
        return host[:end + 1] if end != -1 else host
    return host.split(":", 1)[0]


class ChallengeStore:
    """Pending challenge secrets of one issuer environment.

    Written by the ACME client (from an executor thread) and read by the
    challenge server, hence the lock.
    """

    def __init__(self, environment: str, ttl: int = 3600):
        self.environment = environment
        self.ttl = ttl
        self._lock = threading.Lock()
        self._tokens: Dict[Tuple[str, str], ChallengeToken] = {}

    def store(self, hostname: str, token: str, key_authorization: str) -> ChallengeToken:
        challenge = ChallengeToken(
            hostname=normalize_hostname(hostname),
            token=token,
            key_authorization=key_authorization,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.ttl)
        )
        with self._lock:
            self._tokens[(challenge.hostname, token)] = challenge
        logger.debug(f"[{self.environment}] stored challenge for {challenge.hostname} token={token}")
        return challenge

    def get(self, hostname: str, token: str) -> Optional[str]:
        """Return the key authorization for (hostname, token), if pending."""
        key = (normalize_hostname(hostname), token)
        with self._lock:
            challenge = self._tokens.get(key)
            if challenge is None:
                return None
            if challenge.is_expired():
                del self._tokens[key]
                return None
            return challenge.key_authorization

    def delete(self, hostname: str, token: str) -> bool:
        with self._lock:
            return self._tokens.pop((normalize_hostname(hostname), token), None) is not None

    def purge_expired(self) -> int:
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [key for key, challenge in self._tokens.items() if challenge.is_expired(now)]
            for key in expired:
                del self._tokens[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


class ChallengeResponder:
    """Looks up challenge secrets in the staging and production stores.

    Both environments can have challenges in flight at the same time
    (staging pre-control runs right before production issuance).
    """

    def __init__(self, staging: ChallengeStore, production: ChallengeStore):
        self.staging = staging
        self.production = production

    def lookup_staging(self, hostname: str, token: str) -> Optional[str]:
        return self._lookup(self.staging, hostname, token)

    def lookup_production(self, hostname: str, token: str) -> Optional[str]:
        return self._lookup(self.production, hostname, token)

    @staticmethod
    def _lookup(store: ChallengeStore, hostname: str, token: str) -> Optional[str]:
        try:
            return store.get(hostname, token)
        except Exception as e:
            raise ChallengeLookupError(
                f"{store.environment} challenge lookup failed for {hostname}: {e}"
            ) from e
