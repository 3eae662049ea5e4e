"""Certificate-specific data models."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


STAGING = "staging"
PRODUCTION = "production"


class DomainSet(BaseModel):
    """Hostnames managed as a single certificate, keyed by their discovery label."""
    key: str
    hostnames: List[str]
    email: str
    retry_count: int = 0

    @field_validator('hostnames')
    @classmethod
    def validate_hostnames(cls, v: List[str]) -> List[str]:
        cleaned = []
        for hostname in v:
            hostname = hostname.strip().lower()
            if hostname and hostname not in cleaned:
                cleaned.append(hostname)
        if not cleaned:
            raise ValueError("At least one hostname required")
        return cleaned

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def subject(self) -> str:
        return self.hostnames[0]


class CertificateRecord(BaseModel):
    """Certificate material returned by an acquisition or loaded from storage."""
    model_config = ConfigDict(frozen=True)

    subject: str
    hostnames: List[str]
    private_key: str
    certificate: str
    chain: str = ""
    not_after: datetime
    environment: str = PRODUCTION

    @field_validator('not_after')
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        """Time left until the certificate expires."""
        now = now or datetime.now(timezone.utc)
        return self.not_after - now

    def needs_renewal(self, threshold_days: int, now: Optional[datetime] = None) -> bool:
        return self.remaining(now) < timedelta(days=threshold_days)

    def covers(self, hostnames: Iterable[str]) -> bool:
        own = {h.lower() for h in self.hostnames}
        return all(h.lower() in own for h in hostnames)

    @property
    def fullchain(self) -> str:
        return self.certificate + self.chain

    def webhook_body(self) -> str:
        """Key, certificate and chain as newline-terminated blocks."""
        return f"{self.private_key}\n{self.certificate}\n{self.chain}\n"


class ChallengeToken(BaseModel):
    """Pending HTTP-01 challenge secret."""
    hostname: str
    token: str
    key_authorization: str
    expires_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc) + timedelta(hours=1))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class Task:
    """Queued acquisition work for one domain set."""

    def __init__(self, domain_set: DomainSet):
        self.domain_set = domain_set
        self.retry_count = 0
        self.cancelled = False
        self.retry_handle: Optional[asyncio.TimerHandle] = None

    @property
    def key(self) -> str:
        return self.domain_set.key

    def __repr__(self) -> str:
        return f"Task(key={self.key!r}, retry_count={self.retry_count}, cancelled={self.cancelled})"
