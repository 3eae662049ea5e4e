"""Certificate management component."""

from .acme_client import ACMEClient
from .challenges import ChallengeStore, ChallengeResponder
from .models import CertificateRecord, ChallengeToken, DomainSet, Task, STAGING, PRODUCTION
from .pipeline import AcquisitionPipeline
from .registry import DomainRegistry, parse_hostnames
from .scheduler import ExpiryScheduler, create_scheduler
from .storage import CertificateStorage

__all__ = [
    'ACMEClient',
    'AcquisitionPipeline',
    'CertificateRecord',
    'CertificateStorage',
    'ChallengeResponder',
    'ChallengeStore',
    'ChallengeToken',
    'DomainRegistry',
    'DomainSet',
    'ExpiryScheduler',
    'PRODUCTION',
    'STAGING',
    'Task',
    'create_scheduler',
    'parse_hostnames',
]
