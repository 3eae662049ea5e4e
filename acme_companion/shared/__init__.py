"""Shared utilities for the ACME companion."""

from .config import Settings, get_config
from .exceptions import (
    CompanionError,
    DiscoveryError,
    AcquisitionError,
    StagingValidationError,
    IssuanceError,
    RenewalError,
    AcquisitionTimeoutError,
    ChallengeLookupError,
    WebhookDeliveryError,
)

__all__ = [
    'Settings',
    'get_config',
    'CompanionError',
    'DiscoveryError',
    'AcquisitionError',
    'StagingValidationError',
    'IssuanceError',
    'RenewalError',
    'AcquisitionTimeoutError',
    'ChallengeLookupError',
    'WebhookDeliveryError',
]
