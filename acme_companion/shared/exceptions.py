"""Error types raised by the companion components."""


class CompanionError(Exception):
    """Base class for all companion errors."""
    pass


class DiscoveryError(CompanionError):
    """Raised when the orchestrator service listing fails."""
    pass


class AcquisitionError(CompanionError):
    """Base class for failures of a single acquisition attempt.

    Every subclass drives the retry/backoff state machine of the
    acquisition pipeline.
    """

    def __init__(self, message: str, hostnames=None):
        super().__init__(message)
        self.hostnames = list(hostnames or [])


class StagingValidationError(AcquisitionError):
    """Raised when the staging pre-control could not obtain a certificate."""
    pass


class IssuanceError(AcquisitionError):
    """Raised when the production issuer refused a new certificate."""
    pass


class RenewalError(AcquisitionError):
    """Raised when the production issuer refused a renewal."""
    pass


class AcquisitionTimeoutError(AcquisitionError):
    """Raised when an acquisition attempt exceeded its deadline."""
    pass


class ChallengeLookupError(CompanionError):
    """Raised when a challenge store cannot answer a lookup."""
    pass


class WebhookDeliveryError(CompanionError):
    """Raised when the downstream proxy did not accept a certificate."""

    def __init__(self, message: str, subject: str, status_code=None):
        super().__init__(message)
        self.subject = subject
        self.status_code = status_code
