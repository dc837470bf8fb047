from typing import Optional


class RelayError(Exception):
    """Base class for errors raised by the relay."""


class ConfigurationError(RelayError):
    """Required settings are missing; the process must not start."""


class ValidationError(RelayError):
    """The inbound request is missing required parameters."""


class UpstreamAuthError(RelayError):
    """The service principal could not be exchanged for a bearer token."""


class UpstreamQueryError(RelayError):
    """A management-plane call failed for one subscription (or the listing)."""

    def __init__(self, message: str, subscription_id: Optional[str] = None):
        super().__init__(message)
        self.subscription_id = subscription_id
