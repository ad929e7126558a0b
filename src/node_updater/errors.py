"""Error kinds raised by the node-updater services and subsystems."""

from typing import Optional


class NodeUpdaterError(RuntimeError):
    """Base class for every failure the reconciler knows how to classify."""


class NotFoundError(NodeUpdaterError):
    """Raised when a record, pool, job owner or agent does not exist."""


class RetryableError(NodeUpdaterError):
    """Raised on a concurrent-modification (409) response.

    Another actor already advanced the object; the next reconcile re-derives
    the state, so callers treat this as success.
    """


class TransportError(NodeUpdaterError):
    """Raised on network failures or unexpected status codes from a remote API."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class MalformedInputError(NodeUpdaterError):
    """Raised when persisted data or a pool configuration cannot be interpreted."""


class PreconditionError(NodeUpdaterError):
    """Raised when a pool is still busy with an operation and cannot be changed yet."""


class ConfigurationError(NodeUpdaterError):
    """Raised when the operator configuration is missing or invalid."""
