"""
Error taxonomy for the retrieval subsystem.

Two families:
- Programmer misuse (StorageUnavailable, NotInitialized, FeatureDisabled,
  InvalidTemplate) is raised to the caller immediately.
- Backend faults (UpstreamCallFailed, MalformedResponse) are raised inside
  providers and the plugin, then recovered locally into sentinel values.
"""

from __future__ import annotations


class AcragError(Exception):
    """Base class for all acrag errors."""

    pass


class StorageUnavailable(AcragError):
    """Raised when the backing store cannot be opened or created."""

    pass


class NotInitialized(AcragError):
    """Raised when an operation runs before init() or after close()."""

    pass


class ProviderUnavailable(AcragError):
    """An availability check failed. Logged by init(), raised only in strict mode."""

    pass


class UpstreamCallFailed(AcragError):
    """A network, timeout, HTTP status or decoding failure calling a backend."""

    pass


class MalformedResponse(AcragError):
    """Structured output from a generation call could not be parsed."""

    pass


class InvalidTemplate(AcragError, ValueError):
    """Raised when a prompt template fails validation."""

    pass


class FeatureDisabled(AcragError):
    """Raised when an operation's feature flag is switched off."""

    pass
