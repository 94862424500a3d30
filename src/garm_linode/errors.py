"""Error types raised by the Linode provider.

Every error derives from ProviderError so the command runner can
translate any failure into a host exit code in one place.
"""

from __future__ import annotations

from typing import Optional

EXIT_CODE_ERROR = 1
EXIT_CODE_NOT_FOUND = 30


class ProviderError(Exception):
    """Base class for all provider failures."""

    def with_context(self, context: str) -> "ProviderError":
        """Return a copy of this error with ``context`` prefixed to the message.

        The copy keeps the concrete class and its attributes, so callers can
        still match on the error type after it has been wrapped.
        """
        wrapped = self.__class__.__new__(self.__class__)
        wrapped.__dict__.update(self.__dict__)
        wrapped.args = (f"{context}: {self}",)
        return wrapped


class ConfigError(ProviderError):
    """Raised when the provider configuration is missing or invalid."""


class ToolResolutionError(ProviderError):
    """Raised when no runner tool matches the requested OS/architecture."""


class ExtraSpecsParseError(ProviderError):
    """Raised when the caller-supplied extra specs are not valid JSON."""


class RandomSourceError(ProviderError):
    """Raised when the secure random source cannot produce bytes."""


class ProviderTransportError(ProviderError):
    """Raised on network failures or non-2xx responses from Linode.

    Args:
        message: Error message, upstream text preserved.
        status_code: HTTP status code, if a response was received.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class InstanceNotFoundError(ProviderError):
    """Raised when a label lookup matches no instance."""


class IdentifierParseError(ProviderError):
    """Raised when an instance identifier can't be used at all."""


class ProvisioningTimeoutError(ProviderError):
    """Raised when an instance does not reach running in time."""


class OperationCancelled(ProviderError):
    """Raised when the caller cancels a blocking wait."""


class PartialBulkFailure(ProviderError):
    """Raised when bulk removal stops at a failing instance.

    Args:
        message: Error message.
        instance_id: ID of the instance whose deletion failed.
        deleted: How many instances were deleted before the failure.
    """

    def __init__(self, message: str, instance_id: int, deleted: int) -> None:
        super().__init__(message)
        self.instance_id = instance_id
        self.deleted = deleted


def is_not_found(exc: BaseException) -> bool:
    """Whether an error means the addressed instance does not exist.

    Walks the ``__cause__`` chain so wrapped errors keep their meaning.
    """
    while exc is not None:
        if isinstance(exc, InstanceNotFoundError):
            return True
        if isinstance(exc, ProviderTransportError) and exc.status_code == 404:
            return True
        exc = exc.__cause__
    return False


def exit_code_for(exc: BaseException) -> int:
    """Map an error to the exit code expected by the host."""
    if is_not_found(exc):
        return EXIT_CODE_NOT_FOUND
    return EXIT_CODE_ERROR
