"""Error taxonomy shared by the ingestion and processing pipeline."""

from __future__ import annotations


class HarvesterError(Exception):
    """Base class for every error raised by headline_harvester."""


class ConfigurationError(HarvesterError):
    """Required configuration (credentials, endpoints) is missing or invalid."""


class ProviderError(HarvesterError):
    """A news search provider request did not produce a usable page."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
        page: int | None = None,
        attempt: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.page = page
        self.attempt = attempt


class TransientProviderError(ProviderError):
    """Network failure, timeout, 429 or 5xx: worth retrying."""


class PermanentProviderError(ProviderError):
    """4xx other than 429: retrying cannot help."""


class MalformedInputError(HarvesterError, ValueError):
    """Input (usually a publication URL) cannot be turned into a request."""


class StoreError(HarvesterError):
    """Persistence failure other than a uniqueness conflict."""


class StoreConflictError(StoreError):
    """Insert rejected by a uniqueness constraint: the row already exists."""


class InvalidReferenceError(StoreError):
    """Insert rejected because a referenced row does not exist."""


class ClassificationError(HarvesterError):
    """The classifier failed to categorise a headline."""


class ClassifierConfigurationError(ClassificationError, ConfigurationError):
    """The classifier backend is not configured; never retried."""


class DispatchError(HarvesterError):
    """A single message could not be enqueued."""


class StepTimeoutError(HarvesterError, TimeoutError):
    """A blocking call exceeded its explicit timeout."""


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate used across fetch, classify and store calls."""

    if isinstance(exc, ConfigurationError):
        return False
    if isinstance(exc, (StoreConflictError, InvalidReferenceError)):
        return False
    return isinstance(
        exc,
        (TransientProviderError, StepTimeoutError, StoreError, ClassificationError),
    )


__all__ = [
    "ClassificationError",
    "ClassifierConfigurationError",
    "ConfigurationError",
    "DispatchError",
    "HarvesterError",
    "InvalidReferenceError",
    "MalformedInputError",
    "PermanentProviderError",
    "ProviderError",
    "StepTimeoutError",
    "StoreConflictError",
    "StoreError",
    "TransientProviderError",
    "is_transient",
]
