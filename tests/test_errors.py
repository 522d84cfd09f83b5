from __future__ import annotations

import pytest

from headline_harvester.errors import (
    ClassificationError,
    ClassifierConfigurationError,
    ConfigurationError,
    InvalidReferenceError,
    MalformedInputError,
    PermanentProviderError,
    StepTimeoutError,
    StoreConflictError,
    StoreError,
    TransientProviderError,
    is_transient,
)


@pytest.mark.parametrize(
    ("error", "transient"),
    [
        (TransientProviderError("503"), True),
        (StepTimeoutError("slow"), True),
        (StoreError("locked"), True),
        (ClassificationError("busy"), True),
        (PermanentProviderError("404"), False),
        (StoreConflictError("dup"), False),
        (InvalidReferenceError("fk"), False),
        (ClassifierConfigurationError("no endpoint"), False),
        (ConfigurationError("no key"), False),
        (MalformedInputError("bad url"), False),
        (RuntimeError("bug"), False),
    ],
)
def test_is_transient(error: Exception, transient: bool) -> None:
    assert is_transient(error) is transient


def test_provider_error_carries_context() -> None:
    error = TransientProviderError("Provider error: 429", status_code=429, url="u", page=2, attempt=3)
    assert (error.status_code, error.url, error.page, error.attempt) == (429, "u", 2, 3)
