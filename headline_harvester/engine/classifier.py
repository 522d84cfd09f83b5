"""Pluggable headline classifiers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx
import structlog

from ..errors import ClassificationError, ClassifierConfigurationError

if TYPE_CHECKING:
    from ..config import ClassifierConfig

HEADLINE_CATEGORIES = (
    "breakingNews",
    "politics",
    "world",
    "business",
    "technology",
    "science",
    "health",
    "sports",
    "entertainment",
    "lifestyle",
    "environment",
    "crime",
    "education",
    "artsCulture",
    "opinion",
    "other",
)
FALLBACK_CATEGORY = "other"


class Classifier(Protocol):
    def classify(self, text: str) -> str:
        """Return a category for ``text``."""


def coerce_category(category: str | None) -> str:
    if category in HEADLINE_CATEGORIES:
        return category  # type: ignore[return-value]
    return FALLBACK_CATEGORY


class StaticClassifier:
    """Assign the same category to every headline."""

    def __init__(self, category: str = FALLBACK_CATEGORY) -> None:
        self.category = coerce_category(category)

    def classify(self, text: str) -> str:  # noqa: ARG002
        return self.category


class RemoteClassifier:
    """Delegate classification to an HTTP endpoint returning ``{"category": ...}``."""

    def __init__(
        self,
        endpoint: str | None,
        api_key: str | None = None,
        timeout: float = 20.0,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client or httpx.Client()
        self.logger = logger or structlog.get_logger("headline_harvester.classifier")

    def classify(self, text: str) -> str:
        if not self.endpoint:
            raise ClassifierConfigurationError("Classifier endpoint is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = self._client.post(
                self.endpoint,
                json={"text": text, "categories": list(HEADLINE_CATEGORIES)},
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise ClassificationError(f"Classifier request failed: {exc}") from exc
        if response.status_code in (401, 403):
            raise ClassifierConfigurationError(
                f"Classifier rejected credentials: {response.status_code}"
            )
        if not response.is_success:
            raise ClassificationError(f"Classifier error: {response.status_code}")
        try:
            category = response.json().get("category")
        except (ValueError, AttributeError) as exc:
            raise ClassificationError("Classifier returned an undecodable body") from exc
        self.logger.debug("headline_classified", category=category)
        return category


def build_classifier(config: "ClassifierConfig") -> Classifier:
    if config.backend == "static":
        return StaticClassifier(config.default_category)
    if not config.endpoint:
        raise ClassifierConfigurationError(
            "classifier.endpoint is required for the remote backend"
        )
    return RemoteClassifier(config.endpoint, config.api_key, timeout=config.request_timeout)


__all__ = [
    "Classifier",
    "FALLBACK_CATEGORY",
    "HEADLINE_CATEGORIES",
    "RemoteClassifier",
    "StaticClassifier",
    "build_classifier",
    "coerce_category",
]
