"""Queue message exchanged between the sync run and the item processor."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class QueueMessage(BaseModel):
    """Candidate headline payload; serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    headline_url: str
    publication_id: str
    headline_text: str
    snippet: str | None = None
    source: str = ""
    raw_date: str | None = None
    normalized_date: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str | bytes) -> "QueueMessage":
        return cls.model_validate_json(payload)


__all__ = ["QueueMessage"]
