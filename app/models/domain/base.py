from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Embedded (non-document) value with camelCase keys on the wire and in storage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentModel(BaseModel):
    """
    Base for models persisted in the document store.

    Stored keys are camelCase; Python attributes are snake_case. Unknown stored
    keys are kept so a read-modify-write never drops data.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str | None = None
    version: int | None = None

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Self:
        return cls.model_validate(document)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored shape, without store-managed keys."""
        return self.model_dump(
            by_alias=True, exclude_none=True, mode="json", exclude={"id", "version"}
        )
