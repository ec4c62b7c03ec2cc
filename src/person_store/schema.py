"""Person document models and document <-> model conversion."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, Field

# Collection name the ODM derived from the "Person" model name.
COLLECTION_NAME = "people"
ENTITY_NAME = "Person"


class PersonDraft(BaseModel):
    """A person that has not been stored yet (no id)."""

    name: str = Field(min_length=1, description="Display name. Required, not unique.")
    age: int | None = Field(default=None, description="Age in years, if known.")
    favorite_foods: list[str] = Field(
        default_factory=list,
        alias="favoriteFoods",
        description="Ordered list of favourite foods.",
    )

    model_config = {"extra": "forbid", "populate_by_name": True}

    def to_document(self) -> dict[str, Any]:
        """Return the insertable document. ``age`` is left out when unknown."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Person(BaseModel):
    """A stored person, as read back from the collection.

    Fields missing from the source document (e.g. ``age`` under a projection)
    stay unset and are left out of :meth:`to_document`.
    """

    id: str = Field(alias="_id", description="Store-assigned ObjectId, as a hex string.")
    name: str
    age: int | None = None
    favorite_foods: list[str] = Field(default_factory=list, alias="favoriteFoods")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> Person:
        data = dict(doc)
        if "_id" in data:
            data["_id"] = str(data["_id"])
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class DeleteSummary(BaseModel):
    """Outcome of a delete-many."""

    deleted_count: int = Field(ge=0)
    acknowledged: bool = True
