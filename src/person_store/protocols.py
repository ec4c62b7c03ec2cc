"""PersonStore protocol — engine-agnostic contract for the person operations."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from person_store.schema import DeleteSummary, Person, PersonDraft


@runtime_checkable
class PersonStore(Protocol):
    """The ten person operations every backend must provide.

    Reads return ``None`` or an empty list when nothing matches; only
    ``find_edit_then_save`` treats a missing record as an error.
    """

    async def create_and_save_person(self, draft: PersonDraft | Mapping[str, Any] | None = None) -> Person:
        """Insert one person and return it with its assigned id."""
        ...

    async def create_many_people(self, drafts: Sequence[PersonDraft | Mapping[str, Any]]) -> list[Person]:
        """Insert several people; any failure fails the whole call."""
        ...

    async def find_people_by_name(self, person_name: str) -> list[Person]:
        """Return every person with the given name."""
        ...

    async def find_one_by_food(self, food: str) -> Person | None:
        """Return the first person whose favourite foods include *food*."""
        ...

    async def find_person_by_id(self, person_id: str) -> Person | None:
        """Return the person with the given id."""
        ...

    async def find_edit_then_save(self, person_id: str, food: str = ...) -> Person:
        """Append *food* to a person's favourites and save the whole record."""
        ...

    async def find_and_update(self, person_name: str, age: int = ...) -> Person | None:
        """Set the age of the first person with the given name; return the updated record."""
        ...

    async def remove_by_id(self, person_id: str) -> Person | None:
        """Delete a person by id and return the deleted record."""
        ...

    async def remove_many_people(self, person_name: str = ...) -> DeleteSummary:
        """Delete every person with the given name."""
        ...

    async def query_chain(self, food: str = ...) -> list[Person]:
        """Return up to two people who like *food*, by name, without their age."""
        ...
