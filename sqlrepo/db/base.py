"""
Entity base model - row <-> object mapping for repositories.
Challenge: Map result rows onto typed records without an ORM.
Design: Column names are the PascalCase aliases of field names ("test_long" <-> "TestLong", "id" <-> "Id").
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_pascal

KeyType = TypeVar("KeyType")


class Entity(BaseModel, Generic[KeyType]):
    """Base class for all stored records. Exactly one identifier field: id."""

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        from_attributes=True,
    )

    id: KeyType | None = None

    @classmethod
    def from_row(cls, row):
        """Build an entity from a result row mapping (column name -> value)."""
        return cls.model_validate(dict(row))
