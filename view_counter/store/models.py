"""
Backing Store Models

This module defines the typed shapes exchanged with the backing store:
- Record: one durable entity (a metaobject), fields keyed by name
- RecordPage: one page of a type-scoped listing
- RecordUpdate: one field update sub-operation
- UpdateOutcome: the per sub-operation result of a combined update

Design Decisions:
- Field lists ([{key, value}]) are converted to a mapping at the adapter edge,
  the rest of the code only sees Record.fields
- Models are frozen: records read during a flush are never mutated in place
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Record(BaseModel):
    """
    A backing store entity.

    Fields:
    - id: Opaque identifier assigned by the store
    - fields: Field key to string value (None when the store holds no value)
    """
    model_config = ConfigDict(frozen=True)

    id: str
    fields: dict[str, Optional[str]] = Field(default_factory=dict)

    def get_field(self, key: str) -> Optional[str]:
        """Return the value of a field, None when absent."""
        return self.fields.get(key)


class RecordPage(BaseModel):
    """One page of records plus the cursor to continue from."""
    model_config = ConfigDict(frozen=True)

    records: list[Record] = Field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None


class RecordUpdate(BaseModel):
    """Fields to write on an existing record."""
    model_config = ConfigDict(frozen=True)

    record_id: str
    fields: dict[str, str]


class UserError(BaseModel):
    """Error reported by the store for a single sub-operation."""
    model_config = ConfigDict(frozen=True)

    message: str
    field: Optional[list[str]] = None
    code: Optional[str] = None


class UpdateOutcome(BaseModel):
    """Result of one sub-operation inside a combined update."""
    model_config = ConfigDict(frozen=True)

    record_id: str
    alias: Optional[str] = None
    errors: list[UserError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
