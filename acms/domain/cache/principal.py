"""
Principal snapshot cached for authenticated requests.
"""

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ...constants import PRINCIPAL_SECRET_FIELDS


class Role(str, Enum):
    STUDENT = "student"
    COUNSELLOR = "counsellor"
    ADMIN = "admin"


class Principal(BaseModel):
    """
    Password-stripped copy of a user's identity, role and profile fields.

    Built from a persistence record with ``from_record``; anything not
    declared here (timestamps, internal flags) is dropped. Field names are
    accepted in snake_case or in the document store's camelCase.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "_id"))
    role: Role
    email: Optional[str] = None
    first_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("last_name", "lastName")
    )
    enrollment_no: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("enrollment_no", "enrollmentNo")
    )
    department: Optional[str] = None
    semester: Optional[int] = Field(default=None, ge=1, le=12)
    counsellor_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("counsellor_id", "counsellorId")
    )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Principal":
        """Strip secret fields from a persistence record and validate the rest."""
        return cls.model_validate(strip_secret_fields(record))

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles

    def to_cache(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def strip_secret_fields(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.items()
        if key not in PRINCIPAL_SECRET_FIELDS
    }
