"""
Pydantic schemas for the /identify endpoint.

Wire names are camelCase (``phoneNumber``, ``primaryContactId``); Python
attributes stay snake_case.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IdentifyRequest(BaseModel):
    """An observed (email, phone) pair. Either side may be missing."""

    email: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("phone_number", mode="before")
    @classmethod
    def coerce_numeric_phone(cls, value: Union[str, int, None]) -> Optional[str]:
        # Clients commonly post phone numbers as JSON numbers
        if isinstance(value, bool):
            raise ValueError("phoneNumber must be a string or a number")
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("email", "phone_number")
    @classmethod
    def blank_as_missing(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return value


class ConsolidatedContact(BaseModel):
    """Everything known about one person, anchored on the group's primary."""

    primary_contact_id: int = Field(alias="primaryContactId")
    emails: List[str] = Field(default_factory=list)
    phone_numbers: List[str] = Field(default_factory=list, alias="phoneNumbers")
    secondary_contact_ids: List[int] = Field(default_factory=list, alias="secondaryContactIds")

    model_config = ConfigDict(populate_by_name=True)


class IdentifyResponse(BaseModel):
    contact: ConsolidatedContact
