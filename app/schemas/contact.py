"""
Pydantic schemas for Contact rows.
"""

from typing import Optional

from app.models.contact import LinkPrecedence
from app.schemas.base import TimestampedRead


class ContactRead(TimestampedRead):
    email: Optional[str] = None
    phone_number: Optional[str] = None
    linked_id: Optional[int] = None
    link_precedence: LinkPrecedence
