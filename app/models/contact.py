"""
Contact model.

One row per observed (email, phone) touchpoint. Rows that belong to the same
person form an identity group: exactly one PRIMARY row, every other row
SECONDARY and pointing straight at that primary through linked_id.
"""

import enum
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base_model import TimestampedModel


class LinkPrecedence(str, enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(TimestampedModel):
    """
    Contact table - an email and/or phone number observed for one person.

    Rows are never deleted; merges only relabel link_precedence / linked_id.
    """

    __tablename__ = "contact"

    # Monotonic id doubles as the "older" tie-breaker between primaries
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    phone_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    linked_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("contact.id"),
        nullable=True,
    )

    link_precedence: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LinkPrecedence.PRIMARY.value,
    )

    __table_args__ = (
        UniqueConstraint("email", "phone_number", name="uq_contact_email_phone_number"),
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="email_or_phone_present",
        ),
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="linked_id_matches_precedence",
        ),
        Index("ix_contact_email", "email"),
        Index("ix_contact_phone_number", "phone_number"),
        Index("ix_contact_linked_id", "linked_id"),
    )

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY.value

    def __repr__(self) -> str:
        return (
            f"<Contact id={self.id} email={self.email!r} phone_number={self.phone_number!r} "
            f"precedence={self.link_precedence} linked_id={self.linked_id}>"
        )
