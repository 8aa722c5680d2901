"""
Base model with common fields.

Tables inheriting from this get:
- created_at (when the record was created)
- updated_at (when the record was last modified)
"""

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class TimestampedModel(Base):
    """
    Abstract base class for audited tables.

    This is not a real table - it's a template that other models inherit from.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
