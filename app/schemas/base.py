"""
Base Pydantic schemas with common fields.

These are templates that other schemas inherit from.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class TimestampedRead(BaseModel):
    """
    Base schema for reading stored rows.

    Includes the auto-generated id and audit timestamps.
    """

    id: int
    created_at: datetime
    updated_at: datetime

    # This tells Pydantic to work with SQLAlchemy models
    model_config = ConfigDict(from_attributes=True)
