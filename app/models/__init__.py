"""
Models package.

Import all models here so they are registered with SQLAlchemy.
"""

from app.models.contact import Contact, LinkPrecedence

# Export all models
__all__ = [
    "Contact",
    "LinkPrecedence",
]
