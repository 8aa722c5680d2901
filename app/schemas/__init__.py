"""
Schemas package.

Import all schemas here for easy access.
"""

from app.schemas.contact import ContactRead
from app.schemas.identity import ConsolidatedContact, IdentifyRequest, IdentifyResponse

__all__ = [
    "ContactRead",
    "ConsolidatedContact",
    "IdentifyRequest",
    "IdentifyResponse",
]
