"""Projection of a stored identity group onto the /identify response shape."""

from typing import Iterable, List, Optional

from app.models.contact import Contact
from app.schemas.identity import ConsolidatedContact


def _unique_present(values: Iterable[Optional[str]]) -> List[str]:
    """Drop nulls and repeats, keeping first occurrences in order."""
    seen = set()
    ordered: List[str] = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def format_identity(primary: Contact, secondaries: Iterable[Contact]) -> ConsolidatedContact:
    """
    Build the consolidated view of one person.

    The primary's email and phone come first, then each secondary's in
    ascending id order.
    """
    ordered = sorted((c for c in secondaries if c.id != primary.id), key=lambda c: c.id)
    return ConsolidatedContact(
        primary_contact_id=primary.id,
        emails=_unique_present([primary.email] + [c.email for c in ordered]),
        phone_numbers=_unique_present([primary.phone_number] + [c.phone_number for c in ordered]),
        secondary_contact_ids=[c.id for c in ordered],
    )
