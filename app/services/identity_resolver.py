"""
Identity resolver.

Given one observed (email, phone_number) pair and a ContactStore already
inside a transaction, decide how the contact graph must change and apply it:

- nothing matches: create a new primary (needs both fields)
- one side matches and the pair is new: attach a secondary to that identity
- both sides match contacts of different identities: merge them, the oldest
  primary survives and the other group is relinked under it
- otherwise: read-only, return the existing identity

Lock order inside the transaction: advisory locks on the observation's keys,
then row locks on primaries in ascending id order.
"""

import logging
from typing import Optional

from app.errors import ConflictError, NotFoundError, ValidationError
from app.models.contact import Contact, LinkPrecedence
from app.repositories.contact_repository import ContactStore
from app.schemas.identity import ConsolidatedContact
from app.services.contact_graph import order_by_age, primary_id_of
from app.services.identity_formatter import format_identity

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Single-attempt resolution against one transactional store handle."""

    def __init__(self, store: ContactStore):
        self.store = store

    async def resolve(self, email: Optional[str], phone_number: Optional[str]) -> ConsolidatedContact:
        email = email or None
        phone_number = phone_number or None
        if email is None and phone_number is None:
            raise ValidationError("Either email or phoneNumber is required")

        await self.store.lock_observation(email, phone_number)

        by_email = await self.store.get_by_email(email) if email else None
        by_phone = await self.store.get_by_phone(phone_number) if phone_number else None

        if by_email is None and by_phone is None:
            return await self._create_identity(email, phone_number)

        if by_email is not None and by_phone is not None:
            email_primary_id = primary_id_of(by_email)
            phone_primary_id = primary_id_of(by_phone)
            if email_primary_id != phone_primary_id:
                survivor_id = await self._merge(email_primary_id, phone_primary_id)
                return await self._consolidated(survivor_id)
            return await self._consolidated(email_primary_id)

        found = by_email if by_email is not None else by_phone
        if email and phone_number:
            exact = await self.store.get_by_email_and_phone(email, phone_number)
            if exact is None:
                return await self._attach_secondary(found, email, phone_number)
            found = exact

        return await self._consolidated(primary_id_of(found))

    async def _create_identity(self, email: Optional[str], phone_number: Optional[str]) -> ConsolidatedContact:
        if not (email and phone_number):
            raise ValidationError(
                "Email and phoneNumber are required to create a new contact",
                {"missing": "phoneNumber" if email else "email"},
            )
        primary = await self.store.create(email, phone_number, LinkPrecedence.PRIMARY)
        logger.info("Created primary contact %s", primary.id)
        return format_identity(primary, [])

    async def _attach_secondary(self, anchor: Contact, email: str, phone_number: str) -> ConsolidatedContact:
        primary = await self._lock_primary(primary_id_of(anchor))
        secondary = await self.store.create(email, phone_number, LinkPrecedence.SECONDARY, primary.id)
        logger.info("Created secondary contact %s under primary %s", secondary.id, primary.id)
        return await self._consolidated(primary.id)

    async def _merge(self, first_primary_id: int, second_primary_id: int) -> int:
        """
        Fold two identities into one. Returns the surviving primary id.

        Secondaries of the newer primary are relinked first so no contact ever
        points at a secondary; then the newer primary is demoted.
        """
        low_id, high_id = sorted((first_primary_id, second_primary_id))
        low = await self._lock_primary(low_id)
        high = await self._lock_primary(high_id)
        survivor, demoted = order_by_age(low, high)

        relinked = await self.store.relink_secondaries(demoted.id, survivor.id)
        await self.store.set_link(demoted.id, LinkPrecedence.SECONDARY, survivor.id)
        await self.store.set_link(survivor.id, LinkPrecedence.PRIMARY, None)
        logger.info(
            "Merged primary %s into %s (%s secondaries relinked)",
            demoted.id,
            survivor.id,
            relinked,
        )
        return survivor.id

    async def _lock_primary(self, contact_id: int) -> Contact:
        contact = await self.store.get_by_id(contact_id, for_update=True)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        if not contact.is_primary:
            # A concurrent merge demoted it after we read it
            raise ConflictError(f"Contact {contact_id} is no longer a primary", {"contact_id": contact_id})
        return contact

    async def _consolidated(self, primary_id: int) -> ConsolidatedContact:
        primary = await self.store.get_by_id(primary_id)
        if primary is None:
            raise NotFoundError(f"Contact {primary_id} not found")
        if not primary.is_primary:
            raise ConflictError(f"Contact {primary_id} is no longer a primary", {"contact_id": primary_id})
        secondaries = await self.store.list_linked(primary_id)
        return format_identity(primary, secondaries)
