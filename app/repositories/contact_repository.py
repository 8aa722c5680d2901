"""
Contact repository - database operations for Contact.

This is the Contact Store the identity resolver talks to. Every method runs
inside the caller's transaction; nothing here commits.
"""

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, List, Optional, Protocol

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import async_session_maker, transaction_scope
from app.models.contact import Contact, LinkPrecedence


class ContactStore(Protocol):
    """Operations the resolver needs from durable contact storage."""

    async def lock_observation(self, email: Optional[str], phone_number: Optional[str]) -> None: ...

    async def get_by_email(self, email: str) -> Optional[Contact]: ...

    async def get_by_phone(self, phone_number: str) -> Optional[Contact]: ...

    async def get_by_email_and_phone(self, email: str, phone_number: str) -> Optional[Contact]: ...

    async def get_by_id(self, contact_id: int, for_update: bool = False) -> Optional[Contact]: ...

    async def list_linked(self, primary_id: int) -> List[Contact]: ...

    async def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact: ...

    async def relink_secondaries(self, from_primary_id: int, to_primary_id: int) -> int: ...

    async def set_link(self, contact_id: int, link_precedence: LinkPrecedence, linked_id: Optional[int]) -> None: ...


StoreScope = Callable[[], AsyncContextManager[ContactStore]]


class ContactRepository:
    """Repository for Contact database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_observation(self, email: Optional[str], phone_number: Optional[str]) -> None:
        """
        Serialize transactions that touch the same email or phone.

        Takes transaction-scoped advisory locks, in sorted key order so two
        overlapping observations cannot deadlock each other.
        """
        keys = []
        if email:
            keys.append(f"email:{email}")
        if phone_number:
            keys.append(f"phone:{phone_number}")
        for key in sorted(keys):
            await self.db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})

    async def get_by_email(self, email: str) -> Optional[Contact]:
        """Oldest contact carrying this exact email."""
        result = await self.db.execute(
            select(Contact).where(Contact.email == email).order_by(Contact.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_phone(self, phone_number: str) -> Optional[Contact]:
        """Oldest contact carrying this exact phone number."""
        result = await self.db.execute(
            select(Contact).where(Contact.phone_number == phone_number).order_by(Contact.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_email_and_phone(self, email: str, phone_number: str) -> Optional[Contact]:
        """Oldest contact carrying exactly this pair."""
        result = await self.db.execute(
            select(Contact)
            .where(
                Contact.email == email,
                Contact.phone_number == phone_number,
            )
            .order_by(Contact.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, contact_id: int, for_update: bool = False) -> Optional[Contact]:
        """Get a contact by ID, optionally holding its row lock until commit."""
        query = select(Contact).where(Contact.id == contact_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_linked(self, primary_id: int) -> List[Contact]:
        """Secondaries pointing at a primary, oldest first."""
        result = await self.db.execute(
            select(Contact)
            .where(Contact.linked_id == primary_id)
            .order_by(Contact.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_all(self) -> List[Contact]:
        result = await self.db.execute(select(Contact).order_by(Contact.id))
        return list(result.scalars().all())

    async def create(
        self,
        email: Optional[str],
        phone_number: Optional[str],
        link_precedence: LinkPrecedence,
        linked_id: Optional[int] = None,
    ) -> Contact:
        """Insert a contact row and load its generated id and timestamps."""
        contact = Contact(
            email=email,
            phone_number=phone_number,
            link_precedence=LinkPrecedence(link_precedence).value,
            linked_id=linked_id,
        )
        self.db.add(contact)
        await self.db.flush()
        await self.db.refresh(contact)
        return contact

    async def relink_secondaries(self, from_primary_id: int, to_primary_id: int) -> int:
        """Point every contact linked to one primary at another. Returns rows changed."""
        result = await self.db.execute(
            update(Contact)
            .where(Contact.linked_id == from_primary_id)
            .values(
                link_precedence=LinkPrecedence.SECONDARY.value,
                linked_id=to_primary_id,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def set_link(self, contact_id: int, link_precedence: LinkPrecedence, linked_id: Optional[int]) -> None:
        await self.db.execute(
            update(Contact)
            .where(Contact.id == contact_id)
            .values(
                link_precedence=LinkPrecedence(link_precedence).value,
                linked_id=linked_id,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session="fetch")
        )

    async def count(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(Contact))
        return int(result.scalar_one())


@asynccontextmanager
async def contact_store_scope(
    session_maker: async_sessionmaker = async_session_maker,
) -> AsyncIterator[ContactStore]:
    """One transaction against the database, exposed as a ContactStore."""
    async with transaction_scope(session_maker) as session:
        yield ContactRepository(session)

