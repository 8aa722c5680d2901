"""
Identity service - runs the resolver transactionally.

Each attempt opens a fresh transaction and re-reads everything; a conflict
rolls the attempt back and starts over, up to max_attempts.
"""

import logging
from typing import Optional

from app.core.config import settings
from app.errors import ConflictError, StorageError
from app.repositories.contact_repository import StoreScope, contact_store_scope
from app.schemas.identity import ConsolidatedContact
from app.services.identity_resolver import IdentityResolver

logger = logging.getLogger(__name__)


class IdentityService:
    """Transactional, conflict-retrying entry point for identity resolution."""

    def __init__(self, store_scope: StoreScope = contact_store_scope, max_attempts: Optional[int] = None):
        self.store_scope = store_scope
        self.max_attempts = max(1, max_attempts or settings.IDENTIFY_MAX_ATTEMPTS)

    async def identify(self, email: Optional[str], phone_number: Optional[str]) -> ConsolidatedContact:
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.store_scope() as store:
                    return await IdentityResolver(store).resolve(email, phone_number)
            except ConflictError as exc:
                if attempt >= self.max_attempts:
                    logger.error("Identity resolution gave up after %s conflicting attempts: %s", attempt, exc)
                    raise StorageError(
                        "Could not resolve identity due to concurrent updates",
                        {"attempts": attempt},
                    ) from exc
                logger.warning(
                    "Identity resolution conflict on attempt %s/%s, retrying: %s",
                    attempt,
                    self.max_attempts,
                    exc,
                )


def get_identity_service() -> IdentityService:
    """FastAPI dependency; override in tests to swap the store."""
    return IdentityService(contact_store_scope, settings.IDENTIFY_MAX_ATTEMPTS)
