"""Caches for confirmed raw identifier -> gateway payment id mappings."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import IdentifierMappingRepository
from .models import ResolutionMethod

logger = logging.getLogger(__name__)


class IdentifierCache(ABC):
    """Mapping store consulted before any candidate search.

    Writes are idempotent upserts; every writer derives the same payment id
    for the same raw identifier, so the last writer wins.
    """

    @abstractmethod
    async def get(self, raw_identifier: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    async def set(
        self,
        raw_identifier: str,
        payment_id: str,
        method: ResolutionMethod,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def invalidate(self, raw_identifier: str) -> None:
        """Forget a mapping the gateway no longer recognizes."""
        raise NotImplementedError


class InMemoryIdentifierCache(IdentifierCache):
    """Process-local cache, mostly for CLI runs and tests."""

    def __init__(self):
        self._mappings: Dict[str, str] = {}

    async def get(self, raw_identifier: str) -> Optional[str]:
        return self._mappings.get(raw_identifier)

    async def set(
        self,
        raw_identifier: str,
        payment_id: str,
        method: ResolutionMethod,
    ) -> None:
        self._mappings[raw_identifier] = payment_id

    async def invalidate(self, raw_identifier: str) -> None:
        self._mappings.pop(raw_identifier, None)

    def __len__(self) -> int:
        return len(self._mappings)


class DatabaseIdentifierCache(IdentifierCache):
    """Cache persisted in the identifier_mappings table."""

    def __init__(self, session: AsyncSession):
        """Initialize the cache with a database session.

        Args:
            session: AsyncSession used for lookups and upserts.
        """
        self.repo = IdentifierMappingRepository(session)

    async def get(self, raw_identifier: str) -> Optional[str]:
        mapping = await self.repo.get_by_raw_identifier(raw_identifier)
        return mapping.payment_id if mapping else None

    async def set(
        self,
        raw_identifier: str,
        payment_id: str,
        method: ResolutionMethod,
    ) -> None:
        await self.repo.upsert(
            raw_identifier=raw_identifier,
            payment_id=payment_id,
            resolution_method=method.value,
        )

    async def invalidate(self, raw_identifier: str) -> None:
        await self.repo.delete(raw_identifier)
