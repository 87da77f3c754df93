"""
Guest Storage

Key-value storage for anonymous shoppers, scoped to one guest session id
(sent by the client in the X-Guest-Session header). Holds the guest cart and
the guest selection set as JSON strings until the guest signs in and the cart
is merged into their account.

Two implementations share the GuestStorage protocol:

    SqlGuestStorage     rows in the service's own PostgreSQL database
    MemoryGuestStorage  a plain dict, for development and tests

Usage:
    storage = SqlGuestStorage(session_factory, guest_id)
    await storage.set("shopping_cart_guest", "[]")
    raw = await storage.get("shopping_cart_guest")
"""

import logging
from typing import Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import GuestStorageEntry

logger = logging.getLogger(__name__)


class GuestStorageError(Exception):
    """Raised when guest storage cannot be read or written."""


class GuestStorage(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryGuestStorage:
    """Dict-backed storage. One instance per guest session."""

    def __init__(self, data: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(data or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def remove(self, key: str) -> None:
        self.data.pop(key, None)


class SqlGuestStorage:
    """
    Database-backed storage for one guest session.

    Each call opens its own short session, so an instance can live as long as
    the request that owns it. Writes use PostgreSQL upsert so repeated saves of
    the same key never conflict.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], guest_id: str):
        self._session_factory = session_factory
        self.guest_id = guest_id

    async def get(self, key: str) -> Optional[str]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(GuestStorageEntry.value)
                    .where(GuestStorageEntry.guest_id == self.guest_id)
                    .where(GuestStorageEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Guest storage read error ({self.guest_id}/{key}): {e}")
            raise GuestStorageError(str(e)) from e

    async def set(self, key: str, value: str) -> None:
        stmt = insert(GuestStorageEntry).values(
            guest_id=self.guest_id,
            key=key,
            value=value,
        ).on_conflict_do_update(
            index_elements=["guest_id", "key"],
            set_={"value": value, "updated_at": func.now()},
        )
        async with self._session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Guest storage write error ({self.guest_id}/{key}): {e}")
                raise GuestStorageError(str(e)) from e

    async def remove(self, key: str) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(
                    delete(GuestStorageEntry)
                    .where(GuestStorageEntry.guest_id == self.guest_id)
                    .where(GuestStorageEntry.key == key)
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Guest storage delete error ({self.guest_id}/{key}): {e}")
                raise GuestStorageError(str(e)) from e
