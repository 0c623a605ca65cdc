from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain.repositories import SettingsStore
from ..models import Setting

logger = logging.getLogger(__name__)

PRICE_PER_SLOT_KEY = "price_per_slot"
ACCESS_CODE_KEY = "access_code"


class SqlAlchemySettingsStore(SettingsStore):
    """Key/value settings; every read falls back to the configured default."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        default_price_per_slot: int,
        default_access_code: str,
    ) -> None:
        self.session_factory = session_factory
        self.default_price_per_slot = default_price_per_slot
        self.default_access_code = default_access_code

    async def _read(self, key: str) -> Optional[str]:
        try:
            async with self.session_factory() as session:
                return await session.scalar(select(Setting.value).where(Setting.key == key))
        except SQLAlchemyError as exc:
            logger.warning("Settings read failed for %s, using default: %s", key, exc)
            return None

    async def get_price_per_slot(self) -> int:
        raw = await self._read(PRICE_PER_SLOT_KEY)
        if raw is None:
            return self.default_price_per_slot
        try:
            price = int(raw)
        except ValueError:
            logger.warning("Ignoring non-numeric %s setting: %r", PRICE_PER_SLOT_KEY, raw)
            return self.default_price_per_slot
        if price < 0:
            logger.warning("Ignoring negative %s setting: %r", PRICE_PER_SLOT_KEY, raw)
            return self.default_price_per_slot
        return price

    async def get_access_code(self) -> str:
        raw = await self._read(ACCESS_CODE_KEY)
        return raw if raw else self.default_access_code
