"""
Durable storage for the countdown so a reload resumes instead of restarting.

Entries older than the staleness window are ignored on load. `clear` is only
called after a confirmed submission.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_engine.models.clock import epoch_ms
from exam_engine.models.db import TimerState


logger = logging.getLogger(__name__)

Now = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PersistedTimer:
    time_left_seconds: int
    saved_at_epoch_ms: int
    adjusted_time_left_seconds: int


class TimerPersistence(ABC):
    def __init__(self, now: Now | None = None, stale_after_seconds: int = 3600) -> None:
        self._now = now or _utc_now
        self.stale_after_seconds = stale_after_seconds

    @abstractmethod
    async def _write(self, assessment_id: str, time_left_seconds: int, saved_at_ms: int) -> None: ...

    @abstractmethod
    async def _read(self, assessment_id: str) -> tuple[int, int] | None: ...

    @abstractmethod
    async def clear(self, assessment_id: str) -> None: ...

    async def save(self, assessment_id: str, time_left_seconds: int) -> None:
        await self._write(assessment_id, max(0, int(time_left_seconds)), epoch_ms(self._now()))

    async def load(self, assessment_id: str) -> PersistedTimer | None:
        row = await self._read(assessment_id)
        if row is None:
            return None
        time_left, saved_at_ms = row
        elapsed_ms = epoch_ms(self._now()) - saved_at_ms
        if elapsed_ms > self.stale_after_seconds * 1000:
            logger.info(
                "Ignoring stale timer entry",
                extra={"assessment_id": assessment_id, "age_ms": elapsed_ms},
            )
            return None
        adjusted = max(0, time_left - math.floor(max(0, elapsed_ms) / 1000))
        return PersistedTimer(
            time_left_seconds=time_left,
            saved_at_epoch_ms=saved_at_ms,
            adjusted_time_left_seconds=adjusted,
        )


class InMemoryTimerPersistence(TimerPersistence):
    def __init__(self, now: Now | None = None, stale_after_seconds: int = 3600) -> None:
        super().__init__(now, stale_after_seconds)
        self.entries: dict[str, tuple[int, int]] = {}
        self.save_count = 0
        self.clear_count = 0

    async def _write(self, assessment_id: str, time_left_seconds: int, saved_at_ms: int) -> None:
        self.entries[assessment_id] = (time_left_seconds, saved_at_ms)
        self.save_count += 1

    async def _read(self, assessment_id: str) -> tuple[int, int] | None:
        return self.entries.get(assessment_id)

    async def clear(self, assessment_id: str) -> None:
        self.entries.pop(assessment_id, None)
        self.clear_count += 1


class SqlTimerPersistence(TimerPersistence):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        namespace: str = "",
        now: Now | None = None,
        stale_after_seconds: int = 3600,
    ) -> None:
        super().__init__(now, stale_after_seconds)
        self._session_factory = session_factory
        self.namespace = namespace

    async def _write(self, assessment_id: str, time_left_seconds: int, saved_at_ms: int) -> None:
        async with self._session_factory() as db:
            row = await db.get(TimerState, (self.namespace, assessment_id))
            if row:
                row.time_left_seconds = time_left_seconds
                row.saved_at_ms = saved_at_ms
            else:
                db.add(
                    TimerState(
                        namespace=self.namespace,
                        assessment_id=assessment_id,
                        time_left_seconds=time_left_seconds,
                        saved_at_ms=saved_at_ms,
                    )
                )
            await db.commit()

    async def _read(self, assessment_id: str) -> tuple[int, int] | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(TimerState).where(
                    TimerState.namespace == self.namespace,
                    TimerState.assessment_id == assessment_id,
                )
            )
            row = result.scalar_one_or_none()
            if not row:
                return None
            return row.time_left_seconds, row.saved_at_ms

    async def clear(self, assessment_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                delete(TimerState).where(
                    TimerState.namespace == self.namespace,
                    TimerState.assessment_id == assessment_id,
                )
            )
            await db.commit()
        logger.info("Timer state cleared", extra={"assessment_id": assessment_id})
