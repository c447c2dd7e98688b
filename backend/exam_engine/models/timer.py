import logging
import math
from datetime import datetime

from exam_engine.models.clock import AsyncCallback, Scheduler, TimerHandle
from exam_engine.models.timer_store import PersistedTimer, TimerPersistence
from exam_engine.schemas.assessment import Scheduling


logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


def resolve_initial_seconds(
    now: datetime,
    persisted: PersistedTimer | None,
    duration_minutes: int | None,
    scheduling: Scheduling | None,
    default_seconds: int = 3600,
) -> int:
    """Pick the starting countdown: resumed value, then configured duration, then the fallback.

    Whatever is picked never runs past the end of the scheduling window.
    """
    if persisted is not None:
        remaining = persisted.adjusted_time_left_seconds
    elif duration_minutes is not None and duration_minutes > 0:
        remaining = duration_minutes * 60
    else:
        remaining = default_seconds
    if scheduling is not None and scheduling.end_at is not None:
        until_end = math.floor((scheduling.end_at - now).total_seconds())
        remaining = min(remaining, max(0, until_end))
    return max(0, int(remaining))


class SessionClock:
    """Single source of truth for the time left in an attempt.

    Only one ticking loop can be live at a time; `start` on a running clock is a no-op.
    Each tick charges at least one second and catches up when the loop lagged,
    so the countdown never runs slower than the wall clock.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        store: TimerPersistence,
        assessment_id: str,
        on_expired: AsyncCallback,
    ) -> None:
        self._scheduler = scheduler
        self._store = store
        self._assessment_id = assessment_id
        self._on_expired = on_expired
        self._handle: TimerHandle | None = None
        self._initial = 0
        self._time_left = 0
        self._started_at: datetime | None = None

    @property
    def time_left_seconds(self) -> int:
        return self._time_left

    @property
    def running(self) -> bool:
        return self._handle is not None

    async def start(self, initial_seconds: int) -> bool:
        if self.running:
            logger.warning(
                "Session clock already running",
                extra={"assessment_id": self._assessment_id},
            )
            return False
        self._initial = max(0, int(initial_seconds))
        self._time_left = self._initial
        self._started_at = self._scheduler.now()
        if self._time_left == 0:
            await self._on_expired()
            return True
        self._handle = self._scheduler.call_every(TICK_SECONDS, self.tick)
        logger.info(
            "Session clock started",
            extra={"assessment_id": self._assessment_id, "time_left_seconds": self._time_left},
        )
        return True

    async def tick(self) -> int:
        if not self.running:
            return self._time_left
        elapsed = math.floor((self._scheduler.now() - self._started_at).total_seconds())
        self._time_left = max(0, min(self._time_left - 1, self._initial - elapsed))
        try:
            await self._store.save(self._assessment_id, self._time_left)
        except Exception:
            logger.exception(
                "Failed to persist timer state",
                extra={"assessment_id": self._assessment_id},
            )
        if self.running and self._time_left == 0:
            self.stop()
            logger.info("Session clock expired", extra={"assessment_id": self._assessment_id})
            await self._on_expired()
        return self._time_left

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
