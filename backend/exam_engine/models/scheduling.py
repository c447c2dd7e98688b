import math
from datetime import datetime, timedelta

from exam_engine.schemas.assessment import Scheduling
from exam_engine.schemas.session import Phase


class SchedulingGate:
    """Decides from the scheduling window whether an attempt may run right now.

    The start boundary gets a small tolerance so clock-sync jitter does not
    flip an opening session back to "not started". The end boundary is strict.
    """

    def __init__(self, start_tolerance_seconds: float = 1.0) -> None:
        self.start_tolerance = timedelta(seconds=start_tolerance_seconds)

    def evaluate(self, now: datetime, scheduling: Scheduling | None) -> Phase:
        if scheduling is None:
            return Phase.ACTIVE
        if scheduling.end_at is not None and now >= scheduling.end_at:
            return Phase.ENDED
        if scheduling.start_at is not None and now < scheduling.start_at - self.start_tolerance:
            return Phase.NOT_STARTED
        return Phase.ACTIVE

    def seconds_until_start(self, now: datetime, scheduling: Scheduling | None) -> int | None:
        if scheduling is None or scheduling.start_at is None:
            return None
        remaining = (scheduling.start_at - now).total_seconds()
        return max(0, math.ceil(remaining))

    def seconds_until_open(self, now: datetime, scheduling: Scheduling | None) -> float:
        """Delay until `evaluate` stops reporting NOT_STARTED."""
        if scheduling is None or scheduling.start_at is None:
            return 0.0
        return max(0.0, (scheduling.start_at - self.start_tolerance - now).total_seconds())

    def seconds_until_end(self, now: datetime, scheduling: Scheduling | None) -> int | None:
        if scheduling is None or scheduling.end_at is None:
            return None
        return max(0, math.floor((scheduling.end_at - now).total_seconds()))
