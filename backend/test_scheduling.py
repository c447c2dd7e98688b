from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from conftest import T0, at
from exam_engine.models.scheduling import SchedulingGate
from exam_engine.schemas.assessment import Scheduling
from exam_engine.schemas.session import Phase


START = at(3600)
END = at(7200)
WINDOW = Scheduling(start_at=START, end_at=END)


def test_no_scheduling_is_always_active():
    gate = SchedulingGate()
    assert gate.evaluate(T0, None) is Phase.ACTIVE
    assert gate.seconds_until_start(T0, None) is None
    assert gate.seconds_until_end(T0, None) is None


@pytest.mark.parametrize(
    "offset, expected",
    [
        (-3600, Phase.NOT_STARTED),
        (-1.001, Phase.NOT_STARTED),
        (-1, Phase.ACTIVE),
        (-0.5, Phase.ACTIVE),
        (0, Phase.ACTIVE),
        (1800, Phase.ACTIVE),
        (3599.999, Phase.ACTIVE),
        (3600, Phase.ENDED),
        (86400, Phase.ENDED),
    ],
)
def test_gate_boundaries(offset, expected):
    gate = SchedulingGate(start_tolerance_seconds=1.0)
    assert gate.evaluate(START + timedelta(seconds=offset), WINDOW) is expected


def test_open_ended_window():
    gate = SchedulingGate()
    only_start = Scheduling(start_at=START)
    only_end = Scheduling(end_at=END)
    assert gate.evaluate(at(0), only_start) is Phase.NOT_STARTED
    assert gate.evaluate(at(10**6), only_start) is Phase.ACTIVE
    assert gate.evaluate(at(0), only_end) is Phase.ACTIVE
    assert gate.evaluate(END, only_end) is Phase.ENDED


def test_countdowns():
    gate = SchedulingGate()
    assert gate.seconds_until_start(at(0.5), WINDOW) == 3600
    assert gate.seconds_until_start(at(5000), WINDOW) == 0
    assert gate.seconds_until_open(at(0), WINDOW) == 3599.0
    assert gate.seconds_until_end(at(7000.5), WINDOW) == 199
    assert gate.seconds_until_end(at(9000), WINDOW) == 0


def test_scheduling_accepts_authoring_keys():
    scheduling = Scheduling.model_validate(
        {"startDate": "2025-01-01T10:00:00Z", "endDate": "2025-01-01T12:00:00+02:00", "timezone": ""}
    )
    assert scheduling.timezone == "Asia/Kolkata"
    assert scheduling.start_at == at(10 * 3600)
    assert scheduling.end_at == at(10 * 3600)


def test_naive_times_use_the_assessment_timezone():
    try:
        ZoneInfo("Asia/Kolkata")
    except ZoneInfoNotFoundError:
        pytest.skip("tz database not available")
    scheduling = Scheduling.model_validate({"startAt": "2025-01-01T05:30:00"})
    assert scheduling.start_at == T0
