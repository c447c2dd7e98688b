import asyncio

import pytest

from conftest import FakeResultsStore, make_assessment
from exam_engine.core.config import SessionPolicy
from exam_engine.core.errors import NetworkError, ValidationError
from exam_engine.schemas.session import Phase, SubmissionStatus, SubmitTrigger


def test_racing_submissions_send_one_record(make_session, results):
    session = make_session()

    async def scenario():
        await session.open()
        session.record_mcq("m1", "B")
        return await asyncio.gather(
            session.submit(SubmitTrigger.TIMER_EXPIRY),
            session.submit(SubmitTrigger.MANUAL),
            session.submit(SubmitTrigger.SCHEDULE_END),
        )

    outcomes = asyncio.run(scenario())

    assert results.calls == 1
    assert len(results.records) == 1
    assert outcomes[0] is results.records[0]
    assert outcomes[1:] == [None, None]
    assert session.phase is Phase.SUBMITTED


def test_submitting_again_returns_the_same_record(make_session, results, timer_store):
    session = make_session()

    async def scenario():
        await session.open()
        first = await session.submit()
        second = await session.submit()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second
    assert results.calls == 1
    assert timer_store.clear_count == 1
    assert session.state.result_id == "result-1"


def test_failed_persistence_keeps_the_attempt_open(make_session, scheduler, timer_store):
    results = FakeResultsStore(failures=1)
    session = make_session(results=results)

    async def scenario():
        await session.open()
        await scheduler.advance(10)
        with pytest.raises(NetworkError):
            await session.submit()
        failed = session.state
        await scheduler.advance(5)
        ticking = session.state.time_left_seconds
        record = await session.submit()
        return failed, ticking, record

    failed, ticking, record = asyncio.run(scenario())

    assert failed.phase is Phase.ACTIVE
    assert failed.submission_status is SubmissionStatus.IDLE
    assert failed.submission_error == "Results service unavailable"
    assert ticking == 3600 - 15
    assert timer_store.clear_count == 1
    assert record.time_spent_seconds == 15
    assert session.phase is Phase.SUBMITTED
    assert results.calls == 2
    assert len(results.records) == 1


def test_retries_reuse_the_attempt_id(make_session):
    results = FakeResultsStore(failures=1)
    session = make_session(results=results)

    async def scenario():
        await session.open()
        with pytest.raises(NetworkError):
            await session.submit()
        return await session.submit()

    record = asyncio.run(scenario())
    assert record.attempt_id == session.coordinator.attempt_id


def test_missing_assessment_id_is_rejected(make_session, results):
    session = make_session(make_assessment(assessment_id=""))

    async def scenario():
        await session.open()
        with pytest.raises(ValidationError):
            await session.submit()

    asyncio.run(scenario())
    assert results.calls == 0
    assert session.coordinator.status is SubmissionStatus.IDLE
    assert session.phase is Phase.ACTIVE


def test_answers_are_frozen_after_submission(make_session):
    session = make_session()

    async def scenario():
        await session.open()
        await session.submit()

    asyncio.run(scenario())
    with pytest.raises(ValidationError):
        session.record_mcq("m1", 0)


def test_failed_auto_submit_is_retried(make_session, scheduler):
    results = FakeResultsStore(failures=2)
    session = make_session(make_assessment(duration=1), results=results)

    async def scenario():
        await session.open()
        await scheduler.advance(60)
        after_expiry = session.phase
        await scheduler.advance(5)
        await scheduler.advance(5)
        return after_expiry

    after_expiry = asyncio.run(scenario())

    assert after_expiry is Phase.ENDED
    assert results.calls == 3
    assert session.phase is Phase.SUBMITTED
    assert results.records[0].trigger is SubmitTrigger.TIMER_EXPIRY


def test_auto_submit_gives_up_and_waits_for_the_candidate(make_session, scheduler):
    results = FakeResultsStore(failures=100)
    session = make_session(make_assessment(duration=1), results=results)

    async def scenario():
        await session.open()
        await scheduler.advance(600)
        stuck = session.state
        automatic_calls = results.calls
        results.failures = 0
        record = await session.submit()
        return stuck, automatic_calls, record

    stuck, automatic_calls, record = asyncio.run(scenario())

    # the expiry itself plus three automatic retries
    assert automatic_calls == 4
    assert results.calls == 5
    assert stuck.phase is Phase.ENDED
    assert stuck.submission_error == "Results service unavailable"
    assert stuck.can_submit_manually
    assert record.trigger is SubmitTrigger.MANUAL
    assert session.phase is Phase.SUBMITTED


def test_manual_submit_waits_for_the_unlock(make_session, scheduler):
    session = make_session(policy=SessionPolicy())

    async def scenario():
        await session.open()
        locked = session.state
        with pytest.raises(ValidationError):
            await session.submit()
        await scheduler.advance(20 * 60)
        return locked, session.state

    locked, unlocked = asyncio.run(scenario())

    assert not locked.can_submit_manually
    assert locked.seconds_until_submit_unlocked == 1200
    assert unlocked.can_submit_manually
    assert unlocked.seconds_until_submit_unlocked == 0


def test_unlock_never_exceeds_the_duration(make_session):
    session = make_session(make_assessment(duration=5), policy=SessionPolicy())
    asyncio.run(session.open())
    assert session.seconds_until_submit_unlocked == 300


class _BrokenResultsStore(FakeResultsStore):
    async def save_result(self, record) -> str:
        self.calls += 1
        raise RuntimeError("connection reset")


def test_unexpected_save_failure_is_described(make_session):
    session = make_session(results=_BrokenResultsStore())

    async def scenario():
        await session.open()
        with pytest.raises(RuntimeError):
            await session.submit()

    asyncio.run(scenario())

    state = session.state
    assert state.submission_status is SubmissionStatus.IDLE
    assert state.submission_error == "Unexpected error: connection reset"


class _BlockingResultsStore(FakeResultsStore):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def save_result(self, record) -> str:
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        self.records.append(record)
        return f"result-{len(self.records)}"


def test_cancelled_submission_can_be_retried(make_session):
    async def scenario():
        results = _BlockingResultsStore()
        session = make_session(results=results)
        await session.open()
        pending = asyncio.create_task(session.submit())
        await results.entered.wait()
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        interrupted = session.state

        results.release.set()
        record = await session.submit()
        return interrupted, record, results

    interrupted, record, results = asyncio.run(scenario())

    assert interrupted.submission_status is SubmissionStatus.IDLE
    assert "interrupted" in interrupted.submission_error
    assert record is not None
    assert results.calls == 2
    assert len(results.records) == 1
