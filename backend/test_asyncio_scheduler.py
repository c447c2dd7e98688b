import asyncio

from conftest import FakeResultsStore
from exam_engine.models.clock import AsyncioScheduler, epoch_ms
from exam_engine.models.timer_store import InMemoryTimerPersistence
from exam_engine.schemas.session import Phase, SubmissionStatus, SubmitTrigger


def test_call_every_repeats_until_cancelled():
    scheduler = AsyncioScheduler()
    fired = []

    async def scenario():
        async def callback():
            fired.append(1)

        handle = scheduler.call_every(0.01, callback)
        await asyncio.sleep(0.055)
        handle.cancel()
        seen = len(fired)
        await asyncio.sleep(0.03)
        return seen

    seen = asyncio.run(scenario())
    assert seen >= 3
    assert len(fired) == seen


def test_call_later_fires_once_and_can_be_cancelled():
    scheduler = AsyncioScheduler()
    fired = []

    async def scenario():
        async def callback():
            fired.append("kept")

        async def dropped():
            fired.append("dropped")

        scheduler.call_later(0.01, callback)
        scheduler.call_later(0.01, dropped).cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert fired == ["kept"]


def test_failing_callback_does_not_stop_the_period():
    scheduler = AsyncioScheduler()
    calls = []

    async def scenario():
        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        handle = scheduler.call_every(0.01, flaky)
        await asyncio.sleep(0.045)
        handle.cancel()

    asyncio.run(scenario())
    assert len(calls) >= 2


def test_callback_cancelling_its_own_handle_runs_to_completion():
    scheduler = AsyncioScheduler()
    handles = []
    finished = []

    async def scenario():
        async def callback():
            handles[0].cancel()
            await asyncio.sleep(0.01)
            finished.append(1)

        handles.append(scheduler.call_every(0.01, callback))
        await asyncio.sleep(0.06)

    asyncio.run(scenario())
    assert finished == [1]
    assert handles[0].cancelled


def test_clock_expiry_submits_on_the_event_loop(make_session):
    scheduler = AsyncioScheduler()
    timer_store = InMemoryTimerPersistence(now=scheduler.now)
    results = FakeResultsStore()

    async def scenario():
        timer_store.entries["asmt-1"] = (1, epoch_ms(scheduler.now()))
        session = make_session(scheduler=scheduler, timer_store=timer_store, results=results)
        opened = await session.open()
        await asyncio.sleep(1.5)
        return opened, session

    opened, session = asyncio.run(scenario())

    assert opened.time_left_seconds == 1
    assert session.phase is Phase.SUBMITTED
    assert session.coordinator.status is SubmissionStatus.SUBMITTED
    assert results.calls == 1
    assert results.records[0].trigger is SubmitTrigger.TIMER_EXPIRY
    assert timer_store.entries == {}
