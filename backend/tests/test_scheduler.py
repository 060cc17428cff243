import asyncio

from scheduler import AsyncioScheduler, VirtualScheduler


def test_virtual_every_fires_on_each_interval(scheduler, clock):
    start = clock.now()
    fired = []

    async def tick():
        fired.append((clock.now() - start).total_seconds())

    async def scenario():
        scheduler.every(3, tick, name="tick")
        await scheduler.advance(10)

    asyncio.run(scenario())
    assert fired == [3.0, 6.0, 9.0]
    assert (clock.now() - start).total_seconds() == 10.0


def test_virtual_cancel_stops_repetition(scheduler):
    fired = []

    async def tick():
        fired.append(1)

    async def scenario():
        handle = scheduler.every(1, tick)
        await scheduler.advance(2)
        handle.cancel()
        await scheduler.advance(5)

    asyncio.run(scenario())
    assert len(fired) == 2
    assert scheduler.pending == 0


def test_virtual_call_soon_runs_on_next_pending_pass(scheduler):
    fired = []

    async def once():
        fired.append("once")

    async def scenario():
        scheduler.call_soon(once)
        assert fired == []
        await scheduler.run_pending()
        await scheduler.advance(10)

    asyncio.run(scenario())
    assert fired == ["once"]


def test_virtual_orders_callbacks_by_due_time(scheduler):
    order = []

    def make(label):
        async def cb():
            order.append(label)
        return cb

    async def scenario():
        scheduler.every(5, make("five"))
        scheduler.every(2, make("two"))
        await scheduler.advance(6)

    asyncio.run(scenario())
    assert order == ["two", "two", "five", "two"]


def test_failing_callback_keeps_repeating(scheduler):
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    async def scenario():
        scheduler.every(1, flaky)
        await scheduler.advance(3)

    asyncio.run(scenario())
    assert len(calls) == 3


def test_virtual_shutdown_cancels_everything(scheduler):
    fired = []

    async def tick():
        fired.append(1)

    async def scenario():
        a = scheduler.every(1, tick)
        b = scheduler.call_soon(tick)
        await scheduler.shutdown()
        await scheduler.advance(5)
        return a, b

    a, b = asyncio.run(scenario())
    assert fired == []
    assert a.cancelled and b.cancelled


def test_asyncio_every_runs_until_cancelled():
    async def scenario():
        sched = AsyncioScheduler()
        calls = []

        async def tick():
            calls.append(1)

        handle = sched.every(0.01, tick)
        await asyncio.sleep(0.08)
        handle.cancel()
        seen = len(calls)
        await asyncio.sleep(0.05)
        await sched.shutdown()
        return seen, len(calls)

    seen, after = asyncio.run(scenario())
    assert seen >= 2
    assert after == seen


def test_asyncio_cancel_does_not_interrupt_running_callback():
    async def scenario():
        sched = AsyncioScheduler()
        started = asyncio.Event()
        finished = []

        async def slow():
            started.set()
            await asyncio.sleep(0.02)
            finished.append(1)

        handle = sched.every(0.001, slow)
        await started.wait()
        handle.cancel()
        await sched.shutdown()
        return finished

    assert asyncio.run(scenario()) == [1]


def test_asyncio_call_soon_and_shutdown():
    async def scenario():
        sched = AsyncioScheduler()
        fired = []

        async def once():
            fired.append(1)

        sched.call_soon(once)
        await asyncio.sleep(0.01)
        cancelled = sched.call_soon(once)
        cancelled.cancel()
        await sched.shutdown()
        return fired

    assert asyncio.run(scenario()) == [1]
