"""Tests for scheduler implementations."""
import asyncio

from protosession import AsyncioScheduler, VirtualScheduler, get_default_scheduler, set_default_scheduler


def test_virtual_timers_fire_in_due_order(scheduler):
    fired = []
    scheduler.call_later(30, lambda: fired.append('c'))
    scheduler.call_later(10, lambda: fired.append('a'))
    scheduler.call_later(10, lambda: fired.append('b'))

    assert scheduler.advance(9) == 0
    assert scheduler.advance(1) == 2
    assert fired == ['a', 'b']
    scheduler.advance(100)
    assert fired == ['a', 'b', 'c']
    assert scheduler.now_ms == 110
    assert scheduler.now() == 0.11


def test_virtual_cancel(scheduler):
    fired = []
    handle = scheduler.call_later(10, lambda: fired.append('x'))
    assert scheduler.pending_timers() == 1
    handle.cancel()
    handle.cancel()
    assert handle.cancelled
    assert scheduler.pending_timers() == 0
    scheduler.advance(50)
    assert fired == []


def test_virtual_callbacks_see_their_due_time(scheduler):
    seen = []
    scheduler.call_later(25, lambda: seen.append(scheduler.now_ms))
    scheduler.advance(100)
    assert seen == [25]


def test_virtual_timers_armed_by_callbacks_fire_in_same_advance(scheduler):
    fired = []

    def first():
        fired.append(scheduler.now_ms)
        scheduler.call_later(10, lambda: fired.append(scheduler.now_ms))

    scheduler.call_later(10, first)
    scheduler.advance(30)
    assert fired == [10, 20]
    assert scheduler.next_due_ms() is None


def test_virtual_spawn_runs_between_timers():
    scheduler = VirtualScheduler()
    order = []

    async def job(label):
        order.append(label)

    async def scenario():
        scheduler.call_later(10, lambda: scheduler.spawn(job('first')))
        scheduler.call_later(20, lambda: order.append('timer'))
        await scheduler.advance_async(20)

    asyncio.run(scenario())
    assert order == ['first', 'timer']


def test_asyncio_scheduler_runs_timers_and_tasks():
    results = []

    async def job():
        results.append('task')

    async def scenario():
        scheduler = AsyncioScheduler()
        handle = scheduler.call_later(5, lambda: results.append('timer'))
        cancelled = scheduler.call_later(5, lambda: results.append('cancelled'))
        cancelled.cancel()
        task = scheduler.spawn(job())
        await asyncio.sleep(0.05)
        await task
        assert not handle.cancelled
        assert cancelled.cancelled

    asyncio.run(scenario())
    assert sorted(results) == ['task', 'timer']


def test_default_scheduler_is_lazy_and_replaceable():
    default = get_default_scheduler()
    assert isinstance(default, AsyncioScheduler)
    assert get_default_scheduler() is default

    virtual = VirtualScheduler()
    set_default_scheduler(virtual)
    assert get_default_scheduler() is virtual
