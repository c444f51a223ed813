import asyncio
import time
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from pacer.adapters.store.memory import InMemoryStateStore
from pacer.core.queuer import Queuer, queued
from pacer.domain.errors import ConfigurationError
from pacer.domain.models import QueuePosition, QueuerState, QueuerStatus

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def handled() -> list:
    return []


@pytest.fixture
def queuer(handled: list) -> Queuer[int]:
    return Queuer(handled.append, started=False)


# ---------------------------------------------------------------------------
# Draining
# ---------------------------------------------------------------------------


def test_started_queuer_processes_inline(handled: list) -> None:
    q = Queuer(handled.append)
    q.add_item(1)
    q.add_item(2)
    assert handled == [1, 2]
    assert q.execution_count == 2
    assert q.is_empty


def test_stopped_queuer_only_collects(queuer: Queuer[int], handled: list) -> None:
    for i in range(3):
        assert queuer.add_item(i)
    assert handled == []
    assert queuer.size == 3


def test_start_drains_in_fifo_order(queuer: Queuer[int], handled: list) -> None:
    for i in range(3):
        queuer.add_item(i)
    queuer.start()
    assert handled == [0, 1, 2]
    assert queuer.execution_count == 3


def test_lifo_queuer(handled: list) -> None:
    q = Queuer(handled.append, started=False, get_items_from=QueuePosition.BACK)
    for i in range(3):
        q.add_item(i)
    q.start()
    assert handled == [2, 1, 0]


def test_priority_queuer(handled: list) -> None:
    q = Queuer(handled.append, started=False, get_priority=lambda v: v)
    for v in (2, 7, 4):
        q.add_item(v)
    q.start()
    assert handled == [7, 4, 2]


def test_initial_items_processed_on_construction(handled: list) -> None:
    q = Queuer(handled.append, initial_items=[1, 2])
    assert handled == [1, 2]
    assert q.execution_count == 2


def test_stop_then_add_keeps_items(queuer: Queuer[int], handled: list) -> None:
    queuer.start()
    queuer.add_item(1)
    queuer.stop()
    queuer.add_item(2)
    queuer.add_item(3)
    assert queuer.size == 2
    assert queuer.execution_count == 1
    queuer.start()
    assert handled == [1, 2, 3]
    assert queuer.execution_count == 3


def test_handler_may_enqueue_without_recursion(handled: list) -> None:
    def handler(value: int) -> None:
        handled.append(value)
        if value == 1:
            q.add_item(99)

    q = Queuer(handler, started=False)
    q.add_item(1)
    q.add_item(2)
    q.start()
    assert handled == [1, 2, 99]


def test_handler_may_stop_the_queuer(handled: list) -> None:
    def handler(value: int) -> None:
        handled.append(value)
        q.stop()

    q = Queuer(handler, started=False)
    for i in range(3):
        q.add_item(i)
    q.start()
    assert handled == [0]
    assert q.size == 2


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def test_handler_error_propagates_to_caller(handled: list) -> None:
    def handler(value: int) -> None:
        if value == 2:
            raise ValueError("bad item")
        handled.append(value)

    q = Queuer(handler, started=False)
    for i in (1, 2, 3):
        q.add_item(i)

    with pytest.raises(ValueError, match="bad item"):
        q.start()

    assert handled == [1]
    assert q.execution_count == 1
    assert q.peek_pending_items() == (3,)

    q.start()
    assert handled == [1, 3]


def test_handler_error_propagates_from_add_item() -> None:
    def handler(value: int) -> None:
        raise RuntimeError("boom")

    q = Queuer(handler)
    with pytest.raises(RuntimeError):
        q.add_item(1)
    assert q.is_empty


def test_invalid_options_fail_at_construction() -> None:
    with pytest.raises(ConfigurationError):
        Queuer(print, max_size=0)


def test_set_options_invalid_keeps_old_options(queuer: Queuer[int]) -> None:
    with pytest.raises(ConfigurationError):
        queuer.set_options(wait=-5)
    assert queuer.options.wait.total_seconds() == 0


# ---------------------------------------------------------------------------
# Backpressure & expiration
# ---------------------------------------------------------------------------


def test_max_size_rejects_overflow() -> None:
    on_reject = MagicMock()
    q = Queuer(print, started=False, max_size=3, on_reject=on_reject)
    results = [q.add_item(i) for i in range(5)]
    assert results == [True, True, True, False, False]
    assert q.size == 3
    assert q.rejection_count == 2
    assert q.is_full
    assert [c.args[0] for c in on_reject.call_args_list] == [3, 4]
    assert on_reject.call_args_list[0].args[1] is q


def test_rejection_logged_once() -> None:
    with capture_logs() as logs:
        q = Queuer(print, started=False, max_size=1)
        q.add_item(1)
        q.add_item(2)
    assert [e["event"] for e in logs].count("item_rejected") == 1


def test_expired_items_never_reach_handler(handled: list) -> None:
    on_expire = MagicMock()
    q = Queuer(
        handled.append,
        started=False,
        get_is_expired=lambda value, added_at: value == "stale",
        on_expire=on_expire,
    )
    q.add_item("a")
    q.add_item("stale")
    q.add_item("b")
    q.start()
    assert handled == ["a", "b"]
    assert q.expiration_count == 1
    on_expire.assert_called_once_with("stale", q)


def test_expiration_duration(handled: list) -> None:
    q = Queuer(handled.append, started=False, expiration_duration=0.01)
    q.add_item("old")
    time.sleep(0.02)
    q.start()
    assert handled == []
    assert q.expiration_count == 1


# ---------------------------------------------------------------------------
# Manual draining
# ---------------------------------------------------------------------------


def test_execute_runs_one_item_while_stopped(queuer: Queuer[int], handled: list) -> None:
    queuer.add_item(1)
    queuer.add_item(2)
    assert queuer.execute() == 1
    assert handled == [1]
    assert queuer.execution_count == 1
    assert queuer.size == 1


def test_execute_from_back(queuer: Queuer[int], handled: list) -> None:
    queuer.add_item(1)
    queuer.add_item(2)
    assert queuer.execute(QueuePosition.BACK) == 2


def test_execute_empty_returns_none(queuer: Queuer[int]) -> None:
    assert queuer.execute() is None
    assert queuer.execution_count == 0


def test_get_next_item_skips_handler(queuer: Queuer[int], handled: list) -> None:
    queuer.add_item(1)
    assert queuer.get_next_item() == 1
    assert handled == []
    assert queuer.execution_count == 0
    assert queuer.get_next_item() is None


def test_peek_does_not_remove(queuer: Queuer[int]) -> None:
    queuer.add_item(1)
    queuer.add_item(2)
    assert queuer.peek_next_item() == 1
    assert queuer.peek_all_items() == (1, 2)
    assert queuer.size == 2


def test_clear_empties_queue(queuer: Queuer[int]) -> None:
    for i in range(3):
        queuer.add_item(i)
    queuer.clear()
    assert queuer.is_empty
    assert queuer.state.size == 0


# ---------------------------------------------------------------------------
# State publishing
# ---------------------------------------------------------------------------


def test_status_transitions(queuer: Queuer[int]) -> None:
    assert queuer.state.status is QueuerStatus.STOPPED
    queuer.start()
    assert queuer.state.status is QueuerStatus.IDLE
    assert queuer.state.is_running
    queuer.stop()
    assert queuer.state.status is QueuerStatus.STOPPED


def test_status_running_while_executing() -> None:
    seen: list[QueuerStatus] = []
    q = Queuer(lambda v: seen.append(q.state.status), started=False)
    q.add_item(1)
    q.start()
    assert seen == [QueuerStatus.RUNNING]


def test_every_mutation_publishes() -> None:
    store = InMemoryStateStore()
    snapshots: list[QueuerState] = []
    store.subscribe(snapshots.append)
    q = Queuer(print, store=store, started=False, key="printer")
    published = len(snapshots)
    q.add_item(1)
    assert len(snapshots) > published
    assert snapshots[-1].size == 1
    assert snapshots[-1].key == "printer"
    assert store.state is q.state


def test_snapshots_are_immutable_copies(queuer: Queuer[int]) -> None:
    queuer.add_item(1)
    before = queuer.state
    queuer.add_item(2)
    assert before.items == (1,)
    assert queuer.state.items == (1, 2)


def test_on_items_change_fires_on_add(queuer: Queuer[int]) -> None:
    on_items_change = MagicMock()
    queuer.set_options(on_items_change=on_items_change)
    queuer.add_item(1)
    on_items_change.assert_called_once_with(queuer)


def test_on_execute_receives_value(handled: list) -> None:
    on_execute = MagicMock()
    q = Queuer(handled.append, on_execute=on_execute)
    q.add_item("x")
    on_execute.assert_called_once_with("x", q)


def test_on_is_running_change(queuer: Queuer[int]) -> None:
    changes = []
    queuer.set_options(on_is_running_change=lambda q: changes.append(q.is_running))
    queuer.start()
    queuer.start()
    queuer.stop()
    assert changes == [True, False]


def test_reset_twice_yields_identical_empty_state(queuer: Queuer[int]) -> None:
    queuer.set_options(max_size=1)
    queuer.add_item(1)
    queuer.add_item(2)
    queuer.start()

    queuer.reset()
    first = queuer.state
    queuer.reset()
    second = queuer.state

    assert first == second
    assert first.size == 0
    assert first.execution_count == 0
    assert first.rejection_count == 0
    assert first.expiration_count == 0
    assert first.is_running is False  # started=False restored


def test_reset_with_initial_items(handled: list) -> None:
    q = Queuer(handled.append, started=False, initial_items=[1, 2])
    q.get_next_item()
    q.reset(with_initial_items=True)
    assert q.peek_pending_items() == (1, 2)


# ---------------------------------------------------------------------------
# Wait spacing (needs a running loop)
# ---------------------------------------------------------------------------


async def test_wait_spaces_executions() -> None:
    loop = asyncio.get_running_loop()
    times: list[float] = []
    q = Queuer(lambda v: times.append(loop.time()), wait=0.05)
    for i in range(3):
        q.add_item(i)

    assert len(times) == 1  # first runs immediately, the rest are timed
    await asyncio.sleep(0.2)

    assert len(times) == 3
    assert all(b - a >= 0.04 for a, b in zip(times, times[1:]))


async def test_stop_cancels_armed_timer(handled: list) -> None:
    q = Queuer(handled.append, wait=0.03)
    for i in range(3):
        q.add_item(i)
    q.stop()
    await asyncio.sleep(0.1)
    assert handled == [0]
    assert q.size == 2


async def test_wait_honoured_after_idle(handled: list) -> None:
    q = Queuer(handled.append, wait=0.05)
    q.add_item(1)
    q.add_item(2)  # too soon: armed for later
    assert handled == [1]
    await asyncio.sleep(0.1)
    assert handled == [1, 2]


def test_queued_helper(handled: list) -> None:
    enqueue = queued(handled.append, max_size=5)
    assert enqueue("a") is True
    assert handled == ["a"]


def test_wait_without_loop_keeps_items(handled: list) -> None:
    q = Queuer(handled.append, wait=0.05)
    assert q.add_item(1)
    assert q.add_item(2)  # too soon and no loop to schedule it: stays queued
    assert handled == [1]
    assert q.peek_pending_items() == (2,)

    time.sleep(0.06)
    q.add_item(3)
    assert handled == [1, 2]
    assert q.peek_pending_items() == (3,)


async def test_failing_timed_tick_keeps_processing() -> None:
    loop = asyncio.get_running_loop()
    errors: list[BaseException] = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda loop, context: errors.append(context["exception"]))

    seen: list[int] = []

    def handler(value: int) -> None:
        seen.append(value)
        if value == 2:
            raise ValueError("bad item")

    try:
        q = Queuer(handler, wait=0.01)
        for i in (1, 2, 3, 4):
            q.add_item(i)
        await asyncio.sleep(0.2)
    finally:
        loop.set_exception_handler(previous)

    assert seen == [1, 2, 3, 4]
    assert q.execution_count == 3
    assert q.is_empty
    assert len(errors) == 1
    assert isinstance(errors[0], ValueError)
