"""
Queuer — synchronous scheduler: one item per tick into a sync handler.

Usage
-----
    from pacer import Queuer

    q = Queuer(print, started=False)
    q.add_item("a")
    q.add_item("b")
    q.start()          # prints "a" then "b" before returning

Ticking
-------
With wait == 0 (the default) a tick drains the whole queue inline, in the
call that triggered it — add_item(), start(), set_options() — so handler
exceptions propagate straight to that caller.

With wait > 0 the first item runs immediately and each later one is
scheduled with loop.call_later() on the running asyncio loop, at least
`wait` after the previous one started. Exceptions from those timer ticks
reach the loop's exception handler; the next tick is still scheduled, so
one failing item does not strand the rest. Without a running loop nothing
can be scheduled: the items stay queued and the next add_item() or start()
runs whatever the spacing allows by then.

Once the queue is empty no timer stays armed; the next add_item() re-arms
it, still honouring the spacing.

The tick is reentrant-safe: a handler that calls add_item() or stop() on
its own queuer does not recurse.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

from pacer.core.base import BaseQueuer
from pacer.domain.models import QueueItem, QueuePosition, QueuerOptions, QueuerState
from pacer.ports.store import StateStorePort

T = TypeVar("T")


class Queuer(BaseQueuer[T]):
    """
    Synchronous FIFO / LIFO / priority queue with a start/stop tick loop.

    Parameters
    ----------
    fn      : handler called with each value, synchronously
    store   : snapshot receiver (default: a fresh InMemoryStateStore)
    options : any QueuerOptions field — max_size, wait, started, key,
              add_items_to, get_items_from, get_priority, expiration_duration,
              get_is_expired, initial_items, on_execute, on_reject,
              on_expire, on_items_change, on_is_running_change
    """

    options_type = QueuerOptions
    state_type = QueuerState

    def __init__(
        self,
        fn: Callable[[T], Any],
        *,
        store: StateStorePort | None = None,
        **options: Any,
    ) -> None:
        self._fn = fn
        self._execution_count = 0
        self._executing = False
        super().__init__(store=store, **options)

    @property
    def execution_count(self) -> int:
        return self._execution_count

    @property
    def is_idle(self) -> bool:
        return self._queue.is_empty and not self._executing

    def execute(self, position: QueuePosition | None = None) -> T | None:
        """
        Take the next value and run the handler on it now.

        Works whether or not the queuer is running. Returns the processed
        value, or None when the queue was empty.
        """
        item = self._queue.dequeue(position)
        if item is None:
            self._changed()
            return None
        self._run(item)
        return item.value

    # ------------------------------------------------------------------ #
    # Internal machinery                                                   #
    # ------------------------------------------------------------------ #

    def _tick(self) -> None:
        if self._ticking:
            return
        self._ticking = True
        try:
            while self._running and self._timer is None:
                self._queue.sweep_expired()
                if self._queue.is_empty:
                    break
                delay = self._remaining_wait()
                if delay > 0:
                    self._arm_timer(delay)
                    break
                item = self._queue.dequeue()
                if item is None:
                    break
                self._run(item)
        except Exception:
            # The failed item is gone; keep the spacing timer going for the rest.
            if self._running and self._timer is None and not self._queue.is_empty:
                delay = self._remaining_wait()
                if delay > 0:
                    self._arm_timer(delay)
            raise
        finally:
            self._ticking = False
            self._changed()

    def _run(self, item: QueueItem[T]) -> None:
        self._items_dirty = True
        self._last_started_at = time.monotonic()
        self._executing = True
        try:
            self._fn(item.value)
        finally:
            self._executing = False
        self._execution_count += 1
        self._fire("on_execute", item.value, self)
        self._changed()

    def _reset_counters(self) -> None:
        self._execution_count = 0

    def _state_fields(self) -> dict[str, Any]:
        fields = super()._state_fields()
        fields["execution_count"] = self._execution_count
        return fields


def queued(fn: Callable[[T], Any], **options: Any) -> Callable[..., bool]:
    """
    Build a started Queuer around `fn` and return its add_item.

        enqueue = queued(process, max_size=100)
        enqueue(item)            # True, or False when full
    """
    return Queuer(fn, **options).add_item
