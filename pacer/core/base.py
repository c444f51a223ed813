"""
BaseQueuer — the parts Queuer and AsyncQueuer have in common.

A scheduler exclusively owns one Queue and its counters. Callers only touch
it through the public methods below and read frozen snapshots (`state`);
every mutation ends in _changed(), which fires on_items_change when the item
set moved and then publishes a fresh snapshot to the StateStorePort.

Subclasses provide:
  _tick()        — drain / admission step, re-run on add, start and set_options
  _state_fields() — extra snapshot fields (call super() and extend)
  is_idle        — idle semantics for that scheduler
"""

from __future__ import annotations

import asyncio
import time
from datetime import timedelta
from typing import Any, ClassVar, Generic, TypeVar

import structlog

from pacer.adapters.store.memory import InMemoryStateStore
from pacer.core.queue import Queue
from pacer.domain.errors import ConfigurationError
from pacer.domain.models import QueuePosition, QueuerOptions, QueuerState, QueuerStatus
from pacer.ports.store import StateStorePort

T = TypeVar("T")

logger = structlog.get_logger()


class BaseQueuer(Generic[T]):
    options_type: ClassVar[type[QueuerOptions]] = QueuerOptions
    state_type: ClassVar[type[QueuerState]] = QueuerState

    def __init__(self, *, store: StateStorePort | None = None, **options: Any) -> None:
        self._options = self.options_type.build(**options)
        self._queue: Queue[T] = Queue(
            self._options, on_reject=self._handle_reject, on_expire=self._handle_expire
        )
        self._store: StateStorePort = store if store is not None else InMemoryStateStore()
        self._running = self._options.started
        self._ticking = False
        self._timer: asyncio.TimerHandle | None = None
        self._last_started_at: float | None = None
        self._items_dirty = False
        self._state: QueuerState | None = None
        self._log = logger.bind(queuer=self._options.key, kind=type(self).__name__)

        self._seed()
        if self._running:
            self._tick()

    # ------------------------------------------------------------------ #
    # Options                                                              #
    # ------------------------------------------------------------------ #

    @property
    def options(self) -> QueuerOptions:
        return self._options

    def set_options(self, **changes: Any) -> None:
        """
        Re-validate and swap the options record atomically.

        Raises ConfigurationError (leaving the old options in place) when the
        result is invalid. Pending wait timers are re-armed under the new
        options; active work is never touched.
        """
        self._options = self._options.merged(**changes)
        self._queue.options = self._options
        self._log = logger.bind(queuer=self._options.key, kind=type(self).__name__)
        self._cancel_timer()
        if self._running:
            self._tick()
        else:
            self._changed()

    # ------------------------------------------------------------------ #
    # Queue operations                                                     #
    # ------------------------------------------------------------------ #

    def add_item(self, value: T, position: QueuePosition | None = None) -> bool:
        """
        Enqueue `value`; processing starts right away when running.

        Returns False when the queue is full. The item is then dropped,
        on_reject fires and rejection_count goes up by one.
        """
        added = self._queue.enqueue(value, position)
        if added:
            self._items_dirty = True
        self._changed()
        if added and self._running:
            self._tick()
        return added

    def get_next_item(self, position: QueuePosition | None = None) -> T | None:
        """Remove and return the next value without running the handler."""
        item = self._queue.dequeue(position)
        if item is not None:
            self._items_dirty = True
        self._changed()
        return item.value if item is not None else None

    def peek_next_item(self, position: QueuePosition | None = None) -> T | None:
        item = self._queue.peek_next(position)
        return item.value if item is not None else None

    def peek_pending_items(self) -> tuple[T, ...]:
        """Values still waiting, in the order they will be taken."""
        return tuple(item.value for item in self._queue.peek_all())

    def peek_all_items(self) -> tuple[T, ...]:
        return self.peek_pending_items()

    def clear(self) -> None:
        """Drop every pending item. Work already running is unaffected."""
        if self._queue.clear():
            self._items_dirty = True
        self._changed()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Begin (or resume) processing and process immediately."""
        was_running = self._running
        self._running = True
        if not was_running:
            self._log.info("queuer_started", size=self._queue.size)
            self._fire("on_is_running_change", self)
        self._changed()
        self._tick()

    def stop(self) -> None:
        """Stop processing. Queued items stay queued; running work completes."""
        was_running = self._running
        self._running = False
        self._cancel_timer()
        if was_running:
            self._log.info("queuer_stopped", size=self._queue.size)
            self._fire("on_is_running_change", self)
        self._changed()

    def reset(self, with_initial_items: bool = False) -> None:
        """Empty the queue, zero every counter and restore `started`."""
        self._cancel_timer()
        self._queue.reset()
        self._reset_counters()
        self._last_started_at = None
        was_running = self._running
        self._running = self._options.started
        self._items_dirty = True
        self._log.info("queuer_reset", with_initial_items=with_initial_items)
        if was_running != self._running:
            self._fire("on_is_running_change", self)
        if with_initial_items:
            self._seed()
        self._changed()
        if self._running:
            self._tick()

    # ------------------------------------------------------------------ #
    # Read-only views                                                      #
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> QueuerState:
        """The most recently published snapshot."""
        if self._state is None:
            self._state = self._snapshot()
        return self._state

    @property
    def store(self) -> StateStorePort:
        return self._store

    @property
    def size(self) -> int:
        return self._queue.size

    @property
    def is_empty(self) -> bool:
        return self._queue.is_empty

    @property
    def is_full(self) -> bool:
        return self._queue.is_full

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_idle(self) -> bool:
        raise NotImplementedError

    @property
    def rejection_count(self) -> int:
        return self._queue.rejection_count

    @property
    def expiration_count(self) -> int:
        return self._queue.expiration_count

    # ------------------------------------------------------------------ #
    # Subclass hooks                                                       #
    # ------------------------------------------------------------------ #

    def _tick(self) -> None:
        raise NotImplementedError

    def _reset_counters(self) -> None:
        raise NotImplementedError

    def _state_fields(self) -> dict[str, Any]:
        is_idle = self.is_idle
        return {
            "key": self._options.key,
            "items": self.peek_pending_items(),
            "size": self._queue.size,
            "is_empty": self._queue.is_empty,
            "is_full": self._queue.is_full,
            "is_running": self._running,
            "is_idle": is_idle,
            "status": QueuerStatus.from_flags(self._running, is_idle),
            "rejection_count": self._queue.rejection_count,
            "expiration_count": self._queue.expiration_count,
        }

    # ------------------------------------------------------------------ #
    # Internal machinery                                                   #
    # ------------------------------------------------------------------ #

    def _seed(self) -> None:
        for value in self._options.initial_items:
            if self._queue.enqueue(value):
                self._items_dirty = True
        self._changed()

    def _snapshot(self) -> QueuerState:
        return self.state_type(**self._state_fields())

    def _changed(self) -> None:
        """Fire on_items_change if items moved, then publish a new snapshot."""
        if self._items_dirty:
            self._items_dirty = False
            self._fire("on_items_change", self)
        self._state = self._snapshot()
        self._store.set_state(self._state)

    def _fire(self, name: str, *args: Any) -> None:
        callback = getattr(self._options, name)
        if callback is not None:
            callback(*args)

    def _handle_reject(self, value: T) -> None:
        self._fire("on_reject", value, self)

    def _handle_expire(self, value: T) -> None:
        self._items_dirty = True
        self._fire("on_expire", value, self)

    def _wait_seconds(self) -> float:
        wait = self._options.wait
        if callable(wait):
            wait = wait(self)
        if isinstance(wait, (int, float)):
            wait = timedelta(seconds=wait)
        if not isinstance(wait, timedelta) or wait < timedelta(0):
            raise ConfigurationError(
                f"wait must be a non-negative timedelta, got {wait!r}", option="wait"
            )
        return wait.total_seconds()

    def _remaining_wait(self) -> float:
        """Seconds left before the next start is allowed (0 when free to go)."""
        if self._last_started_at is None:
            return 0.0
        wait = self._wait_seconds()
        if wait <= 0:
            return 0.0
        return max(0.0, self._last_started_at + wait - time.monotonic())

    def _arm_timer(self, delay: float) -> bool:
        """
        Schedule the next tick `delay` seconds from now.

        Without a running event loop nothing is scheduled and False is
        returned; the items stay queued until the next trigger.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log.debug("admission_deferred", size=self._queue.size, delay=delay)
            return False
        self._timer = loop.call_later(delay, self._on_timer)
        return True

    def _on_timer(self) -> None:
        self._timer = None
        self._tick()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
