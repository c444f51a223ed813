"""
Queue — bounded, ordered container shared by Queuer and AsyncQueuer.

Ordering
--------
Without get_priority the queue is double-ended: items go in at
`add_items_to` (or an explicit position) and come out at `get_items_from`.

    add_items_to=BACK,  get_items_from=FRONT  →  FIFO (default)
    add_items_to=BACK,  get_items_from=BACK   →  LIFO

With get_priority, each item is inserted before the first existing item of
strictly lower priority, so the front always holds the highest priority and
equal priorities stay in insertion order. The position argument is ignored.

Capacity & expiration
---------------------
enqueue() on a full queue returns False, bumps rejection_count and calls
on_reject — it never raises. Expired items are swept out on enqueue(),
dequeue() and explicit sweep_expired() calls; each one bumps
expiration_count and calls on_expire exactly once. Peeking never mutates.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Generic, TypeVar

import structlog

from pacer.domain.models import QueueItem, QueueOptions, QueuePosition

T = TypeVar("T")

logger = structlog.get_logger()


class Queue(Generic[T]):
    """
    Ordered item container owned by a single scheduler.

    Parameters
    ----------
    options   : ordering / capacity / expiration settings; the owner may swap
                this attribute for a new record at any time
    on_reject : called with the rejected value when the queue is full
    on_expire : called with each expired value after it has been removed
    """

    def __init__(
        self,
        options: QueueOptions | None = None,
        *,
        on_reject: Callable[[T], None] | None = None,
        on_expire: Callable[[T], None] | None = None,
    ) -> None:
        self.options = options if options is not None else QueueOptions()
        self._on_reject = on_reject
        self._on_expire = on_expire
        self._items: list[QueueItem[T]] = []
        self.rejection_count = 0
        self.expiration_count = 0

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def __len__(self) -> int:
        return len(self._items)

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def is_full(self) -> bool:
        max_size = self.options.max_size
        return max_size is not None and len(self._items) >= max_size

    def peek_next(self, position: QueuePosition | None = None) -> QueueItem[T] | None:
        """The item dequeue() would return, without removing it."""
        if not self._items:
            return None
        position = QueuePosition(position or self.options.get_items_from)
        return self._items[0] if position is QueuePosition.FRONT else self._items[-1]

    def peek_all(self) -> tuple[QueueItem[T], ...]:
        """All items in removal order for the configured get_items_from end."""
        if self.options.get_items_from is QueuePosition.BACK:
            return tuple(reversed(self._items))
        return tuple(self._items)

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def enqueue(self, value: T, position: QueuePosition | None = None) -> bool:
        """Insert `value`. Returns False (without mutating) when the queue is full."""
        self.sweep_expired()

        if self.is_full:
            self.rejection_count += 1
            logger.debug(
                "item_rejected",
                size=len(self._items),
                max_size=self.options.max_size,
            )
            if self._on_reject is not None:
                self._on_reject(value)
            return False

        get_priority = self.options.get_priority
        item = QueueItem.new(
            value,
            priority=get_priority(value) if get_priority is not None else None,
            expiration_duration=self.options.expiration_duration,
        )

        if item.priority is not None:
            index = next(
                (
                    i
                    for i, existing in enumerate(self._items)
                    if existing.priority is None or existing.priority < item.priority
                ),
                len(self._items),
            )
            self._items.insert(index, item)
        elif QueuePosition(position or self.options.add_items_to) is QueuePosition.FRONT:
            self._items.insert(0, item)
        else:
            self._items.append(item)
        return True

    def dequeue(self, position: QueuePosition | None = None) -> QueueItem[T] | None:
        """Remove and return the next live item, or None when empty."""
        self.sweep_expired()
        if not self._items:
            return None
        position = QueuePosition(position or self.options.get_items_from)
        return self._items.pop(0 if position is QueuePosition.FRONT else -1)

    def sweep_expired(self) -> list[QueueItem[T]]:
        """Remove every expired item; returns them in queue order."""
        get_is_expired = self.options.get_is_expired
        if get_is_expired is None and self.options.expiration_duration is None:
            return []

        now = datetime.now(timezone.utc)
        live: list[QueueItem[T]] = []
        expired: list[QueueItem[T]] = []
        for item in self._items:
            if get_is_expired is not None:
                is_expired = get_is_expired(item.value, item.added_at)
            else:
                is_expired = item.is_expired(now)
            (expired if is_expired else live).append(item)

        if not expired:
            return []

        self._items = live
        for item in expired:
            self.expiration_count += 1
            logger.debug("item_expired", item_id=item.id, added_at=item.added_at)
            if self._on_expire is not None:
                self._on_expire(item.value)
        return expired

    def clear(self) -> int:
        """Drop every item. Returns how many were removed."""
        removed = len(self._items)
        self._items = []
        return removed

    def reset(self) -> None:
        """Drop every item and zero the rejection/expiration counters."""
        self._items = []
        self.rejection_count = 0
        self.expiration_count = 0
