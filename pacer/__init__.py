"""
pacer — queue-based execution control for synchronous and async handlers.

A scheduler owns a bounded, ordered queue and decides when each item is
handed to your function:

  - Queuer       — one item per tick into a synchronous handler, with an
                   optional minimum spacing (`wait`) between ticks
  - AsyncQueuer  — up to `concurrency` async handler calls in flight at
                   once, with backpressure, priorities, expiration and
                   per-task success / error isolation

Both publish an immutable state snapshot after every mutation, so UI or
monitoring layers can follow along without touching the queue itself.

Quick start
-----------
    import asyncio
    from pacer import AsyncQueuer

    async def fetch(url: str) -> int:
        await asyncio.sleep(0.1)
        return len(url)

    async def main():
        queuer = AsyncQueuer(
            fetch,
            concurrency=2,
            max_size=100,
            on_success=lambda result, url, q: print(url, result),
        )
        for url in ("a.example", "b.example", "c.example"):
            queuer.add_item(url)
        await queuer.flush()
        print(queuer.state.settled_count)   # 3

    asyncio.run(main())

Ordering
--------
  add_items_to / get_items_from pick the insertion and removal ends
  (BACK/FRONT → FIFO, BACK/BACK → LIFO). With get_priority, higher values
  are taken first and ties keep insertion order.

State publishing
----------------
Pass any object with `set_state(state)` as `store=` (see StateStorePort).
The default InMemoryStateStore keeps the latest snapshot and offers
subscribe(listener) → unsubscribe.

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (QueueItem, options records, state snapshots)
  ports/    — Protocol interfaces (StateStorePort)
  core/     — scheduling logic (Queue, Queuer, AsyncQueuer)
  adapters/ — concrete state stores
"""
from __future__ import annotations

from pacer.adapters.store.memory import InMemoryStateStore
from pacer.core.async_queuer import AsyncQueuer, async_queued, current_abort_signal
from pacer.core.queue import Queue
from pacer.core.queuer import Queuer, queued
from pacer.domain.errors import ConfigurationError, PacerError
from pacer.domain.models import (
    AsyncQueuerOptions,
    AsyncQueuerState,
    QueueItem,
    QueueOptions,
    QueuePosition,
    QueuerOptions,
    QueuerState,
    QueuerStatus,
)
from pacer.ports.store import StateStorePort

__all__ = [
    # Domain models
    "QueueItem",
    "QueuePosition",
    "QueuerStatus",
    "QueueOptions",
    "QueuerOptions",
    "AsyncQueuerOptions",
    "QueuerState",
    "AsyncQueuerState",
    # Errors
    "PacerError",
    "ConfigurationError",
    # Port (for typing custom stores)
    "StateStorePort",
    # Schedulers
    "Queue",
    "Queuer",
    "AsyncQueuer",
    "queued",
    "async_queued",
    "current_abort_signal",
    # Built-in state stores
    "InMemoryStateStore",
]
