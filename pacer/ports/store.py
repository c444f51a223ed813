"""
StateStorePort — the single port in pacer.

Schedulers publish an immutable state snapshot after every mutation. Any
object satisfying this structural Protocol can receive those snapshots —
a reactive store, a devtools bridge, a metrics exporter. No base class or
registration is required.

Publish contract
----------------
set_state(state)
  - called synchronously, from the scheduler's own code path, after each
    mutation (add, admission, settlement, expiry, clear, start/stop, reset)
  - `state` is a frozen QueuerState / AsyncQueuerState; it is never mutated
    afterwards, so implementations may keep a reference to it
  - exceptions raised here propagate to whoever triggered the mutation
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pacer.domain.models import QueuerState


@runtime_checkable
class StateStorePort(Protocol):
    """
    Minimal interface required by pacer core.

    Implementing adapters (built-in):
      - InMemoryStateStore — keeps the latest snapshot, fans out to listeners
    """

    def set_state(self, state: QueuerState) -> None:
        """Receive the newest snapshot."""
        ...
