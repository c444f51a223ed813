"""
InMemoryStateStore — in-process snapshot holder with subscribe/unsubscribe.

Keeps the most recent snapshot published by a scheduler and forwards each
new snapshot to registered listeners, in registration order. This is the
default store for Queuer and AsyncQueuer; reactive/UI layers can subscribe
to it directly or supply their own StateStorePort implementation instead.

Zero external dependencies. Safe for a single event loop / thread.
"""
from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Generic, TypeVar

from pacer.domain.models import QueuerState

S = TypeVar("S", bound=QueuerState)

Listener = Callable[[S], None]


@dataclasses.dataclass
class InMemoryStateStore(Generic[S]):
    """
    Latest-value store for scheduler snapshots.

    Parameters
    ----------
    state : optional initial snapshot (None until the first publish)
    """

    state: S | None = None

    _listeners: list[Listener[S]] = dataclasses.field(
        default_factory=list, init=False, repr=False
    )

    def set_state(self, state: S) -> None:
        """Store `state` and notify every listener."""
        self.state = state
        # Copy: a listener may unsubscribe itself while being notified.
        for listener in list(self._listeners):
            listener(state)

    def subscribe(self, listener: Listener[S]) -> Callable[[], None]:
        """Register `listener`. Returns a function that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
