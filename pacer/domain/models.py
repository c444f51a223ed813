"""
Domain models for pacer — backed by Pydantic v2.

Pydantic handles:
  - option validation (ranges, enum coercion, callables) at construction
    and on every set_options() call
  - number → timedelta coercion for durations (plain numbers are seconds)
  - immutability of queue items, option records and state snapshots

All models are frozen. Option changes build a new record from the old one
(see QueueOptions.merged), so a scheduler swaps its options atomically and
never observes a half-applied update.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Generic, Self, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pacer.domain.errors import ConfigurationError

T = TypeVar("T")


class QueuePosition(str, Enum):
    """End of the queue an item is added to or taken from."""

    FRONT = "front"
    BACK = "back"


class QueuerStatus(str, Enum):
    """Lifecycle states published in scheduler snapshots."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"

    @classmethod
    def from_flags(cls, is_running: bool, is_idle: bool) -> "QueuerStatus":
        if not is_running:
            return cls.STOPPED
        return cls.IDLE if is_idle else cls.RUNNING


class QueueItem(BaseModel, Generic[T]):
    """
    A single value waiting in (or taken from) a Queue.

    id         — stable identifier, assigned at insertion
    value      — the caller's value, handed unchanged to the handler
    added_at   — UTC timestamp set at insertion
    priority   — result of get_priority(value); None when no priority is configured
    expires_at — added_at + expiration_duration; None when items never expire
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    value: T
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    priority: float | None = None
    expires_at: datetime | None = None

    @classmethod
    def new(
        cls,
        value: T,
        priority: float | None = None,
        expiration_duration: timedelta | None = None,
    ) -> "QueueItem[T]":
        """Factory — stamps the insertion time and derives the deadline."""
        added_at = datetime.now(timezone.utc)
        expires_at = added_at + expiration_duration if expiration_duration else None
        return cls(
            value=value, added_at=added_at, priority=priority, expires_at=expires_at
        )

    def is_expired(self, now: datetime) -> bool:
        """True once the deadline has passed. Items without a deadline never expire."""
        return self.expires_at is not None and now >= self.expires_at


# --------------------------------------------------------------------------- #
# Options                                                                     #
# --------------------------------------------------------------------------- #


class QueueOptions(BaseModel):
    """
    Ordering, capacity and expiration settings shared by every scheduler.

    Priority convention: a HIGHER get_priority() value is taken first. Items
    with equal priority keep their insertion order.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_size: Annotated[int, Field(ge=1)] | None = None
    add_items_to: QueuePosition = QueuePosition.BACK
    get_items_from: QueuePosition = QueuePosition.FRONT
    get_priority: Callable[[Any], float] | None = None
    expiration_duration: timedelta | None = None
    get_is_expired: Callable[[Any, datetime], bool] | None = None
    initial_items: tuple[Any, ...] = ()

    @field_validator("expiration_duration")
    @classmethod
    def _positive_expiration(cls, v: timedelta | None) -> timedelta | None:
        if v is not None and v <= timedelta(0):
            raise ValueError("expiration_duration must be positive")
        return v

    @classmethod
    def build(cls, **values: Any) -> Self:
        """Validate `values` into a record. Raises ConfigurationError on bad input."""
        try:
            return cls(**values)
        except ValidationError as exc:
            errors = exc.errors()
            loc = errors[0]["loc"] if errors else ()
            option = str(loc[0]) if loc else None
            detail = "; ".join(
                f"{'.'.join(str(p) for p in e['loc']) or '<root>'}: {e['msg']}"
                for e in errors
            )
            raise ConfigurationError(
                f"Invalid {cls.__name__}: {detail}", option=option
            ) from exc

    def merged(self, **changes: Any) -> Self:
        """Return a new, fully re-validated record with `changes` applied."""
        current = {name: getattr(self, name) for name in type(self).model_fields}
        return self.build(**{**current, **changes})


class QueuerOptions(QueueOptions):
    """
    Options for the synchronous Queuer.

    wait may be a timedelta (numbers are seconds) or a callable receiving the
    scheduler and returning one; callables are evaluated on every decision.
    """

    wait: timedelta | Callable[[Any], timedelta] = timedelta(0)
    started: bool = True
    key: str | None = None

    on_execute: Callable[..., Any] | None = None
    on_reject: Callable[..., Any] | None = None
    on_expire: Callable[..., Any] | None = None
    on_items_change: Callable[..., Any] | None = None
    on_is_running_change: Callable[..., Any] | None = None

    @field_validator("wait")
    @classmethod
    def _non_negative_wait(cls, v: Any) -> Any:
        if isinstance(v, timedelta) and v < timedelta(0):
            raise ValueError("wait must not be negative")
        return v


class AsyncQueuerOptions(QueuerOptions):
    """
    Options for AsyncQueuer.

    throw_on_error=None resolves to `on_error is None` when the scheduler is
    built: without an error callback, failures surface from flush().
    """

    concurrency: int | Callable[[Any], int] = 1
    throw_on_error: bool | None = None

    on_success: Callable[..., Any] | None = None
    on_error: Callable[..., Any] | None = None
    on_settled: Callable[..., Any] | None = None

    @field_validator("concurrency")
    @classmethod
    def _positive_concurrency(cls, v: Any) -> Any:
        if isinstance(v, int) and v < 1:
            raise ValueError("concurrency must be at least 1")
        return v


# --------------------------------------------------------------------------- #
# State snapshots                                                             #
# --------------------------------------------------------------------------- #


class QueuerState(BaseModel):
    """
    Immutable snapshot of a Queuer, republished after every mutation.

    items — pending values, in the order they will be taken
    """

    model_config = ConfigDict(frozen=True)

    key: str | None = None
    items: tuple[Any, ...] = ()
    size: int = 0
    is_empty: bool = True
    is_full: bool = False
    is_running: bool = False
    is_idle: bool = True
    status: QueuerStatus = QueuerStatus.STOPPED
    execution_count: int = 0
    rejection_count: int = 0
    expiration_count: int = 0


class AsyncQueuerState(QueuerState):
    """
    Immutable snapshot of an AsyncQueuer.

    items         — active_items followed by pending_items
    active_items  — values whose handler is currently in flight
    pending_items — values still waiting in the queue
    last_result   — return value of the most recent successful handler call
    """

    active_items: tuple[Any, ...] = ()
    pending_items: tuple[Any, ...] = ()
    success_count: int = 0
    error_count: int = 0
    settled_count: int = 0
    is_executing: bool = False
    last_result: Any = None
