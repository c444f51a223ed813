from pacer.adapters.store.memory import InMemoryStateStore
from pacer.domain.models import QueuerState
from pacer.ports.store import StateStorePort


def test_initial_state_is_none():
    store = InMemoryStateStore()
    assert store.state is None


def test_initial_state_constructor():
    snapshot = QueuerState(size=2)
    store = InMemoryStateStore(state=snapshot)
    assert store.state is snapshot


def test_set_state_replaces_snapshot():
    store = InMemoryStateStore()
    first, second = QueuerState(size=1), QueuerState(size=2)
    store.set_state(first)
    store.set_state(second)
    assert store.state is second


def test_subscriber_receives_each_snapshot():
    store = InMemoryStateStore()
    seen = []
    store.subscribe(seen.append)
    store.set_state(QueuerState(size=1))
    store.set_state(QueuerState(size=2))
    assert [s.size for s in seen] == [1, 2]


def test_subscribers_called_in_registration_order():
    store = InMemoryStateStore()
    calls = []
    store.subscribe(lambda s: calls.append("a"))
    store.subscribe(lambda s: calls.append("b"))
    store.set_state(QueuerState())
    assert calls == ["a", "b"]


def test_unsubscribe_stops_notifications():
    store = InMemoryStateStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    store.set_state(QueuerState())
    unsubscribe()
    store.set_state(QueuerState())
    assert len(seen) == 1
    assert store.listener_count == 0


def test_unsubscribe_twice_is_harmless():
    store = InMemoryStateStore()
    unsubscribe = store.subscribe(lambda s: None)
    unsubscribe()
    unsubscribe()
    assert store.listener_count == 0


def test_listener_may_unsubscribe_while_notified():
    store = InMemoryStateStore()
    calls = []

    def once(state: QueuerState) -> None:
        calls.append("once")
        unsubscribe()

    unsubscribe = store.subscribe(once)
    store.subscribe(lambda s: calls.append("always"))
    store.set_state(QueuerState())
    store.set_state(QueuerState())
    assert calls == ["once", "always", "always"]


def test_satisfies_state_store_port():
    assert isinstance(InMemoryStateStore(), StateStorePort)


def test_custom_store_satisfies_port():
    class ListStore:
        def __init__(self) -> None:
            self.states: list[QueuerState] = []

        def set_state(self, state: QueuerState) -> None:
            self.states.append(state)

    assert isinstance(ListStore(), StateStorePort)
