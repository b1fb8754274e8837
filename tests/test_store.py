from conftest import FakeEndpoint
from modules.store import StateStore


class TestStateStore:
    def test_values_are_scoped_per_endpoint(self, store):
        ep1, ep2 = FakeEndpoint(1), FakeEndpoint(2)
        store.put_value(ep1, "tsn", 5)
        assert store.get_value(ep1, "tsn") == 5
        assert store.get_value(ep2, "tsn") is None
        assert store.has_value(ep1, "tsn")
        store.clear_value(ep1, "tsn")
        assert not store.has_value(ep1, "tsn")

    def test_last_scheduled_timer_wins(self, store, scheduler):
        """Rescheduling under the same key cancels the previous timer."""
        endpoint = FakeEndpoint(1)
        fired = []
        store.schedule(endpoint, "timer", 90, lambda: fired.append("first"))
        store.schedule(endpoint, "timer", 30, lambda: fired.append("second"))

        assert [t.delay for t in scheduler.active] == [30]
        scheduler.fire_all()
        assert fired == ["second"]
        assert not store.pending(endpoint, "timer")

    def test_timers_under_different_keys_coexist(self, store, scheduler):
        endpoint = FakeEndpoint(1)
        store.schedule(endpoint, "a", 1, lambda: None)
        store.schedule(endpoint, "b", 2, lambda: None)
        assert len(scheduler.active) == 2

    def test_cancel_without_timer_is_a_no_op(self, store):
        store.cancel(FakeEndpoint(1), "timer")

    def test_clear_cancels_everything(self, store, scheduler):
        endpoint = FakeEndpoint(1)
        store.put_value(endpoint, "x", 1)
        store.schedule(endpoint, "timer", 10, lambda: None)
        store.clear()
        assert scheduler.active == []
        assert store.get_value(endpoint, "x") is None

    async def test_default_scheduler_uses_running_loop(self):
        store = StateStore()
        endpoint = FakeEndpoint(1)
        store.schedule(endpoint, "timer", 60, lambda: None)
        assert store.pending(endpoint, "timer")
        store.clear()
