"""Tests for the live-context registry."""

import threading

import pytest

from conftest import BASE_URL
from storefront.context import ContextRegistry, StorefrontContext


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def built():
    return []


@pytest.fixture
def make_registry(storage, backend, clock, built):
    def make(max_contexts=10, idle_seconds=60):
        def factory(client_id):
            ctx = StorefrontContext(client_id, storage, base_url=BASE_URL, transport=backend.transport)
            built.append(client_id)
            return ctx

        return ContextRegistry(factory, max_contexts=max_contexts, idle_seconds=idle_seconds,
                               monotonic=clock)
    return make


def use(registry, client_id):
    ctx = registry.acquire(client_id)
    registry.release(ctx)
    return ctx


class TestAcquire:
    def test_same_client_gets_same_context(self, make_registry, built):
        registry = make_registry()

        first = use(registry, "tab-1")
        second = use(registry, "tab-1")

        assert first is second
        assert first.initialized
        assert built == ["tab-1"]

    def test_acquired_context_is_locked_until_released(self, make_registry):
        registry = make_registry()

        ctx = registry.acquire("tab-1")
        assert ctx.lock.locked()

        registry.release(ctx)
        assert not ctx.lock.locked()

    def test_concurrent_first_requests_build_one_context(self, make_registry, built):
        registry = make_registry()
        seen = []
        start = threading.Barrier(8)

        def request():
            start.wait()
            seen.append(use(registry, "tab-1"))

        threads = [threading.Thread(target=request) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert built == ["tab-1"]
        assert len({id(ctx) for ctx in seen}) == 1


class TestEviction:
    def test_least_recently_used_is_torn_down_over_the_limit(self, make_registry, product):
        registry = make_registry(max_contexts=2)
        oldest = registry.acquire("tab-1")
        oldest.cart.add_item(product, 3)
        registry.release(oldest)
        use(registry, "tab-2")

        use(registry, "tab-3")

        assert len(registry) == 2
        assert "tab-1" not in registry
        assert not oldest.initialized

    def test_evicted_client_is_rebuilt_from_storage(self, make_registry, built, product):
        registry = make_registry(max_contexts=1)
        ctx = registry.acquire("tab-1")
        ctx.cart.add_item(product, 3)
        registry.release(ctx)
        use(registry, "tab-2")

        rebuilt = use(registry, "tab-1")

        assert rebuilt is not ctx
        assert rebuilt.cart.item_count == 3
        assert built == ["tab-1", "tab-2", "tab-1"]

    def test_recent_use_protects_from_eviction(self, make_registry):
        registry = make_registry(max_contexts=2)
        use(registry, "tab-1")
        use(registry, "tab-2")
        use(registry, "tab-1")

        use(registry, "tab-3")

        assert "tab-1" in registry
        assert "tab-2" not in registry

    def test_idle_contexts_are_torn_down(self, make_registry, clock):
        registry = make_registry(idle_seconds=60)
        use(registry, "tab-1")
        clock.now = 30
        use(registry, "tab-2")

        clock.now = 75
        use(registry, "tab-3")

        assert "tab-1" not in registry
        assert "tab-2" in registry
        assert len(registry) == 2

    def test_context_in_use_is_not_evicted(self, make_registry):
        registry = make_registry(max_contexts=1)
        busy = registry.acquire("tab-1")

        use(registry, "tab-2")

        assert "tab-1" in registry
        assert busy.initialized
        registry.release(busy)

    def test_close_all_tears_everything_down(self, make_registry):
        registry = make_registry()
        contexts = [use(registry, "tab-1"), use(registry, "tab-2")]

        registry.close_all()

        assert len(registry) == 0
        assert not any(ctx.initialized for ctx in contexts)
