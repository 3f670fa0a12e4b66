"""Tests for NodeStateCache."""

import threading

from znodewatch.cache import NodeState, NodeStateCache


class TestNodeStateCache:
    def test_get_or_create_returns_same_state(self):
        cache = NodeStateCache()

        first = cache.get_or_create("/a")

        assert cache.get_or_create("/a") is first
        assert first.children == frozenset()
        assert "/a" in cache

    def test_concurrent_first_access_yields_one_state(self):
        cache = NodeStateCache()
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(cache.get_or_create("/contended"))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 8
        assert all(state is results[0] for state in results)
        assert len(cache) == 1

    def test_remove_absent_path_is_harmless(self):
        cache = NodeStateCache()

        cache.remove("/missing")

        assert len(cache) == 0

    def test_removed_path_comes_back_empty(self):
        cache = NodeStateCache()
        state = cache.get_or_create("/b")
        with state.lock:
            state.children = frozenset({"x", "y"})

        cache.remove("/b")
        fresh = cache.get_or_create("/b")

        assert fresh is not state
        assert fresh.children == frozenset()

    def test_clear_returns_cached_paths(self):
        cache = NodeStateCache()
        for path in ("/", "/a", "/a/b"):
            cache.get_or_create(path)

        assert sorted(cache.clear()) == ["/", "/a", "/a/b"]
        assert len(cache) == 0
        assert cache.paths() == []

    def test_states_have_independent_locks(self):
        assert NodeState().lock is not NodeState().lock
