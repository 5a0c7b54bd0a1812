"""
Tests for the video metadata cache.
"""
from pakstream.services.metadata_cache import MetadataCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestMetadataCache:
    def test_hit_within_ttl_skips_store(self, store):
        video_id = store.create(title="Cached")["id"]
        clock = FakeClock()
        cache = MetadataCache(store, ttl=300, clock=clock)
        store.reads = 0

        first = cache.get(video_id)
        clock.advance(299)
        second = cache.get(video_id)

        assert first == second
        assert store.reads == 1
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_expired_entry_is_refreshed(self, store):
        video_id = store.create(title="Old")["id"]
        clock = FakeClock()
        cache = MetadataCache(store, ttl=300, clock=clock)

        cache.get(video_id)
        store.update(video_id, {"title": "New"})
        clock.advance(301)

        assert cache.get(video_id)["title"] == "New"
        assert store.reads == 2

    def test_stale_until_invalidated(self, store):
        video_id = store.create(title="Before")["id"]
        cache = MetadataCache(store, clock=FakeClock())

        cache.get(video_id)
        store.update(video_id, {"title": "After"})
        assert cache.get(video_id)["title"] == "Before"

        assert cache.invalidate(video_id) is True
        assert cache.get(video_id)["title"] == "After"

    def test_misses_are_not_cached(self, store):
        cache = MetadataCache(store, clock=FakeClock())
        store.reads = 0

        assert cache.get("missing") is None
        assert cache.get("missing") is None
        assert store.reads == 2
        assert len(cache) == 0

    def test_record_created_after_miss_is_visible(self, store):
        cache = MetadataCache(store, clock=FakeClock())
        assert cache.get("late") is None

        store.create_from_snapshot("late", {"title": "Arrived", "status": "ready"})

        assert cache.get("late")["title"] == "Arrived"

    def test_deleted_record_disappears_after_invalidate(self, store):
        video_id = store.create(title="Doomed")["id"]
        cache = MetadataCache(store, clock=FakeClock())
        cache.get(video_id)

        store.delete(video_id)
        cache.invalidate(video_id)

        assert cache.get(video_id) is None

    def test_lru_eviction(self, store):
        ids = [store.create(title=f"V{i}")["id"] for i in range(3)]
        cache = MetadataCache(store, max_entries=2, clock=FakeClock())

        cache.get(ids[0])
        cache.get(ids[1])
        cache.get(ids[0])  # ids[1] is now least recently used
        cache.get(ids[2])

        assert len(cache) == 2
        store.reads = 0
        cache.get(ids[0])
        cache.get(ids[2])
        assert store.reads == 0
        cache.get(ids[1])
        assert store.reads == 1

    def test_clear(self, store):
        video_id = store.create(title="X")["id"]
        cache = MetadataCache(store, clock=FakeClock())
        cache.get(video_id)

        assert cache.clear() == 1
        assert len(cache) == 0
        assert cache.invalidate(video_id) is False

    def test_callers_cannot_corrupt_cached_entry(self, store):
        video_id = store.create(title="Shared")["id"]
        cache = MetadataCache(store, clock=FakeClock())

        first = cache.get(video_id)
        first["title"] = "Mutated by caller"
        first["status"] = "ready"

        second = cache.get(video_id)
        assert second["title"] == "Shared"
        assert second["status"] == "uploading"
        assert cache.stats()["hits"] == 1
