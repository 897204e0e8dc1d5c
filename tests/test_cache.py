"""Tests for the TTL result cache."""

from datetime import datetime, timedelta, timezone

from gitsocial.cache import ResultCache, scope_class
from gitsocial.config_schema import CacheConfig


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def test_scope_classes():
    assert scope_class("workspace:my") == "workspace"
    assert scope_class("following") == "list"
    assert scope_class("all") == "list"
    assert scope_class("repository:https://github.com/a/b") == "repository"
    assert scope_class("list:friends") == "default"


def test_entry_expires_once_ttl_elapses():
    clock = FakeClock()
    cache = ResultCache(CacheConfig(workspace_ttl=60), clock=clock)
    cache.set("/w", "workspace:my", ["a"])

    clock.advance(59)
    assert cache.get("/w", "workspace:my") == ["a"]

    clock.advance(1)
    assert cache.get("/w", "workspace:my") is None
    assert cache.stats() == {"entries": 0, "hits": 1, "misses": 1}


def test_ttl_depends_on_scope_class():
    clock = FakeClock()
    cache = ResultCache(CacheConfig(workspace_ttl=60, list_ttl=3600), clock=clock)
    cache.set("/w", "workspace:my", 1)
    cache.set("/w", "following", 2)
    clock.advance(120)
    assert cache.get("/w", "workspace:my") is None
    assert cache.get("/w", "following") == 2


def test_entries_are_per_workdir():
    cache = ResultCache(clock=FakeClock())
    cache.set("/a", "following", "a")
    cache.set("/b", "following", "b")
    assert cache.get("/a", "following") == "a"
    assert cache.get("/b", "following") == "b"


def test_clear_by_workdir_and_scope():
    cache = ResultCache(clock=FakeClock())
    cache.set("/a", "following", 1)
    cache.set("/a", "all", 2)
    cache.set("/b", "following", 3)

    cache.clear("/a", "all")
    assert cache.get("/a", "all") is None
    assert cache.get("/a", "following") == 1

    cache.clear("/a")
    assert cache.get("/a", "following") is None
    assert cache.get("/b", "following") == 3

    cache.clear_all()
    assert cache.stats()["entries"] == 0
