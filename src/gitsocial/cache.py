"""In-memory TTL cache for repository lookups.

Entries are keyed by ``(workdir, scope)`` and expire lazily: ``get`` compares
the entry's age (from the injected clock) with the TTL of the scope's class
and drops the entry once the TTL has elapsed. There is no background sweep.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

from .config_schema import CacheConfig
from .observability import log_debug

T = TypeVar("T")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def scope_class(scope: str) -> str:
    """Map a scope string to its TTL class."""
    if scope.startswith("workspace:") or scope == "workspace":
        return "workspace"
    if scope in ("following", "all"):
        return "list"
    if scope.startswith("repository:"):
        return "repository"
    return "default"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    inserted_at: datetime


class ResultCache:
    """TTL cache owned by the composing process."""

    def __init__(self, config: Optional[CacheConfig] = None, clock: Optional[Clock] = None):
        self._config = config or CacheConfig()
        self._clock = clock or _utcnow
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def ttl_for(self, scope: str) -> float:
        return {
            "workspace": self._config.workspace_ttl,
            "list": self._config.list_ttl,
            "repository": self._config.repository_ttl,
        }.get(scope_class(scope), self._config.default_ttl)

    def get(self, workdir: str, scope: str) -> Optional[Any]:
        key = (workdir, scope)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        age = (self._clock() - entry.inserted_at).total_seconds()
        if age >= self.ttl_for(scope):
            del self._entries[key]
            self.misses += 1
            log_debug("Cache entry expired", workdir=workdir, scope=scope, age=round(age, 3))
            return None
        self.hits += 1
        return entry.value

    def set(self, workdir: str, scope: str, value: Any) -> None:
        self._entries[(workdir, scope)] = CacheEntry(value=value, inserted_at=self._clock())

    def clear(self, workdir: str, scope: Optional[str] = None) -> None:
        """Drop one entry, or every entry for ``workdir`` when ``scope`` is None."""
        if scope is not None:
            self._entries.pop((workdir, scope), None)
            return
        for key in [k for k in self._entries if k[0] == workdir]:
            del self._entries[key]

    def clear_all(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
