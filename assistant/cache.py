"""Content-addressed async cache with one in-flight computation per key."""
import asyncio
import functools
import hashlib
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]

_WS_RE = re.compile(r"\s+")
_MISS = object()


def normalize(text: str) -> str:
    return _WS_RE.sub(" ", str(text)).strip().lower()


def make_key(scope: str, *parts: Any) -> CacheKey:
    """(scope, sha256 of the normalized parts joined with '::')."""
    joined = "::".join(normalize(p) for p in parts)
    return scope, hashlib.sha256(joined.encode("utf-8")).hexdigest()


@dataclass
class _Entry:
    value: Any
    expires_at: float


class AsyncCache:
    def __init__(self, ttl_s: float = 86400.0, max_entries: int = 1024,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, _Entry]" = OrderedDict()
        self._inflight: Dict[CacheKey, asyncio.Future] = {}
        # Bumped on invalidate so a compute started before it is not stored.
        self._generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISS
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return _MISS
        self._entries.move_to_end(key)
        return entry.value

    def contains(self, key: CacheKey) -> bool:
        return self.get(key) is not _MISS

    def set(self, key: CacheKey, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self.ttl_s if ttl_s is None else ttl_s
        self._entries[key] = _Entry(value, self._clock() + ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        should_store: Optional[Callable[[Any], bool]] = None,
    ) -> Tuple[Any, bool]:
        """Return (value, hit). Concurrent misses on one key share a single compute.

        A caller that joins an in-flight computation counts as a hit. Failed
        computations are not stored, so the next caller retries.
        """
        value = self.get(key)
        if value is not _MISS:
            logger.debug(f"Cache hit: {key[0]}:{key[1][:12]}")
            return value, True

        task = self._inflight.get(key)
        joined = task is not None
        if task is None:
            task = asyncio.ensure_future(compute())
            self._inflight[key] = task
            task.add_done_callback(functools.partial(self._settle, key, should_store, self._generation))
        else:
            logger.debug(f"Cache join in-flight: {key[0]}:{key[1][:12]}")

        # shield: a cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task), joined

    def _settle(self, key: CacheKey, should_store, generation: int, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Cache compute failed for {key[0]}: {exc!r}")
            return
        value = task.result()
        if generation != self._generation:
            return
        if should_store is None or should_store(value):
            self.set(key, value)

    def invalidate(self, scope: Optional[str] = None) -> int:
        """Drop all entries, or only those of one scope. Returns the count removed."""
        self._generation += 1
        if scope is None:
            n = len(self._entries)
            self._entries.clear()
        else:
            stale = [k for k in self._entries if k[0] == scope]
            for k in stale:
                del self._entries[k]
            n = len(stale)
        logger.info(f"Cache invalidated ({scope or 'all'}): {n} entries")
        return n
