"""
Result Cache - Reuse of previously computed node outputs.

Entries are keyed by node, operation, parameters and resolved inputs,
and bounded by entry count, approximate memory and age. A miss takes an
exclusive claim on its key, so concurrent lookups for the same key wait
for one computation instead of repeating it. Unrelated keys never wait
on each other.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from pixelflow.core.data_types import Color, ImageData, estimate_size


logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
DEFAULT_MAX_MEMORY = 512 * 1024 * 1024
DEFAULT_TTL = 3600.0


def canonicalize(value: Any) -> Any:
    """
    JSON-compatible canonical form of a value.

    Mapping keys are sorted and arrays keep their order. Images are
    represented by shape, tags and a digest of their pixels.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return {"f": repr(value)}
    if isinstance(value, Color):
        return {"color": [value.r, value.g, value.b, value.a]}
    if isinstance(value, ImageData):
        pixels = value.pixels
        return {
            "image": list(pixels.shape),
            "dtype": str(pixels.dtype),
            "color_space": value.metadata.color_space,
            "bit_depth": value.metadata.bit_depth,
            "sha256": hashlib.sha256(pixels.tobytes()).hexdigest(),
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, dict):
        return {"map": [[str(k), canonicalize(value[k])] for k in sorted(value, key=str)]}
    return {"repr": repr(value)}


def fingerprint(values: dict[str, Any]) -> str:
    """SHA-256 of the canonical form of a name -> value mapping."""
    payload = json.dumps(canonicalize(values), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheKey:
    """Fingerprint of a node's operation, parameters and resolved inputs."""
    node_id: Any
    operation_id: str
    parameters: str
    inputs: str

    @classmethod
    def build(
        cls,
        node_id: Any,
        operation_id: str,
        parameters: dict[str, Any],
        inputs: dict[str, Any],
    ) -> CacheKey:
        return cls(node_id, operation_id, fingerprint(parameters), fingerprint(inputs))


@dataclass
class CacheEntry:
    outputs: dict[str, Any]
    created_at: float
    computation_time: float
    memory_size: int


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    time_saved: float = 0.0
    memory_usage: int = 0
    entries: int = 0

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass
class _Claim:
    """An in-flight computation other lookups can wait on."""
    waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Future]] = field(default_factory=list)
    result: dict[str, Any] | None = None


class ResultCache:
    """
    LRU cache of node outputs.

    The store itself is guarded by a short-held lock; computations run
    outside it, each under its own per-key claim.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        max_memory: int = DEFAULT_MAX_MEMORY,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")
        self.capacity = capacity
        self.max_memory = max_memory
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._claims: dict[CacheKey, _Claim] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()
        self._memory = 0

    @classmethod
    def from_settings(cls, settings) -> ResultCache:
        """Build from a CacheSettings instance."""
        return cls(
            capacity=settings.capacity,
            max_memory=settings.max_memory,
            ttl=settings.ttl_seconds,
        )

    # --- Lookup ---

    def _lookup(self, key: CacheKey) -> CacheEntry | None:
        """Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self.ttl:
            self._remove(key)
            self._stats.evictions += 1
            logger.debug(f"Cache entry expired for {key.operation_id} on {key.node_id}")
            return None
        self._entries.move_to_end(key)
        return entry

    def get(self, key: CacheKey) -> dict[str, Any] | None:
        """Plain lookup; counts a hit or a miss."""
        with self._lock:
            entry = self._lookup(key)
            if entry is None:
                self._stats.misses += 1
                return None
            self._stats.hits += 1
            self._stats.time_saved += entry.computation_time
            return dict(entry.outputs)

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[dict[str, Any]]],
    ) -> tuple[dict[str, Any], bool]:
        """
        Return cached outputs, or compute and store them.

        Only one computation per key runs at a time. Lookups that arrive
        while it runs wait for it and receive its outputs, even when they
        were too large to store. If it fails, the exception goes to its
        caller and one waiter becomes the next claimant.

        Returns:
            (outputs, hit) where hit is True if nothing was computed.
        """
        while True:
            with self._lock:
                entry = self._lookup(key)
                if entry is not None:
                    self._stats.hits += 1
                    self._stats.time_saved += entry.computation_time
                    return dict(entry.outputs), True
                claim = self._claims.get(key)
                owner = claim is None
                if owner:
                    claim = _Claim()
                    self._claims[key] = claim
                    self._stats.misses += 1
                else:
                    loop = asyncio.get_running_loop()
                    waiter = loop.create_future()
                    claim.waiters.append((loop, waiter))

            if not owner:
                logger.debug(f"Waiting on in-flight computation of {key.operation_id}")
                await waiter
                if claim.result is not None:
                    with self._lock:
                        self._stats.hits += 1
                    return dict(claim.result), True
                continue

            try:
                start = time.perf_counter()
                outputs = await compute()
                self.put(key, outputs, time.perf_counter() - start)
                claim.result = outputs
                return dict(outputs), False
            finally:
                self._release(key, claim)

    def _release(self, key: CacheKey, claim: _Claim) -> None:
        with self._lock:
            if self._claims.get(key) is claim:
                del self._claims[key]
            waiters = list(claim.waiters)
        for loop, waiter in waiters:
            loop.call_soon_threadsafe(_resolve, waiter)

    # --- Storage ---

    def put(self, key: CacheKey, outputs: dict[str, Any], computation_time: float = 0.0) -> bool:
        """
        Store outputs, evicting least recently used entries as needed.

        Returns:
            False if the entry alone exceeds the memory budget.
        """
        size = sum(estimate_size(v) for v in outputs.values())
        if size > self.max_memory:
            logger.warning(
                f"Result of {key.operation_id} ({size} bytes) exceeds cache budget; not cached"
            )
            return False

        with self._lock:
            if key in self._entries:
                self._remove(key)
            while self._entries and (
                len(self._entries) >= self.capacity or self._memory + size > self.max_memory
            ):
                evicted, old = self._entries.popitem(last=False)
                self._memory -= old.memory_size
                self._stats.evictions += 1
                logger.debug(f"Evicted cache entry for {evicted.operation_id}")
            self._entries[key] = CacheEntry(
                outputs=dict(outputs),
                created_at=self._clock(),
                computation_time=computation_time,
                memory_size=size,
            )
            self._memory += size
        return True

    def _remove(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._memory -= entry.memory_size

    def invalidate(self, key: CacheKey) -> bool:
        with self._lock:
            present = key in self._entries
            self._remove(key)
            return present

    def invalidate_node(self, node_id: Any) -> int:
        """Drop every entry belonging to a node. Returns how many."""
        with self._lock:
            keys = [k for k in self._entries if k.node_id == node_id]
            for key in keys:
                self._remove(key)
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._memory = 0

    # --- Introspection ---

    @property
    def stats(self) -> CacheStats:
        """Snapshot of the counters."""
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                time_saved=self._stats.time_saved,
                memory_usage=self._memory,
                entries=len(self._entries),
            )

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = CacheStats()

    @property
    def memory_usage(self) -> int:
        return self._memory

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() - entry.created_at <= self.ttl


def _resolve(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)
