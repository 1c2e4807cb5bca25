"""
Tool Result Cache — bounded, expiring memo of successful tool runs.

A key is the tool name plus the canonical JSON of the input, so
{"a": 1, "b": 2} and {"b": 2, "a": 1} hit the same entry while any
change in a value misses.

Two bounds apply: entries older than ttl_seconds are dropped on read
(or by cleanup_expired()), and once max_entries is reached the least
recently read entry makes room for the new one. A per-tool index lets
the manager drop everything a tool produced when it is replaced.

Usage:
    cache = ToolResultCache(ttl_seconds=600, max_entries=500)

    key = cache.make_key("search", {"q": "python", "limit": 5})
    result = cache.get(key)
    if result is None:
        result = await run_search(...)
        cache.put(key, result, tool_name="search")
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000


def _stringify_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _stringify_keys(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stringify_keys(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """
    Order-independent JSON for dict keys; non-JSON values fall back to str().

    Keys that json cannot sort or encode (mixed int/str, tuples) are
    converted with str() first, so {1: "a"} and {"1": "a"} share a key.
    """
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return json.dumps(
            _stringify_keys(value), sort_keys=True, separators=(",", ":"), default=str
        )


@dataclass
class CacheEntry:
    tool_name: str
    result: Any                   # ToolResult
    stored_at: float              # time.monotonic()
    ttl: Optional[float]          # None = kept until evicted
    hits: int = 0

    def expired(self, now: float) -> bool:
        return self.ttl is not None and now - self.stored_at > self.ttl


class ToolResultCache:
    """
    LRU + TTL store keyed by make_key().

    Not thread-safe; meant for a single asyncio control path.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries

        # Least recently read first
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._keys_by_tool: dict[str, set[str]] = {}

        self._stats = {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0, "stores": 0}

    @staticmethod
    def make_key(tool_name: str, tool_input: Any) -> str:
        return f"{tool_name}:{canonical_json(tool_input)}"

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def hit_rate(self) -> float:
        lookups = self._stats["hits"] + self._stats["misses"]
        return self._stats["hits"] / lookups if lookups else 0.0

    def _remove(self, key: str) -> CacheEntry:
        entry = self._entries.pop(key)
        keys = self._keys_by_tool.get(entry.tool_name)
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._keys_by_tool[entry.tool_name]
        return entry

    def get(self, key: str) -> Optional[Any]:
        """Cached result for `key`, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is not None and entry.expired(time.monotonic()):
            self._remove(key)
            self._stats["expirations"] += 1
            entry = None

        if entry is None:
            self._stats["misses"] += 1
            return None

        self._entries.move_to_end(key)
        entry.hits += 1
        self._stats["hits"] += 1
        logger.debug(
            "tool_cache_hit",
            extra={"tool_name": entry.tool_name, "hits": entry.hits},
        )
        return entry.result

    def put(self, key: str, result: Any, *, tool_name: str = "") -> None:
        if key in self._entries:
            self._remove(key)

        while len(self._entries) >= self._max_entries:
            oldest = next(iter(self._entries))
            evicted = self._remove(oldest)
            self._stats["evictions"] += 1
            logger.debug("tool_cache_eviction", extra={"tool_name": evicted.tool_name})

        self._entries[key] = CacheEntry(
            tool_name=tool_name,
            result=result,
            stored_at=time.monotonic(),
            ttl=self._ttl,
        )
        self._keys_by_tool.setdefault(tool_name, set()).add(key)
        self._stats["stores"] += 1

    def invalidate_tool(self, tool_name: str) -> int:
        """Drop every entry stored for `tool_name`. Returns how many."""
        keys = list(self._keys_by_tool.get(tool_name, ()))
        for key in keys:
            self._remove(key)
        return len(keys)

    def cleanup_expired(self) -> int:
        now = time.monotonic()
        stale = [k for k, entry in self._entries.items() if entry.expired(now)]
        for key in stale:
            self._remove(key)
        self._stats["expirations"] += len(stale)
        return len(stale)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._keys_by_tool.clear()
        return count

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "max_entries": self._max_entries,
            "ttl_seconds": self._ttl,
            "hit_rate": round(self.hit_rate, 3),
            "tools": len(self._keys_by_tool),
            **self._stats,
        }
