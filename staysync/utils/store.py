import json
import threading
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

import redis

HISTORY_TTL_SECONDS = 30 * 24 * 3600


class KeyValueStore(Protocol):
    """Small transient store for JSON-able values, injected into callers."""

    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    def append(self, key: str, value: Any, max_len: int, ttl: Optional[int] = None) -> None: ...

    def list(self, key: str) -> List[Any]: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store. Lists are kept newest-first."""

    def __init__(self):
        self._lock = threading.Lock()
        self._values: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _alive(self, key: str) -> Optional[Any]:
        item = self._values.get(key)
        if item is None:
            return None
        value, expires = item
        if expires is not None and expires < time.monotonic():
            del self._values[key]
            return None
        return value

    @staticmethod
    def _deadline(ttl: Optional[int]) -> Optional[float]:
        return time.monotonic() + ttl if ttl else None

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._alive(key)

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        # round-trip through JSON so callers never share mutable state with the store
        with self._lock:
            self._values[key] = (json.loads(json.dumps(value)), self._deadline(ttl))

    def append(self, key: str, value: Any, max_len: int, ttl: Optional[int] = None) -> None:
        with self._lock:
            items = list(self._alive(key) or [])
            items.insert(0, json.loads(json.dumps(value)))
            self._values[key] = (items[:max_len], self._deadline(ttl))

    def list(self, key: str) -> List[Any]:
        with self._lock:
            return list(self._alive(key) or [])

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class RedisStore:
    """Same contract backed by Redis: plain keys for values, LISTs for histories."""

    def __init__(self, url: str, prefix: str = "staysync"):
        self.prefix = prefix
        self._r = redis.from_url(url, decode_responses=True)

    def _k(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Any]:
        data = self._r.get(self._k(key))
        return json.loads(data) if data else None

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._r.set(self._k(key), json.dumps(value), ex=ttl)

    def append(self, key: str, value: Any, max_len: int, ttl: Optional[int] = None) -> None:
        k = self._k(key)
        pipe = self._r.pipeline()
        pipe.lpush(k, json.dumps(value))
        pipe.ltrim(k, 0, max_len - 1)
        if ttl:
            pipe.expire(k, ttl)
        pipe.execute()

    def list(self, key: str) -> List[Any]:
        raw = self._r.lrange(self._k(key), 0, -1) or []
        return [json.loads(x) for x in raw]

    def delete(self, key: str) -> None:
        self._r.delete(self._k(key))


def make_store(redis_url: Optional[str]) -> KeyValueStore:
    return RedisStore(redis_url) if redis_url else MemoryStore()
