"""Cache chave/valor com TTL.

Usa Redis quando REDIS_URL estiver configurada e um LRU em memória caso
contrário. Listas guardam suas chaves em conjuntos para que uma mutação
possa invalidar todas de uma vez (``invalidate_set``). Falhas de cache
nunca derrubam a requisição.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any

import redis
from fastapi.encoders import jsonable_encoder

from femisse.db import settings

logger = logging.getLogger(__name__)

MEMORY_MAX_ENTRIES = 500


class MemoryBackend:
    def __init__(self, max_entries: int = MEMORY_MAX_ENTRIES) -> None:
        self._max_entries = max_entries
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def _live(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            self._entries.pop(key, None)
            return None
        self._entries.move_to_end(key)
        return value

    def _store(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (time.monotonic() + ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._store(key, value, ttl_seconds)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def sadd(self, set_key: str, member: str, ttl_seconds: int) -> None:
        with self._lock:
            members = set(self._live(set_key) or ())
            members.add(member)
            self._store(set_key, frozenset(members), ttl_seconds)

    def smembers(self, set_key: str) -> set[str]:
        with self._lock:
            return set(self._live(set_key) or ())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisBackend:
    def __init__(self, url: str) -> None:
        self._client = redis.Redis.from_url(url, encoding="utf-8", decode_responses=True)

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(key, value, ex=ttl_seconds)

    def delete(self, *keys: str) -> None:
        if keys:
            self._client.delete(*keys)

    def sadd(self, set_key: str, member: str, ttl_seconds: int) -> None:
        pipe = self._client.pipeline()
        pipe.sadd(set_key, member)
        pipe.expire(set_key, ttl_seconds)
        pipe.execute()

    def smembers(self, set_key: str) -> set[str]:
        return set(self._client.smembers(set_key))

    def clear(self) -> None:
        self._client.flushdb()


class Cache:
    def __init__(self, redis_url: str | None = None) -> None:
        self._memory = MemoryBackend()
        self._redis = RedisBackend(redis_url) if redis_url else None
        self._redis_error_logged = False

    def _run(self, operation: str, *args):
        if self._redis is not None:
            try:
                return getattr(self._redis, operation)(*args)
            except redis.RedisError as exc:
                if not self._redis_error_logged:
                    logger.warning("Redis cache failed; falling back to memory: %s", exc)
                    self._redis_error_logged = True
        return getattr(self._memory, operation)(*args)

    def get(self, key: str) -> Any:
        raw = self._run("get", key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cache entry key=%s", key)
            self.delete(key)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(jsonable_encoder(value), ensure_ascii=False)
        self._run("set", key, payload, int(ttl_seconds))

    def delete(self, *keys: str) -> None:
        if keys:
            self._run("delete", *keys)

    def add_to_set(self, set_key: str, member: str, ttl_seconds: int) -> None:
        self._run("sadd", set_key, member, int(ttl_seconds))

    def set_members(self, set_key: str) -> set[str]:
        return self._run("smembers", set_key) or set()

    def clear_set(self, set_key: str) -> None:
        self.delete(set_key)

    def invalidate_set(self, set_key: str) -> int:
        members = self.set_members(set_key)
        if members:
            self.delete(*members)
        self.clear_set(set_key)
        return len(members)

    def clear(self) -> None:
        self._run("clear")


def hash_params(params: dict[str, Any]) -> str:
    encoded = json.dumps(jsonable_encoder(params), sort_keys=True, ensure_ascii=True)
    return hashlib.sha256(encoded.encode()).hexdigest()[:16]


cache = Cache(settings.redis_url)


def cache_get(key: str) -> Any:
    return cache.get(key)


def cache_set(key: str, value: Any, ttl_seconds: int) -> None:
    cache.set(key, value, ttl_seconds)


def cache_delete(*keys: str) -> None:
    cache.delete(*keys)


def cache_add_to_set(set_key: str, member: str, ttl_seconds: int) -> None:
    cache.add_to_set(set_key, member, ttl_seconds)


def invalidate_set(set_key: str) -> int:
    return cache.invalidate_set(set_key)
