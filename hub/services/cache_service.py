"""
Best-effort cache for re-fetchable upstream data.

Holds Asana workspace-member lists (10 minute TTL, one entry per workspace).
Uses Redis when REDIS_URL points at a Redis server, otherwise an in-process
dict. Entries are never authoritative: losing them only costs a refetch.
"""

import json
import logging
import os
import time

import redis

logger = logging.getLogger(__name__)

WORKSPACE_MEMBERS_TTL = 600   # 10 minutes
DEFAULT_TTL = 300

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value_json, expire_ts)


class _MemoryBackend:
    """Dict cache for dev/testing and single-process deployments."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def _get_backend():
    """Lazy-initialise Redis, or the in-memory store when REDIS_URL is unset
    or the server is unreachable."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        try:
            _backend = redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), using memory cache", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


# ── Key builders ─────────────────────────────────────────────────────────

def workspace_members_key(workspace_id):
    return f"hub:asana:workspace-members:{workspace_id}"


# ── Generic API ──────────────────────────────────────────────────────────

def get_cached(key, ttl=DEFAULT_TTL, loader=None):
    """Cache-aside read. On a miss, *loader* (if given) is called and its
    non-None result stored for *ttl* seconds."""
    be = _get_backend()
    raw = be.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding unreadable cache entry %s", key)
    if loader is None:
        return None
    value = loader()
    if value is not None:
        be.setex(key, ttl, json.dumps(value))
    return value


def set_cached(key, value, ttl=DEFAULT_TTL):
    _get_backend().setex(key, ttl, json.dumps(value))


def delete_cached(key):
    _get_backend().delete(key)


def clear_all():
    """Flush the whole cache (tests)."""
    _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    try:
        be = _get_backend()
        be.ping()
    except redis.RedisError as exc:
        return {"status": "error", "detail": str(exc)}
    backend_type = "memory" if isinstance(be, _MemoryBackend) else "redis"
    return {"status": "ok", "backend": backend_type}
