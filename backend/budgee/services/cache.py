"""
Query cache with per-domain key tracking.

Cached read results are grouped into three domains (items, accounts,
transactions). Each domain remembers which keys it has written, under its own
lock, so that a mutation can drop exactly one key or sweep the whole domain
without touching the others.
"""
import enum
import json
import logging
import threading
from typing import Any, Dict, Iterable, Optional, Set

from redis import Redis

from budgee.config import settings

logger = logging.getLogger(__name__)


class CacheDomain(str, enum.Enum):
    ITEMS = "items"
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"


def parse_domain(name: str) -> CacheDomain:
    """Resolve a cache name to a domain; raises ValueError for anything else."""
    try:
        return CacheDomain((name or "").strip().lower())
    except ValueError:
        raise ValueError(f"invalid cache name: {name}") from None


class MemoryCacheBackend:
    """In-process backend, used by tests and single-process deployments."""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    def purge_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]


class RedisCacheBackend:
    """Redis backend; values are stored as JSON with a TTL."""

    def __init__(self, client: Optional[Redis] = None, ttl_seconds: Optional[int] = None):
        self._client = client
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.CACHE_TTL_SECONDS

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._client = Redis.from_url(settings.REDIS_URL)
        return self._client

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self.client.set(key, json.dumps(value, default=str), ex=self._ttl)

    def delete(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if keys:
            self.client.delete(*keys)

    def purge_prefix(self, prefix: str) -> None:
        # Other API processes and workers write into the same namespace
        batch = []
        for key in self.client.scan_iter(match=f"{prefix}*", count=500):
            batch.append(key)
            if len(batch) >= 500:
                self.client.delete(*batch)
                batch = []
        if batch:
            self.client.delete(*batch)


class DomainKeySet:
    """The live keys of one cache domain, guarded by the domain's own lock."""

    def __init__(self):
        self._keys: Set[str] = set()
        self._lock = threading.Lock()

    def add(self, key: str) -> None:
        with self._lock:
            self._keys.add(key)

    def discard(self, key: str) -> None:
        with self._lock:
            self._keys.discard(key)

    def swap(self) -> Set[str]:
        """Replace the key set with an empty one and return the old keys."""
        with self._lock:
            keys, self._keys = self._keys, set()
        return keys

    def snapshot(self) -> Set[str]:
        with self._lock:
            return set(self._keys)


class CacheRegistry:
    """
    Cache front-end used by the storage gateway.

    Every ``set`` records the key in its domain's key set. ``invalidate``
    evicts a single key; ``invalidate_all`` swaps out the whole key set, evicts
    everything it tracked, then purges the domain namespace in the backend.
    """

    def __init__(self, backend=None, prefix: Optional[str] = None):
        self.backend = backend if backend is not None else MemoryCacheBackend()
        self.prefix = prefix if prefix is not None else settings.CACHE_KEY_PREFIX
        self._domains: Dict[CacheDomain, DomainKeySet] = {
            domain: DomainKeySet() for domain in CacheDomain
        }

    def _namespace(self, domain: CacheDomain) -> str:
        return f"{self.prefix}:{domain.value}:"

    def _full_key(self, domain: CacheDomain, key: str) -> str:
        return f"{self._namespace(domain)}{key}"

    def keys(self, domain: CacheDomain) -> Set[str]:
        return self._domains[CacheDomain(domain)].snapshot()

    def get(self, domain: CacheDomain, key: str) -> Optional[Any]:
        domain = CacheDomain(domain)
        try:
            return self.backend.get(self._full_key(domain, key))
        except Exception as e:
            # A cache outage degrades to a miss; the read goes to the database
            logger.warning(f"Cache read failed for {domain.value}/{key}: {e}")
            return None

    def set(self, domain: CacheDomain, key: str, value: Any) -> None:
        domain = CacheDomain(domain)
        try:
            self.backend.set(self._full_key(domain, key), value)
        except Exception as e:
            logger.warning(f"Cache write failed for {domain.value}/{key}: {e}")
            return
        self._domains[domain].add(key)

    def invalidate(self, domain: CacheDomain, key: str) -> None:
        domain = CacheDomain(domain)
        self._domains[domain].discard(key)
        self.backend.delete([self._full_key(domain, key)])

    def invalidate_all(self, domain: CacheDomain) -> None:
        domain = CacheDomain(domain)
        stale = self._domains[domain].swap()
        self.backend.delete(self._full_key(domain, key) for key in stale)
        self.backend.purge_prefix(self._namespace(domain))
        logger.debug(f"Invalidated {len(stale)} tracked keys in cache domain {domain.value}")

    def clear(self, name: str) -> CacheDomain:
        """Invalidate a domain by name ("items", "accounts" or "transactions")."""
        domain = parse_domain(name)
        self.invalidate_all(domain)
        logger.info(f"Cleared {domain.value} cache")
        return domain


def items_user_key(user_id: str) -> str:
    return f"items_user_{user_id}"


def accounts_item_user_key(user_id: str, item_id: str) -> str:
    return f"accounts_item_user_{user_id}_{item_id}"


def transactions_account_user_key(user_id: str, account_id: str) -> str:
    return f"transactions_account_user_{user_id}_{account_id}"


_cache_registry: Optional[CacheRegistry] = None
_registry_lock = threading.Lock()


def get_cache_registry() -> CacheRegistry:
    global _cache_registry
    if _cache_registry is None:
        with _registry_lock:
            if _cache_registry is None:
                if settings.CACHE_BACKEND == "redis":
                    backend = RedisCacheBackend()
                else:
                    backend = MemoryCacheBackend()
                _cache_registry = CacheRegistry(backend=backend)
    return _cache_registry


def set_cache_registry(registry: Optional[CacheRegistry]) -> None:
    """Replace the process-wide registry (None resets to lazy construction)."""
    global _cache_registry
    with _registry_lock:
        _cache_registry = registry
