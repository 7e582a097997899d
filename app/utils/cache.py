"""Redis caching utilities.

Read-through cache for claim, invoice, batch and balance views. Every cache
failure degrades to a miss; the database stays the source of truth and all
writers invalidate through the `invalidate_*` helpers below.
"""
import json
from typing import Any, Optional

from app.config.redis import get_redis_client
from app.utils.logger import get_logger

logger = get_logger(__name__)


class Cache:
    """Redis cache wrapper with namespaced keys."""

    def __init__(self, namespace: str = "billing"):
        self.namespace = namespace

    @property
    def redis(self):
        return get_redis_client()

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        """Return the cached JSON value for key, or None on miss or failure."""
        try:
            value = self.redis.get(self._make_key(key))
            if value is None:
                return None
            return json.loads(value)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
            return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key (e.g. "claim:123")
            value: Value to cache; Decimals and datetimes are stringified
            ttl_seconds: Expiry; keys without a positive TTL never expire

        Returns:
            True if successful, False otherwise
        """
        try:
            serialized = json.dumps(value, default=str)
            if ttl_seconds and ttl_seconds > 0:
                self.redis.setex(self._make_key(key), ttl_seconds, serialized)
            else:
                self.redis.set(self._make_key(key), serialized)
            return True
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))
            return False

    def delete(self, key: str) -> bool:
        try:
            self.redis.delete(self._make_key(key))
            return True
        except Exception as e:
            logger.warning("Cache delete failed", key=key, error=str(e))
            return False

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching pattern using SCAN in batches of 100.

        Returns:
            Number of keys deleted
        """
        try:
            full_pattern = self._make_key(pattern)
            deleted_count = 0
            cursor = 0
            while True:
                cursor, keys = self.redis.scan(cursor=cursor, match=full_pattern, count=100)
                if keys:
                    deleted_count += self.redis.delete(*keys)
                if cursor == 0:
                    break
            return deleted_count
        except Exception as e:
            logger.warning("Cache delete pattern failed", pattern=pattern, error=str(e))
            return 0

    def clear_namespace(self) -> int:
        return self.delete_pattern("*")


cache = Cache()


def claim_cache_key(claim_id: int) -> str:
    return f"claim:{claim_id}"


def invoice_cache_key(invoice_id: int) -> str:
    return f"invoice:{invoice_id}"


def remittance_batch_cache_key(batch_id: int) -> str:
    return f"remittance_batch:{batch_id}"


def patient_balance_cache_key(patient_id: str) -> str:
    return f"patient_balance:{patient_id}"


def invalidate_claim(claim_id: int) -> None:
    cache.delete(claim_cache_key(claim_id))


def invalidate_invoice(invoice_id: int, patient_id: Optional[str] = None) -> None:
    cache.delete(invoice_cache_key(invoice_id))
    if patient_id:
        cache.delete(patient_balance_cache_key(patient_id))


def invalidate_batch(batch_id: int) -> None:
    cache.delete(remittance_batch_cache_key(batch_id))
