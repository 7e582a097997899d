"""Tests for the Redis cache wrapper and invalidation helpers."""
from decimal import Decimal

import pytest

from app.utils.cache import (
    Cache,
    cache,
    claim_cache_key,
    invalidate_batch,
    invalidate_claim,
    invalidate_invoice,
    invoice_cache_key,
    patient_balance_cache_key,
    remittance_batch_cache_key,
)


@pytest.mark.unit
class TestCache:
    def test_make_key(self):
        assert Cache(namespace="test")._make_key("claim:1") == "test:claim:1"
        assert cache.namespace == "billing"

    def test_get_hit(self, mock_redis):
        mock_redis.get.return_value = '{"status": "submitted"}'

        assert Cache().get("claim:1") == {"status": "submitted"}
        mock_redis.get.assert_called_once_with("billing:claim:1")

    def test_get_miss(self, mock_redis):
        assert Cache().get("claim:1") is None

    def test_get_failure_is_a_miss(self, mock_redis):
        mock_redis.get.side_effect = ConnectionError("redis down")
        assert Cache().get("claim:1") is None

    def test_get_corrupt_value_is_a_miss(self, mock_redis):
        mock_redis.get.return_value = "{not json"
        assert Cache().get("claim:1") is None

    def test_set_with_ttl(self, mock_redis):
        assert Cache().set("invoice:5", {"balance_due": Decimal("12.50")}, ttl_seconds=60) is True
        mock_redis.setex.assert_called_once_with("billing:invoice:5", 60, '{"balance_due": "12.50"}')

    def test_set_without_ttl(self, mock_redis):
        assert Cache().set("invoice:5", {"a": 1}) is True
        mock_redis.set.assert_called_once_with("billing:invoice:5", '{"a": 1}')
        mock_redis.setex.assert_not_called()

    def test_set_failure(self, mock_redis):
        mock_redis.setex.side_effect = ConnectionError("redis down")
        assert Cache().set("invoice:5", {"a": 1}, ttl_seconds=60) is False

    def test_delete(self, mock_redis):
        assert Cache().delete("claim:1") is True
        mock_redis.delete.assert_called_once_with("billing:claim:1")

    def test_delete_failure(self, mock_redis):
        mock_redis.delete.side_effect = ConnectionError("redis down")
        assert Cache().delete("claim:1") is False

    def test_delete_pattern_scans_until_cursor_wraps(self, mock_redis):
        mock_redis.scan.side_effect = [
            (7, ["billing:claim:1", "billing:claim:2"]),
            (0, ["billing:claim:3"]),
        ]
        mock_redis.delete.side_effect = [2, 1]

        assert Cache().delete_pattern("claim:*") == 3
        assert mock_redis.scan.call_count == 2
        mock_redis.scan.assert_any_call(cursor=7, match="billing:claim:*", count=100)


    def test_delete_pattern_failure(self, mock_redis):
        mock_redis.scan.side_effect = ConnectionError("redis down")
        assert Cache().delete_pattern("claim:*") == 0

    def test_clear_namespace(self, mock_redis):
        mock_redis.scan.return_value = (0, [])
        assert Cache(namespace="test").clear_namespace() == 0
        mock_redis.scan.assert_called_once_with(cursor=0, match="test:*", count=100)


@pytest.mark.unit
class TestCacheKeys:
    def test_keys(self):
        assert claim_cache_key(1) == "claim:1"
        assert invoice_cache_key(2) == "invoice:2"
        assert remittance_batch_cache_key(3) == "remittance_batch:3"
        assert patient_balance_cache_key("P-1") == "patient_balance:P-1"

    def test_invalidate_claim(self, mock_redis):
        invalidate_claim(9)
        mock_redis.delete.assert_called_once_with("billing:claim:9")

    def test_invalidate_invoice_and_balance(self, mock_redis):
        invalidate_invoice(4, "P-1")
        mock_redis.delete.assert_any_call("billing:invoice:4")
        mock_redis.delete.assert_any_call("billing:patient_balance:P-1")

    def test_invalidate_invoice_without_patient(self, mock_redis):
        invalidate_invoice(4)
        assert mock_redis.delete.call_count == 1

    def test_invalidate_batch(self, mock_redis):
        invalidate_batch(3)
        mock_redis.delete.assert_called_once_with("billing:remittance_batch:3")
