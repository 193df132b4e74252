#!/usr/bin/env python3
"""
Tests for the DynamoDB lock registry.

Run with: pytest tests/test_dynamodb_lock.py -v
Or: python tests/test_dynamodb_lock.py
"""
import os
import sys
from unittest.mock import MagicMock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("AWS_REGION", "us-east-1")

from botocore.exceptions import ClientError


def conditional_failure(operation: str = "PutItem") -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


def make_registry(client=None, **kwargs):
    from handlers.dynamodb_lock import DynamoDbLockRegistry
    kwargs.setdefault("owner", "test-owner")
    kwargs.setdefault("retry_interval", 0.01)
    return DynamoDbLockRegistry(client or MagicMock(), "locks", **kwargs)


class TestDynamoDbLock:
    """Tests for acquire / release / renew."""

    def test_acquire_release(self):
        registry = make_registry(lease_duration=30)
        lock = registry.obtain("orders")

        assert lock.acquire()
        assert lock.is_held()

        put = registry.client.put_item.call_args.kwargs
        assert put["TableName"] == "locks"
        assert put["Item"]["lockKey"] == {"S": "orders"}
        assert put["Item"]["owner"] == {"S": "test-owner"}
        assert "attribute_not_exists(lockKey)" in put["ConditionExpression"]
        assert put["ExpressionAttributeNames"] == {"#owner": "owner"}
        assert ":now" in put["ExpressionAttributeValues"]
        expires = float(put["Item"]["expireAt"]["N"])
        now = float(put["ExpressionAttributeValues"][":now"]["N"])
        assert abs(expires - now - 30) < 1

        lock.release()
        assert not lock.is_held()
        delete = registry.client.delete_item.call_args.kwargs
        assert delete["Key"] == {"lockKey": {"S": "orders"}}
        assert delete["ExpressionAttributeValues"] == {":owner": {"S": "test-owner"}}
        print("✓ Lock acquire/release writes and removes the lease")

    def test_obtain_returns_same_lock(self):
        registry = make_registry()
        assert registry.obtain("a") is registry.obtain("a")
        assert registry.obtain("a") is not registry.obtain("b")
        print("✓ obtain() caches locks per key")

    def test_reentrant(self):
        registry = make_registry()
        lock = registry.obtain("orders")

        with lock:
            with lock:
                assert lock.is_held()
            registry.client.delete_item.assert_not_called()
        registry.client.put_item.assert_called_once()
        registry.client.delete_item.assert_called_once()
        print("✓ Lock is re-entrant, lease written once")

    def test_contention_non_blocking(self):
        client = MagicMock()
        client.put_item.side_effect = conditional_failure()
        lock = make_registry(client).obtain("orders")

        assert lock.acquire(blocking=False) is False
        assert not lock.is_held()
        client.put_item.assert_called_once()
        print("✓ Non-blocking acquire fails under contention")

    def test_contention_retries_until_free(self):
        client = MagicMock()
        client.put_item.side_effect = [conditional_failure(), conditional_failure(), {}]
        lock = make_registry(client).obtain("orders")

        assert lock.acquire(timeout=5)
        assert client.put_item.call_count == 3
        lock.release()
        print("✓ Blocking acquire retries through contention")

    def test_contention_timeout(self):
        client = MagicMock()
        client.put_item.side_effect = conditional_failure()
        lock = make_registry(client).obtain("orders")

        assert lock.acquire(timeout=0.05) is False
        assert not lock.is_held()
        assert client.put_item.call_count >= 2
        print("✓ Blocking acquire gives up after timeout")

    def test_other_errors_propagate(self):
        client = MagicMock()
        client.put_item.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow"}}, "PutItem"
        )
        lock = make_registry(client).obtain("orders")

        try:
            lock.acquire()
            assert False, "should raise"
        except ClientError as e:
            assert e.response["Error"]["Code"] == "ProvisionedThroughputExceededException"
        assert not lock.is_held()
        print("✓ Non-contention errors propagate")

    def test_release_after_lease_lost(self):
        client = MagicMock()
        client.delete_item.side_effect = conditional_failure("DeleteItem")
        lock = make_registry(client).obtain("orders")

        lock.acquire()
        lock.release()

        assert not lock.is_held()
        print("✓ Releasing an expired lease is tolerated")

    def test_release_without_hold(self):
        lock = make_registry().obtain("orders")
        try:
            lock.release()
            assert False, "should raise"
        except RuntimeError:
            pass
        print("✓ Release without hold rejected")

    def test_renew(self):
        from handlers.dynamodb_lock import LockLostError

        client = MagicMock()
        lock = make_registry(client).obtain("orders")

        try:
            lock.renew()
            assert False, "renew without hold should raise"
        except LockLostError:
            pass

        lock.acquire()
        lock.renew()
        renew = client.put_item.call_args.kwargs
        assert renew["ConditionExpression"] == "#owner = :owner"
        assert ":now" not in renew["ExpressionAttributeValues"]

        client.put_item.side_effect = conditional_failure()
        try:
            lock.renew()
            assert False, "renew of a lost lease should raise"
        except LockLostError:
            pass
        print("✓ renew() extends or reports a lost lease")


class TestLockTable:
    """Tests for ensure_table()."""

    def not_found(self):
        return ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "Requested resource not found"}},
            "DescribeTable",
        )

    def test_table_exists(self):
        registry = make_registry()
        registry.ensure_table()
        registry.client.describe_table.assert_called_once_with(TableName="locks")
        registry.client.create_table.assert_not_called()
        print("✓ Existing table accepted")

    def test_table_missing(self):
        from awsbridge.runtime.errors import ConfigurationError

        client = MagicMock()
        client.describe_table.side_effect = self.not_found()
        registry = make_registry(client)

        try:
            registry.ensure_table()
            assert False, "should raise"
        except ConfigurationError as e:
            assert "locks" in str(e)
        client.create_table.assert_not_called()
        print("✓ Missing table reported")

    def test_table_created(self):
        client = MagicMock()
        client.describe_table.side_effect = self.not_found()
        registry = make_registry(client)

        registry.ensure_table(create=True)

        create = client.create_table.call_args.kwargs
        assert create["TableName"] == "locks"
        assert create["KeySchema"] == [{"AttributeName": "lockKey", "KeyType": "HASH"}]
        client.get_waiter.assert_called_once_with("table_exists")
        print("✓ Missing table created on request")

    def test_factory(self):
        from handlers.dynamodb_lock import create_lock_registry

        deps = MagicMock()
        deps.config = {"LOCK_TABLE_NAME": "app-locks", "LOCK_LEASE_SECONDS": 15.0}

        registry = create_lock_registry(deps)

        assert registry.table_name == "app-locks"
        assert registry.lease_duration == 15.0
        assert registry.client is deps.dynamodb
        assert registry.owner
        print("✓ Lock registry factory reads configuration")


def run_all_tests():
    """Run all test classes."""
    passed = 0
    failed = 0
    for test_class in (TestDynamoDbLock, TestLockTable):
        instance = test_class()
        for method_name in dir(instance):
            if method_name.startswith("test_"):
                try:
                    getattr(instance, method_name)()
                    passed += 1
                except Exception as e:
                    print(f"✗ {method_name}: {e}")
                    failed += 1

    print(f"\nRESULTS: {passed} passed, {failed} failed")
    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
