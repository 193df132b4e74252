# =============================================================================
# DYNAMODB LOCK REGISTRY - Cross-process locks backed by a DynamoDB table
# =============================================================================
# Each lock is a local re-entrant lock plus a lease item in DynamoDB:
#
#   lockKey (S, hash key)   the lock name
#   owner   (S)             registry that holds the lease
#   expireAt (N)            epoch seconds after which anyone may take it
#
# Acquire is a conditional put_item, release a conditional delete_item.
# Leases are not refreshed in the background; long holders call renew().
# =============================================================================

import logging
import socket
import threading
import time
import uuid
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from awsbridge.runtime.errors import BridgeError, ConfigurationError, error_code_of
from handlers.base import is_not_found

logger = logging.getLogger(__name__)

KEY_ATTRIBUTE = "lockKey"
OWNER_ATTRIBUTE = "owner"
EXPIRE_ATTRIBUTE = "expireAt"

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

# "owner" is a DynamoDB reserved word
_ACQUIRE_CONDITION = (
    f"attribute_not_exists({KEY_ATTRIBUTE}) OR {EXPIRE_ATTRIBUTE} < :now OR #owner = :owner"
)
_HELD_CONDITION = "#owner = :owner"


class LockLostError(BridgeError):
    """The lease item is gone or now belongs to another owner."""


def _is_contention(error: ClientError) -> bool:
    return error_code_of(error) == CONDITIONAL_CHECK_FAILED


class DynamoDbLock:
    """
    One named lock. Use through DynamoDbLockRegistry.obtain().

    Re-entrant for the holding thread; the remote lease is written on the
    first acquire and removed on the matching last release.
    """

    def __init__(self, registry: "DynamoDbLockRegistry", key: str):
        self.registry = registry
        self.key = key
        self._local = threading.RLock()
        self._holds = 0

    def __repr__(self) -> str:
        return f"DynamoDbLock(key={self.key!r}, held={self._holds > 0})"

    def __enter__(self) -> "DynamoDbLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def is_held(self) -> bool:
        return self._holds > 0

    def acquire(self, blocking: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Take the lock.

        Args:
            blocking: Retry while another owner holds the lease
            timeout: Give up after this many seconds (None waits forever)

        Returns:
            True if acquired, False if not (non-blocking or timed out)

        Raises:
            ClientError: DynamoDB failed for a reason other than contention
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        if not self._local.acquire(blocking, -1 if timeout is None or not blocking else timeout):
            return False

        if self._holds > 0:
            self._holds += 1
            return True

        try:
            acquired = self._acquire_lease(blocking, deadline)
        except Exception:
            self._local.release()
            raise
        if not acquired:
            self._local.release()
            return False

        self._holds = 1
        logger.debug(f"Acquired lock '{self.key}' as {self.registry.owner}")
        return True

    def _acquire_lease(self, blocking: bool, deadline: Optional[float]) -> bool:
        while True:
            try:
                self.registry.put_lease(self.key, _ACQUIRE_CONDITION, include_now=True)
                return True
            except ClientError as e:
                if not _is_contention(e):
                    raise
            if not blocking:
                return False
            if deadline is not None and time.monotonic() >= deadline:
                logger.info(f"Timed out waiting for lock '{self.key}'")
                return False
            time.sleep(self.registry.retry_interval)

    def renew(self) -> None:
        """Push the lease expiry forward. Only the holding thread may renew."""
        if self._holds == 0:
            raise LockLostError(f"Lock '{self.key}' is not held")
        try:
            self.registry.put_lease(self.key, _HELD_CONDITION)
        except ClientError as e:
            if _is_contention(e):
                raise LockLostError(f"Lease for lock '{self.key}' was taken over") from e
            raise

    def release(self) -> None:
        """
        Release one hold. The lease item is deleted on the last release; a
        lease that already expired and was taken over is logged, not raised.
        """
        if self._holds == 0:
            raise RuntimeError(f"Lock '{self.key}' released without being held")
        self._holds -= 1
        try:
            if self._holds == 0:
                self._delete_lease()
        finally:
            self._local.release()

    def _delete_lease(self) -> None:
        try:
            self.registry.client.delete_item(
                TableName=self.registry.table_name,
                Key={KEY_ATTRIBUTE: {"S": self.key}},
                ConditionExpression=_HELD_CONDITION,
                ExpressionAttributeNames={"#owner": OWNER_ATTRIBUTE},
                ExpressionAttributeValues={":owner": {"S": self.registry.owner}},
            )
            logger.debug(f"Released lock '{self.key}'")
        except ClientError as e:
            if not _is_contention(e):
                raise
            logger.warning(f"Lease for lock '{self.key}' expired before release")


class DynamoDbLockRegistry:
    """
    Hands out DynamoDbLock objects sharing one table and owner identity.

    Args:
        client: boto3 DynamoDB client
        table_name: Lock table (hash key "lockKey", string)
        lease_duration: Seconds a lease is valid without renew()
        retry_interval: Seconds between attempts while blocking on contention
        owner: Identity written into leases (default: host name + random suffix)
    """

    def __init__(
        self,
        client: Any,
        table_name: str,
        lease_duration: float = 20.0,
        retry_interval: float = 1.0,
        owner: Optional[str] = None,
    ):
        self.client = client
        self.table_name = table_name
        self.lease_duration = lease_duration
        self.retry_interval = retry_interval
        self.owner = owner or f"{socket.gethostname()}:{uuid.uuid4().hex[:12]}"
        self._locks: Dict[str, DynamoDbLock] = {}
        self._locks_guard = threading.Lock()

    def obtain(self, key: str) -> DynamoDbLock:
        """Get the lock for a key; the same object is returned for the same key."""
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = DynamoDbLock(self, key)
                self._locks[key] = lock
            return lock

    def put_lease(self, key: str, condition: str, include_now: bool = False) -> None:
        now = time.time()
        values = {":owner": {"S": self.owner}}
        if include_now:
            values[":now"] = {"N": repr(now)}
        self.client.put_item(
            TableName=self.table_name,
            Item={
                KEY_ATTRIBUTE: {"S": key},
                OWNER_ATTRIBUTE: {"S": self.owner},
                EXPIRE_ATTRIBUTE: {"N": repr(now + self.lease_duration)},
            },
            ConditionExpression=condition,
            ExpressionAttributeNames={"#owner": OWNER_ATTRIBUTE},
            ExpressionAttributeValues=values,
        )

    def ensure_table(self, create: bool = False) -> None:
        """
        Check the lock table exists, optionally creating it.

        Raises:
            ConfigurationError: table is missing and create is False
        """
        try:
            self.client.describe_table(TableName=self.table_name)
            return
        except ClientError as e:
            if not is_not_found(e):
                raise
            if not create:
                raise ConfigurationError(f"DynamoDB lock table '{self.table_name}' does not exist") from e

        logger.info(f"Creating DynamoDB lock table {self.table_name}")
        self.client.create_table(
            TableName=self.table_name,
            KeySchema=[{"AttributeName": KEY_ATTRIBUTE, "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": KEY_ATTRIBUTE, "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        self.client.get_waiter("table_exists").wait(TableName=self.table_name)


def create_lock_registry(deps, **overrides) -> DynamoDbLockRegistry:
    """Build a lock registry from environment configuration."""
    options = {
        "table_name": deps.config["LOCK_TABLE_NAME"],
        "lease_duration": deps.config["LOCK_LEASE_SECONDS"],
    }
    options.update(overrides)
    return DynamoDbLockRegistry(deps.dynamodb, **options)
