# =============================================================================
# AWS Channel Adapters - Handler Package
# =============================================================================
# One outbound adapter per AWS service, all built on AsyncDispatchBridge.
#
#   handlers/
#   ├── __init__.py          # This file - package exports
#   ├── base.py              # Payload conversion, digests, adapter registry
#   ├── kinesis.py           # KinesisMessageHandler   (target "kinesis")
#   ├── sqs.py               # SqsMessageHandler       (target "sqs")
#   ├── s3.py                # S3MessageHandler        (target "s3")
#   └── dynamodb_lock.py     # DynamoDbLockRegistry
#
# USAGE IN app.py:
#   from handlers import build_adapter
#   adapter = build_adapter(deps.config["BRIDGE_TARGET"], deps)
#   adapter.handle_message(message)
#
# TO ADD A NEW ADAPTER:
#   @register_adapter("my_target", description="...")
#   def create_my_handler(deps, **overrides):
#       return MyMessageHandler(deps.my_provider, **overrides)
#   then import the module below so the factory registers.
# =============================================================================

from handlers.base import (
    get_adapter_factory,
    list_adapters,
    register_adapter,
)

# Importing the adapter modules registers their factories
from handlers.kinesis import KinesisMessageHandler, PutRecordRequest, PutRecordsRequest, PutRecordsRequestEntry
from handlers.sqs import SendMessageBatchRequest, SendMessageBatchRequestEntry, SendMessageRequest, SqsMessageHandler
from handlers.s3 import Command, CopyObjectRequest, DownloadRequest, ObjectMetadata, PutObjectRequest, S3MessageHandler
from handlers.dynamodb_lock import DynamoDbLock, DynamoDbLockRegistry, LockLostError, create_lock_registry

from awsbridge.runtime.bridge import AsyncDispatchBridge
from awsbridge.runtime.errors import ConfigurationError


def build_adapter(target: str, deps, **overrides) -> AsyncDispatchBridge:
    """
    Build the adapter registered for a target.

    Raises:
        ConfigurationError: no adapter is registered for the target
    """
    factory = get_adapter_factory(target)
    if factory is None:
        raise ConfigurationError(
            f"Unknown bridge target '{target}'. Available: {', '.join(sorted(list_adapters()))}"
        )
    return factory(deps, **overrides)


__all__ = [
    "build_adapter",
    "register_adapter",
    "get_adapter_factory",
    "list_adapters",
    "KinesisMessageHandler",
    "PutRecordRequest",
    "PutRecordsRequest",
    "PutRecordsRequestEntry",
    "SqsMessageHandler",
    "SendMessageRequest",
    "SendMessageBatchRequest",
    "SendMessageBatchRequestEntry",
    "S3MessageHandler",
    "Command",
    "ObjectMetadata",
    "PutObjectRequest",
    "CopyObjectRequest",
    "DownloadRequest",
    "DynamoDbLockRegistry",
    "DynamoDbLock",
    "LockLostError",
    "create_lock_registry",
]
