# =============================================================================
# Message - Immutable Payload + Headers Container
# =============================================================================
# Every adapter consumes and produces Message values. A Message is never
# mutated once built; with_headers()/with_payload() return new instances.
# =============================================================================

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping
import uuid


class AwsHeaders:
    """Header names shared by all adapters."""
    ID = "id"
    TIMESTAMP = "timestamp"

    # Kinesis
    STREAM = "stream"
    PARTITION_KEY = "partitionKey"
    SEQUENCE_NUMBER = "sequenceNumber"
    SHARD_ID = "shardId"
    EXPLICIT_HASH_KEY = "explicitHashKey"

    # SQS
    QUEUE = "queue"
    MESSAGE_ID = "messageId"
    DELAY_SECONDS = "delaySeconds"
    MESSAGE_GROUP_ID = "messageGroupId"
    MESSAGE_DEDUPLICATION_ID = "messageDeduplicationId"
    RECEIPT_HANDLE = "receiptHandle"

    # S3
    BUCKET = "bucket"
    KEY = "key"
    ETAG = "eTag"
    VERSION_ID = "versionId"
    S3_COMMAND = "s3Command"

    # Batch results
    FAILED_RECORDS = "failedRecords"

    # Inbound
    TOPIC = "topic"
    EVENT_SOURCE_ARN = "eventSourceArn"
    RAW_RECORD = "rawRecord"


# Headers assigned per message; never copied onto a derived message
_GENERATED_HEADERS = (AwsHeaders.ID, AwsHeaders.TIMESTAMP)


@dataclass(frozen=True)
class Message:
    """
    Immutable message handed between channels and adapters.

    Attributes:
        payload: Opaque payload (bytes, str, Path, stream, request object, ...)
        headers: Read-only header mapping; ``id`` and ``timestamp`` are
            generated when absent
    """
    payload: Any
    headers: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        headers = dict(self.headers or {})
        headers.setdefault(AwsHeaders.ID, str(uuid.uuid4()))
        headers.setdefault(AwsHeaders.TIMESTAMP, datetime.now(timezone.utc).isoformat())
        object.__setattr__(self, "headers", MappingProxyType(headers))

    @property
    def id(self) -> str:
        return self.headers[AwsHeaders.ID]

    def get(self, key: str, default: Any = None) -> Any:
        """Get a header value."""
        return self.headers.get(key, default)

    def with_headers(self, **extra: Any) -> "Message":
        """Copy of this message with extra headers (None values are skipped)."""
        headers = _copyable_headers(self.headers)
        headers.update({k: v for k, v in extra.items() if v is not None})
        return Message(self.payload, headers)

    def with_payload(self, payload: Any) -> "Message":
        """Copy of this message carrying a different payload."""
        return Message(payload, _copyable_headers(self.headers))

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary."""
        payload = self.payload
        if isinstance(payload, (bytes, bytearray)):
            payload = bytes(payload).decode("utf-8", errors="replace")
        return {
            "payload": payload,
            "headers": dict(self.headers),
        }


def _copyable_headers(headers: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in headers.items() if k not in _GENERATED_HEADERS}
