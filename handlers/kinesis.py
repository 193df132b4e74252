# =============================================================================
# KINESIS HANDLER - Put records on a Kinesis data stream
# =============================================================================
# Message -> PutRecordRequest (or a caller-built PutRecordsRequest batch)
#
# Stream and partition key come from static values or resolvers, falling back
# to the "stream" / "partitionKey" headers. Success messages carry the
# sequence number and shard id Kinesis assigned.
# =============================================================================

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

from awsbridge.runtime.bridge import AsyncDispatchBridge
from awsbridge.runtime.errors import ConfigurationError
from awsbridge.runtime.message import AwsHeaders, Message
from awsbridge.runtime.providers import AwsRequest, Provider
from awsbridge.runtime.resolvers import Resolver, header, resolve
from handlers.base import Converter, describe_entry_failures, is_not_found, register_adapter, to_bytes

logger = logging.getLogger(__name__)


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass
class PutRecordRequest(AwsRequest):
    """Single record for Kinesis PutRecord."""
    operation: ClassVar[str] = "put_record"

    stream_name: str
    partition_key: str
    data: bytes
    explicit_hash_key: Optional[str] = None
    sequence_number_for_ordering: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        params = {
            "StreamName": self.stream_name,
            "PartitionKey": self.partition_key,
            "Data": self.data,
        }
        if self.explicit_hash_key:
            params["ExplicitHashKey"] = self.explicit_hash_key
        if self.sequence_number_for_ordering:
            params["SequenceNumberForOrdering"] = self.sequence_number_for_ordering
        return params


@dataclass
class PutRecordsRequestEntry:
    """One entry of a PutRecords batch."""
    data: bytes
    partition_key: str
    explicit_hash_key: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        params = {"Data": self.data, "PartitionKey": self.partition_key}
        if self.explicit_hash_key:
            params["ExplicitHashKey"] = self.explicit_hash_key
        return params


@dataclass
class PutRecordsRequest(AwsRequest):
    """Batch of records for Kinesis PutRecords; sent and completed as one unit."""
    operation: ClassVar[str] = "put_records"

    stream_name: str
    records: List[PutRecordsRequestEntry] = field(default_factory=list)

    def to_params(self) -> Dict[str, Any]:
        return {
            "StreamName": self.stream_name,
            "Records": [record.to_params() for record in self.records],
        }


@dataclass
class DescribeStreamSummaryRequest(AwsRequest):
    operation: ClassVar[str] = "describe_stream_summary"

    stream_name: str

    def to_params(self) -> Dict[str, Any]:
        return {"StreamName": self.stream_name}


# =============================================================================
# HANDLER
# =============================================================================

class KinesisMessageHandler(AsyncDispatchBridge):
    """
    Sends messages to Kinesis.

    Args:
        provider: Provider wrapping a Kinesis client
        stream: Stream name or resolver; None falls back to the "stream" header
        partition_key: Partition key or resolver (default: "partitionKey" header)
        explicit_hash_key: Explicit hash key or resolver (optional)
        sequence_number: SequenceNumberForOrdering or resolver (optional)
        converter: Turns non-bytes payloads into record data
        check_stream: Verify a static stream exists on start()
    """

    def __init__(
        self,
        provider: Provider,
        stream: Union[str, Resolver, None] = None,
        partition_key: Union[str, Resolver, None] = header(AwsHeaders.PARTITION_KEY),
        explicit_hash_key: Union[str, Resolver, None] = header(AwsHeaders.EXPLICIT_HASH_KEY),
        sequence_number: Union[str, Resolver, None] = header(AwsHeaders.SEQUENCE_NUMBER),
        converter: Converter = to_bytes,
        check_stream: bool = False,
        **kwargs,
    ):
        super().__init__(provider, **kwargs)
        self.stream = stream
        self.partition_key = partition_key
        self.explicit_hash_key = explicit_hash_key
        self.sequence_number = sequence_number
        self.converter = converter
        self.check_stream = check_stream

    def verify_resources(self) -> None:
        if not self.check_stream or not isinstance(self.stream, str):
            return
        try:
            self.provider.execute(DescribeStreamSummaryRequest(self.stream))
        except Exception as e:
            if is_not_found(e):
                raise ConfigurationError(f"Kinesis stream '{self.stream}' does not exist") from e
            raise

    def build_request(self, message: Message) -> AwsRequest:
        payload = message.payload
        if isinstance(payload, (PutRecordRequest, PutRecordsRequest)):
            return payload

        if self.stream is not None:
            stream = resolve(self.stream, message)
        else:
            stream = message.get(AwsHeaders.STREAM)
        if not stream:
            raise ConfigurationError("'stream' must not be null for sending a Kinesis record")

        partition_key = resolve(self.partition_key, message)
        if not partition_key:
            raise ConfigurationError("'partitionKey' must not be null for sending a Kinesis record")

        explicit_hash_key = resolve(self.explicit_hash_key, message)
        sequence_number = resolve(self.sequence_number, message)

        if isinstance(payload, (bytes, bytearray, memoryview, str)):
            data = to_bytes(payload)
        else:
            data = self.converter(payload)

        return PutRecordRequest(
            stream_name=str(stream),
            partition_key=str(partition_key),
            data=data,
            explicit_hash_key=str(explicit_hash_key) if explicit_hash_key is not None else None,
            sequence_number_for_ordering=str(sequence_number) if sequence_number is not None else None,
        )

    def success_headers(self, message: Message, request: AwsRequest, result: Any) -> Dict[str, Any]:
        result = result or {}
        if isinstance(request, PutRecordsRequest):
            failed = describe_entry_failures(
                request.records, result.get("Records", []), key=lambda entry: entry.partition_key
            )
            if failed:
                logger.warning(
                    f"PutRecords to {request.stream_name}: {len(failed)} of "
                    f"{len(request.records)} records rejected"
                )
            return {
                AwsHeaders.STREAM: request.stream_name,
                AwsHeaders.FAILED_RECORDS: failed or None,
            }
        return {
            AwsHeaders.STREAM: request.stream_name,
            AwsHeaders.PARTITION_KEY: request.partition_key,
            AwsHeaders.SEQUENCE_NUMBER: result.get("SequenceNumber"),
            AwsHeaders.SHARD_ID: result.get("ShardId"),
        }


@register_adapter("kinesis", description="Put records on a Kinesis data stream")
def create_kinesis_handler(deps, **overrides) -> KinesisMessageHandler:
    """Build a Kinesis adapter from environment configuration."""
    options = {
        "stream": deps.config["KINESIS_STREAM"] or None,
        "sync": deps.config["BRIDGE_SYNC"],
        "send_timeout": deps.config["BRIDGE_SEND_TIMEOUT"],
        "check_stream": deps.config["BRIDGE_CHECK_RESOURCES"],
    }
    options.update(overrides)
    return KinesisMessageHandler(deps.kinesis_provider, **options)
