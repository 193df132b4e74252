# =============================================================================
# SQS HANDLER - Send messages to an SQS queue
# =============================================================================
# Message -> SendMessageRequest (or a caller-built SendMessageBatchRequest)
#
# The queue may be given as a name or a URL. Names are resolved with
# GetQueueUrl when the request runs, once per name per handler.
# Message headers become SQS message attributes.
# =============================================================================

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

from awsbridge.runtime.bridge import AsyncDispatchBridge
from awsbridge.runtime.errors import ConfigurationError, UnsupportedPayloadError
from awsbridge.runtime.message import AwsHeaders, Message
from awsbridge.runtime.providers import AwsRequest, Provider
from awsbridge.runtime.resolvers import Resolver, header, resolve
from handlers.base import describe_entry_failures, is_not_found, register_adapter, to_text

logger = logging.getLogger(__name__)

MAX_MESSAGE_ATTRIBUTES = 10

# Headers used for routing that must not leak into message attributes
_RESERVED_HEADERS = {
    AwsHeaders.ID,
    AwsHeaders.TIMESTAMP,
    AwsHeaders.QUEUE,
    AwsHeaders.DELAY_SECONDS,
    AwsHeaders.MESSAGE_GROUP_ID,
    AwsHeaders.MESSAGE_DEDUPLICATION_ID,
    AwsHeaders.MESSAGE_ID,
    AwsHeaders.RECEIPT_HANDLE,
    AwsHeaders.EVENT_SOURCE_ARN,
    AwsHeaders.RAW_RECORD,
    AwsHeaders.FAILED_RECORDS,
}


def is_queue_url(queue: str) -> bool:
    return queue.startswith("https://") or queue.startswith("http://")


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass
class GetQueueUrlRequest(AwsRequest):
    operation: ClassVar[str] = "get_queue_url"

    queue_name: str

    def to_params(self) -> Dict[str, Any]:
        return {"QueueName": self.queue_name}


class QueueUrlCache:
    """Queue name -> URL. Each name is looked up at most once."""

    def __init__(self):
        self._urls: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, queue: str) -> Optional[str]:
        if is_queue_url(queue):
            return queue
        with self._lock:
            return self._urls.get(queue)

    def remember(self, queue_name: str, queue_url: str) -> None:
        with self._lock:
            self._urls[queue_name] = queue_url

    def lookup(self, client: Any, queue_name: str) -> str:
        """
        Return the URL for queue_name, calling GetQueueUrl on a miss.

        Raises:
            ConfigurationError: the queue does not exist
        """
        with self._lock:
            url = self._urls.get(queue_name)
            if url is not None:
                return url
            try:
                url = GetQueueUrlRequest(queue_name).invoke(client)["QueueUrl"]
            except Exception as e:
                if is_not_found(e):
                    raise ConfigurationError(f"SQS queue '{queue_name}' does not exist") from e
                raise
            self._urls[queue_name] = url
            logger.debug(f"Resolved SQS queue '{queue_name}' to {url}")
            return url


@dataclass
class SendMessageRequest(AwsRequest):
    """
    Single SQS SendMessage call.

    When ``queue_url`` is empty, ``queue_name`` is resolved through
    ``url_cache`` as the request runs.
    """
    operation: ClassVar[str] = "send_message"

    queue_url: Optional[str]
    message_body: str
    delay_seconds: Optional[int] = None
    message_attributes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    message_group_id: Optional[str] = None
    message_deduplication_id: Optional[str] = None
    queue_name: Optional[str] = None
    url_cache: Optional[QueueUrlCache] = field(default=None, repr=False, compare=False)

    def invoke(self, client: Any) -> Any:
        if not self.queue_url:
            cache = self.url_cache or QueueUrlCache()
            self.queue_url = cache.lookup(client, self.queue_name)
        return super().invoke(client)

    def to_params(self) -> Dict[str, Any]:
        params = {"QueueUrl": self.queue_url, "MessageBody": self.message_body}
        if self.delay_seconds is not None:
            params["DelaySeconds"] = self.delay_seconds
        if self.message_attributes:
            params["MessageAttributes"] = self.message_attributes
        if self.message_group_id:
            params["MessageGroupId"] = self.message_group_id
        if self.message_deduplication_id:
            params["MessageDeduplicationId"] = self.message_deduplication_id
        return params


@dataclass
class SendMessageBatchRequestEntry:
    id: str
    message_body: str
    delay_seconds: Optional[int] = None
    message_attributes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    message_group_id: Optional[str] = None
    message_deduplication_id: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        params = {"Id": self.id, "MessageBody": self.message_body}
        if self.delay_seconds is not None:
            params["DelaySeconds"] = self.delay_seconds
        if self.message_attributes:
            params["MessageAttributes"] = self.message_attributes
        if self.message_group_id:
            params["MessageGroupId"] = self.message_group_id
        if self.message_deduplication_id:
            params["MessageDeduplicationId"] = self.message_deduplication_id
        return params


@dataclass
class SendMessageBatchRequest(AwsRequest):
    """SQS SendMessageBatch; sent and completed as one unit."""
    operation: ClassVar[str] = "send_message_batch"

    queue_url: str
    entries: List[SendMessageBatchRequestEntry] = field(default_factory=list)

    def to_params(self) -> Dict[str, Any]:
        return {
            "QueueUrl": self.queue_url,
            "Entries": [entry.to_params() for entry in self.entries],
        }


# =============================================================================
# MESSAGE ATTRIBUTES
# =============================================================================
def to_message_attribute(value: Any) -> Optional[Dict[str, Any]]:
    """Map a header value onto an SQS message attribute; None if not mappable."""
    if isinstance(value, bool):
        return {"DataType": "String", "StringValue": str(value).lower()}
    if isinstance(value, (int, float)):
        return {"DataType": "Number", "StringValue": str(value)}
    if isinstance(value, str):
        return {"DataType": "String", "StringValue": value}
    if isinstance(value, (bytes, bytearray)):
        return {"DataType": "Binary", "BinaryValue": bytes(value)}
    return None


def default_header_filter(name: str) -> bool:
    return name not in _RESERVED_HEADERS


# =============================================================================
# HANDLER
# =============================================================================

class SqsMessageHandler(AsyncDispatchBridge):
    """
    Sends messages to SQS.

    Args:
        provider: Provider wrapping an SQS client
        queue: Queue name/URL or resolver; None falls back to the "queue" header
        delay_seconds: DelaySeconds or resolver (default: "delaySeconds" header)
        message_group_id: FIFO group id or resolver (default: "messageGroupId" header)
        message_deduplication_id: FIFO dedup id or resolver (default: "messageDeduplicationId" header)
        header_filter: Chooses which headers become message attributes
        check_queue: Verify a static queue exists on start()
    """

    def __init__(
        self,
        provider: Provider,
        queue: Union[str, Resolver, None] = None,
        delay_seconds: Union[int, Resolver, None] = header(AwsHeaders.DELAY_SECONDS),
        message_group_id: Union[str, Resolver, None] = header(AwsHeaders.MESSAGE_GROUP_ID),
        message_deduplication_id: Union[str, Resolver, None] = header(AwsHeaders.MESSAGE_DEDUPLICATION_ID),
        header_filter: Callable[[str], bool] = default_header_filter,
        check_queue: bool = False,
        **kwargs,
    ):
        super().__init__(provider, **kwargs)
        self.queue = queue
        self.delay_seconds = delay_seconds
        self.message_group_id = message_group_id
        self.message_deduplication_id = message_deduplication_id
        self.header_filter = header_filter
        self.check_queue = check_queue
        self.queue_urls = QueueUrlCache()

    def verify_resources(self) -> None:
        if not self.check_queue or not isinstance(self.queue, str) or is_queue_url(self.queue):
            return
        try:
            url = self.provider.execute(GetQueueUrlRequest(self.queue))["QueueUrl"]
        except Exception as e:
            if is_not_found(e):
                raise ConfigurationError(f"SQS queue '{self.queue}' does not exist") from e
            raise
        self.queue_urls.remember(self.queue, url)

    def message_attributes(self, message: Message) -> Dict[str, Dict[str, Any]]:
        attributes = {}
        for name, value in message.headers.items():
            if not self.header_filter(name):
                continue
            attribute = to_message_attribute(value)
            if attribute is None:
                continue
            if len(attributes) == MAX_MESSAGE_ATTRIBUTES:
                logger.warning(f"More than {MAX_MESSAGE_ATTRIBUTES} attribute headers on message {message.id}, dropping '{name}'")
                continue
            attributes[name] = attribute
        return attributes

    def build_request(self, message: Message) -> AwsRequest:
        payload = message.payload
        if isinstance(payload, (SendMessageRequest, SendMessageBatchRequest)):
            return payload

        if self.queue is not None:
            queue = resolve(self.queue, message)
        else:
            queue = message.get(AwsHeaders.QUEUE)
        if not queue:
            raise ConfigurationError("'queue' must not be null for sending an SQS message")

        try:
            body = to_text(payload)
        except UnicodeDecodeError as e:
            raise UnsupportedPayloadError("SQS message body must be valid UTF-8 text") from e

        delay = resolve(self.delay_seconds, message)
        queue = str(queue)

        return SendMessageRequest(
            queue_url=self.queue_urls.get(queue),
            queue_name=queue,
            url_cache=self.queue_urls,
            message_body=body,
            delay_seconds=int(delay) if delay is not None else None,
            message_attributes=self.message_attributes(message),
            message_group_id=resolve(self.message_group_id, message),
            message_deduplication_id=resolve(self.message_deduplication_id, message),
        )

    def success_headers(self, message: Message, request: AwsRequest, result: Any) -> Dict[str, Any]:
        result = result or {}
        if isinstance(request, SendMessageBatchRequest):
            outcomes = {outcome.get("Id"): outcome for outcome in result.get("Failed", [])}
            failed = describe_entry_failures(
                request.entries,
                [_batch_outcome(outcomes.get(entry.id)) for entry in request.entries],
                key=lambda entry: entry.id,
            )
            if failed:
                logger.warning(
                    f"SendMessageBatch to {request.queue_url}: {len(failed)} of "
                    f"{len(request.entries)} entries rejected"
                )
            return {
                AwsHeaders.QUEUE: request.queue_url,
                AwsHeaders.FAILED_RECORDS: failed or None,
            }
        return {
            AwsHeaders.QUEUE: request.queue_url,
            AwsHeaders.MESSAGE_ID: result.get("MessageId"),
            AwsHeaders.SEQUENCE_NUMBER: result.get("SequenceNumber"),
        }


def _batch_outcome(failure: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if failure is None:
        return {}
    return {"ErrorCode": failure.get("Code", "Unknown"), "ErrorMessage": failure.get("Message", "")}


@register_adapter("sqs", description="Send messages to an SQS queue")
def create_sqs_handler(deps, **overrides) -> SqsMessageHandler:
    """Build an SQS adapter from environment configuration."""
    options = {
        "queue": deps.config["SQS_QUEUE"] or None,
        "sync": deps.config["BRIDGE_SYNC"],
        "send_timeout": deps.config["BRIDGE_SEND_TIMEOUT"],
        "check_queue": deps.config["BRIDGE_CHECK_RESOURCES"],
    }
    options.update(overrides)
    return SqsMessageHandler(deps.sqs_provider, **options)
