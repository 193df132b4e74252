import logging
from typing import Any, Dict, List

from awsbridge.runtime.deps import get_deps
from awsbridge.runtime.errors import BridgeError
from awsbridge.runtime.inbound import EventSource, parse_event
from awsbridge.runtime.message import AwsHeaders, Message
from handlers import build_adapter
from handlers.base import jdump

# ---------- Logger ----------
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# =============================================================================
# LAMBDA ENTRY POINT
# =============================================================================
# Receives SQS / SNS / Kinesis / direct-invoke events and forwards every
# message through the adapter selected by BRIDGE_TARGET.
#
# SQS and Kinesis batches report per-record failures through
# batchItemFailures so only the failed records are retried.
# =============================================================================

# Headers describing where an inbound record came from; they must not steer
# the outbound send (e.g. send back to the source queue)
_INBOUND_ONLY_HEADERS = (
    AwsHeaders.QUEUE,
    AwsHeaders.STREAM,
    AwsHeaders.SEQUENCE_NUMBER,
    AwsHeaders.SHARD_ID,
    AwsHeaders.RECEIPT_HANDLE,
    AwsHeaders.EVENT_SOURCE_ARN,
    AwsHeaders.RAW_RECORD,
)

_PARTIAL_BATCH_SOURCES = (EventSource.SQS, EventSource.KINESIS)

_adapter = None


def get_adapter():
    """Adapter for the configured target, built once per container."""
    global _adapter
    if _adapter is None:
        deps = get_deps()
        logging.getLogger().setLevel(deps.config["LOG_LEVEL"])
        _adapter = build_adapter(deps.config["BRIDGE_TARGET"], deps)
        _adapter.start()
    return _adapter


def _outbound(message: Message) -> Message:
    headers = {k: v for k, v in message.headers.items() if k not in _INBOUND_ONLY_HEADERS}
    return Message(message.payload, headers)


def _item_identifier(message: Message, source: str) -> str:
    if source == EventSource.KINESIS:
        return message.get(AwsHeaders.SEQUENCE_NUMBER, "")
    return message.get(AwsHeaders.MESSAGE_ID, "")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    messages, source = parse_event(event)
    logger.info(f"Forwarding {len(messages)} {source} message(s)")
    logger.debug("RAW_EVENT=%s", jdump(event))

    adapter = get_adapter()
    failures: List[Dict[str, str]] = []
    errors: List[str] = []

    for message in messages:
        try:
            adapter.handle_message(_outbound(message))
        except BridgeError as e:
            logger.error(f"Failed to forward message {message.id}: {e}")
            errors.append(str(e))
            if source in _PARTIAL_BATCH_SOURCES:
                failures.append({"itemIdentifier": _item_identifier(message, source)})
            elif source == EventSource.SNS:
                # SNS retries the whole delivery
                raise

    if source in _PARTIAL_BATCH_SOURCES:
        return {"batchItemFailures": failures}

    if errors:
        return {"statusCode": 500, "body": jdump({"error": errors[0], "failed": len(errors)})}
    return {"statusCode": 200, "body": jdump({"forwarded": len(messages)})}
