# =============================================================================
# Inbound Event Parser - Lambda Event Records -> Messages
# =============================================================================
# Detects the event source and turns each record into a Message whose headers
# carry the AWS metadata (message id, receipt handle, partition key, ...).
# Supports: SQS, SNS, SNS wrapped in SQS, Kinesis, direct invoke
# =============================================================================

import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Tuple

from awsbridge.runtime.message import AwsHeaders, Message

logger = logging.getLogger(__name__)


class EventSource:
    """Event source identifiers."""
    SQS = "sqs"
    SNS = "sns"
    KINESIS = "kinesis"
    DIRECT = "direct"
    UNKNOWN = "unknown"


def detect_event_source(event: Dict[str, Any]) -> str:
    """
    Detect the source of a Lambda event.

    Returns one of: sqs, sns, kinesis, direct, unknown
    """
    if not event:
        return EventSource.UNKNOWN

    records = event.get("Records")
    if records and isinstance(records[0], dict):
        record = records[0]
        source = record.get("eventSource") or record.get("EventSource") or ""
        if source == "aws:sqs":
            return EventSource.SQS
        if source == "aws:sns" or "Sns" in record:
            return EventSource.SNS
        if source == "aws:kinesis" or "kinesis" in record:
            return EventSource.KINESIS
        return EventSource.UNKNOWN

    if "payload" in event:
        return EventSource.DIRECT

    return EventSource.UNKNOWN


def _decode_json(text: Any) -> Any:
    """JSON-decode strings that hold JSON; anything else is returned unchanged."""
    if not isinstance(text, str):
        return text
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _unwrap_sns_notification(body: Any) -> Tuple[Any, Dict[str, Any]]:
    """Strip an SNS notification wrapper delivered through SQS."""
    if isinstance(body, dict) and body.get("Type") == "Notification" and "Message" in body:
        return _decode_json(body["Message"]), {AwsHeaders.TOPIC: body.get("TopicArn", "")}
    return body, {}


def _message_attribute_headers(attributes: Dict[str, Any]) -> Dict[str, Any]:
    """Map SQS/SNS message attributes onto plain header values."""
    headers = {}
    for name, attribute in (attributes or {}).items():
        if not isinstance(attribute, dict):
            continue
        data_type = attribute.get("dataType") or attribute.get("Type") or "String"
        value = attribute.get("stringValue", attribute.get("Value"))
        if data_type.startswith("Binary"):
            raw = attribute.get("binaryValue", value)
            headers[name] = base64.b64decode(raw) if isinstance(raw, str) else raw
        elif data_type.startswith("Number") and value is not None:
            headers[name] = float(value) if "." in str(value) else int(value)
        else:
            headers[name] = value
    return headers


def _parse_sqs_event(event: Dict[str, Any]) -> List[Message]:
    """Parse SQS event with multiple records."""
    messages = []
    for record in event.get("Records", []):
        payload, extra = _unwrap_sns_notification(_decode_json(record.get("body", "")))
        headers = _message_attribute_headers(record.get("messageAttributes", {}))
        headers.update(extra)
        headers.update({
            AwsHeaders.MESSAGE_ID: record.get("messageId", ""),
            AwsHeaders.RECEIPT_HANDLE: record.get("receiptHandle", ""),
            AwsHeaders.EVENT_SOURCE_ARN: record.get("eventSourceARN", ""),
            AwsHeaders.QUEUE: record.get("eventSourceARN", "").split(":")[-1],
            AwsHeaders.RAW_RECORD: record,
        })
        group_id = record.get("attributes", {}).get("MessageGroupId")
        if group_id:
            headers[AwsHeaders.MESSAGE_GROUP_ID] = group_id
        messages.append(Message(payload, headers))
    return messages


def _parse_sns_event(event: Dict[str, Any]) -> List[Message]:
    """Parse SNS event with multiple records."""
    messages = []
    for record in event.get("Records", []):
        sns_data = record.get("Sns", {})
        headers = _message_attribute_headers(sns_data.get("MessageAttributes", {}))
        headers.update({
            AwsHeaders.MESSAGE_ID: sns_data.get("MessageId", ""),
            AwsHeaders.TOPIC: sns_data.get("TopicArn", ""),
            AwsHeaders.EVENT_SOURCE_ARN: record.get("EventSubscriptionArn", ""),
            AwsHeaders.RAW_RECORD: record,
        })
        messages.append(Message(_decode_json(sns_data.get("Message", "")), headers))
    return messages


def _parse_kinesis_event(event: Dict[str, Any]) -> List[Message]:
    """Parse Kinesis event; record data arrives base64-encoded."""
    messages = []
    for record in event.get("Records", []):
        kinesis = record.get("kinesis", {})
        try:
            data = base64.b64decode(kinesis.get("data", ""), validate=True)
        except (binascii.Error, ValueError):
            logger.warning(f"Kinesis record {record.get('eventID', '')} is not valid base64, passing raw data")
            data = kinesis.get("data", "")
        event_id = record.get("eventID", "")
        headers = {
            AwsHeaders.PARTITION_KEY: kinesis.get("partitionKey", ""),
            AwsHeaders.SEQUENCE_NUMBER: kinesis.get("sequenceNumber", ""),
            AwsHeaders.SHARD_ID: event_id.split(":")[0] if event_id else "",
            AwsHeaders.EVENT_SOURCE_ARN: record.get("eventSourceARN", ""),
            AwsHeaders.STREAM: record.get("eventSourceARN", "").split("/")[-1],
            AwsHeaders.RAW_RECORD: record,
        }
        messages.append(Message(data, headers))
    return messages


def _parse_direct_event(event: Dict[str, Any]) -> Message:
    """Parse direct Lambda invoke: {"payload": ..., "headers": {...}}."""
    if "payload" in event:
        return Message(event["payload"], event.get("headers") or {})
    return Message(event, {})


def parse_event(event: Dict[str, Any]) -> Tuple[List[Message], str]:
    """
    Parse Lambda event and return list of Messages.

    Returns:
        Tuple of (list of Messages, detected source)

    Note: Direct invokes return a single message, record-based sources one per record.
    """
    source = detect_event_source(event)
    logger.info(f"Detected event source: {source}")

    if source == EventSource.SQS:
        return _parse_sqs_event(event), source

    elif source == EventSource.SNS:
        return _parse_sns_event(event), source

    elif source == EventSource.KINESIS:
        return _parse_kinesis_event(event), source

    elif source == EventSource.DIRECT:
        return [_parse_direct_event(event)], source

    else:
        logger.warning("Unknown event source, treating whole event as payload")
        return [_parse_direct_event(event)], EventSource.UNKNOWN
