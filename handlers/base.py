# Base utilities for all AWS adapters
# Payload conversion, digest helpers, AWS error-code checks and the adapter registry
import base64
import hashlib
import json
import logging
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from awsbridge.runtime.bridge import AsyncDispatchBridge
from awsbridge.runtime.errors import error_code_of

logger = logging.getLogger(__name__)

# Type definitions
Converter = Callable[[Any], bytes]
AdapterFactory = Callable[..., AsyncDispatchBridge]

# Error codes meaning "the resource the adapter was pointed at does not exist"
NOT_FOUND_ERRORS = [
    "ResourceNotFoundException",
    "NoSuchBucket",
    "404",
    "QueueDoesNotExist",
    "AWS.SimpleQueueService.NonExistentQueue",
]

MD5_CHUNK_SIZE = 64 * 1024


# =============================================================================
# PAYLOAD CONVERSION
# =============================================================================
def jdump(x: Any) -> str:
    """JSON dump with defaults for non-serializable types."""
    return json.dumps(x, ensure_ascii=False, default=str)


def to_bytes(payload: Any) -> bytes:
    """Default converter: bytes as-is, text as UTF-8, anything else as JSON."""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, (bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return jdump(payload).encode("utf-8")


def to_text(payload: Any) -> str:
    """Text form of a payload: text as-is, bytes decoded as UTF-8, anything else as JSON."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload).decode("utf-8")
    return jdump(payload)


# =============================================================================
# DIGESTS
# =============================================================================
def md5_base64(data: bytes) -> str:
    """Base64 MD5 digest, the format S3 expects in Content-MD5."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def md5_base64_stream(stream: BinaryIO) -> Tuple[str, int]:
    """Digest a stream from its current position; returns (md5, bytes read)."""
    digest = hashlib.md5()
    length = 0
    while True:
        chunk = stream.read(MD5_CHUNK_SIZE)
        if not chunk:
            break
        digest.update(chunk)
        length += len(chunk)
    return base64.b64encode(digest.digest()).decode("ascii"), length


# =============================================================================
# AWS ERRORS
# =============================================================================
def is_not_found(error: Exception) -> bool:
    """True if a ClientError says the target resource does not exist."""
    return isinstance(error, ClientError) and error_code_of(error) in NOT_FOUND_ERRORS


def describe_entry_failures(entries: List[Any], outcomes: List[Dict[str, Any]],
                            key: Callable[[Any], Any]) -> List[Dict[str, Any]]:
    """
    Pair batch request entries with per-entry provider outcomes by position.

    Returns one dict per failed entry: index, key, errorCode, errorMessage.
    """
    failed = []
    for index, (entry, outcome) in enumerate(zip(entries, outcomes)):
        if outcome.get("ErrorCode"):
            failed.append({
                "index": index,
                "key": key(entry),
                "errorCode": outcome.get("ErrorCode"),
                "errorMessage": outcome.get("ErrorMessage", ""),
            })
    return failed


# =============================================================================
# ADAPTER REGISTRY
# =============================================================================
_ADAPTERS: Dict[str, AdapterFactory] = {}
_ADAPTER_METADATA: Dict[str, Dict[str, Any]] = {}


def register_adapter(target: str, description: str = None):
    """
    Decorator to register a factory building an adapter from Deps.

    Usage:
        @register_adapter("kinesis", description="Put records on a Kinesis stream")
        def create_kinesis_handler(deps, **overrides):
            return KinesisMessageHandler(deps.kinesis_provider, ...)
    """
    def decorator(func: AdapterFactory) -> AdapterFactory:
        _ADAPTERS[target] = func
        _ADAPTER_METADATA[target] = {
            "description": description or (func.__doc__ or "No description").split("\n")[0].strip(),
            "module": func.__module__,
        }
        return func
    return decorator


def get_adapter_factory(target: str) -> Optional[AdapterFactory]:
    """Get the factory for a target."""
    return _ADAPTERS.get(target)


def list_adapters() -> Dict[str, str]:
    """List all registered targets with their descriptions."""
    return {
        target: meta["description"]
        for target, meta in _ADAPTER_METADATA.items()
    }
