# =============================================================================
# Runtime Package - Message Bridge Core
# =============================================================================
# Provides the shared pieces every AWS adapter is built from:
# - Message / AwsHeaders (payload + headers)
# - Channels for success / failure routing
# - Providers wrapping boto3 clients (blocking or callback style)
# - AsyncDispatchBridge + SyncGate
# - Inbound Lambda event parsing
# =============================================================================

from awsbridge.runtime.message import AwsHeaders, Message
from awsbridge.runtime.channels import DirectChannel, MessageChannel, NullChannel, QueueChannel
from awsbridge.runtime.errors import (
    AwsRequestFailure,
    BridgeError,
    ConfigurationError,
    MessageHandlingError,
    ProviderError,
    SendTimeoutError,
    UnsupportedPayloadError,
)
from awsbridge.runtime.providers import AwsRequest, BlockingProvider, CallbackProvider, Provider
from awsbridge.runtime.bridge import AsyncDispatchBridge, GateState, SyncGate
from awsbridge.runtime.inbound import EventSource, detect_event_source, parse_event
from awsbridge.runtime.deps import Deps, create_deps, get_deps

__all__ = [
    "AwsHeaders",
    "Message",
    "MessageChannel",
    "QueueChannel",
    "DirectChannel",
    "NullChannel",
    "BridgeError",
    "ConfigurationError",
    "UnsupportedPayloadError",
    "ProviderError",
    "SendTimeoutError",
    "AwsRequestFailure",
    "MessageHandlingError",
    "AwsRequest",
    "Provider",
    "BlockingProvider",
    "CallbackProvider",
    "AsyncDispatchBridge",
    "SyncGate",
    "GateState",
    "EventSource",
    "detect_event_source",
    "parse_event",
    "Deps",
    "create_deps",
    "get_deps",
]
