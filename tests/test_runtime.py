#!/usr/bin/env python3
"""
Test suite for the bridge runtime.

Tests:
- Message and header handling
- Channels and resolvers
- Providers (blocking, thread pool, callback style)
- SyncGate lifecycle
- AsyncDispatchBridge routing (async + sync, success + failure)
- Inbound event parsing (SQS, SNS, Kinesis, direct)
- Dependency injection container

Run with: pytest tests/test_runtime.py -v
Or: python tests/test_runtime.py
"""
import os
import sys
import json
import base64
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict
from unittest.mock import MagicMock, patch

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set required environment variables BEFORE imports
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from botocore.exceptions import ClientError

from awsbridge.runtime.providers import AwsRequest, Provider


# =============================================================================
# HELPERS
# =============================================================================

@dataclass
class EchoRequest(AwsRequest):
    """Calls client.echo(Value=...)."""
    operation = "echo"

    value: Any = None

    def to_params(self) -> Dict[str, Any]:
        return {"Value": self.value}


def client_error(code: str = "InternalFailure", message: str = "boom", operation: str = "Echo") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def echo_bridge(client=None, **kwargs):
    """Bridge that sends the payload to client.echo and reports the echoed value."""
    from awsbridge.runtime.bridge import AsyncDispatchBridge
    from awsbridge.runtime.providers import BlockingProvider

    class EchoBridge(AsyncDispatchBridge):
        def build_request(self, message):
            if message.payload is None:
                raise ValueError("nothing to echo")
            return EchoRequest(message.payload)

        def success_headers(self, message, request, result):
            return {"echoed": result.get("Value")}

    if client is None:
        client = MagicMock()
        client.echo.side_effect = lambda **params: params
    return EchoBridge(BlockingProvider(client), **kwargs), client


class TwiceProvider(Provider):
    """Reports every completion twice."""

    def submit(self, request, on_success, on_error):
        on_success({"Value": request.value})
        on_success({"Value": "again"})
        return None


class SilentProvider(Provider):
    """Never completes."""

    def submit(self, request, on_success, on_error):
        return None


# =============================================================================
# TEST: Message
# =============================================================================

class TestMessage:
    """Tests for Message and AwsHeaders."""

    def test_generated_headers(self):
        """Test id and timestamp are generated."""
        from awsbridge.runtime.message import AwsHeaders, Message

        message = Message("hello", {"a": 1})

        assert message.payload == "hello"
        assert message.get("a") == 1
        assert message.id
        assert message.get(AwsHeaders.TIMESTAMP)
        assert Message("x").id != message.id
        print("✓ Message generates id and timestamp")

    def test_headers_read_only(self):
        """Test headers cannot be mutated."""
        from awsbridge.runtime.message import Message

        message = Message("hello", {"a": 1})
        try:
            message.headers["a"] = 2
            assert False, "headers should be read-only"
        except TypeError:
            pass
        print("✓ Message headers are read-only")

    def test_with_headers(self):
        """Test with_headers copies, skips None and regenerates id."""
        from awsbridge.runtime.message import Message

        message = Message("hello", {"a": 1})
        derived = message.with_headers(b=2, c=None)

        assert derived.payload == "hello"
        assert derived.get("a") == 1
        assert derived.get("b") == 2
        assert "c" not in derived.headers
        assert derived.id != message.id
        assert "b" not in message.headers
        print("✓ Message.with_headers() works correctly")

    def test_with_payload(self):
        """Test with_payload keeps user headers."""
        from awsbridge.runtime.message import Message

        message = Message("hello", {"a": 1})
        derived = message.with_payload(b"bytes")

        assert derived.payload == b"bytes"
        assert derived.get("a") == 1
        assert derived.to_dict()["payload"] == "bytes"
        print("✓ Message.with_payload() works correctly")


# =============================================================================
# TEST: Channels and Resolvers
# =============================================================================

class TestChannels:
    """Tests for channels."""

    def test_queue_channel(self):
        """Test QueueChannel buffers in order."""
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.message import Message

        channel = QueueChannel("test")
        assert channel.send(Message(1))
        assert channel.send(Message(2))
        assert len(channel) == 2
        assert channel.receive(timeout=1).payload == 1
        assert [m.payload for m in channel.clear()] == [2]
        assert channel.receive(timeout=0.01) is None
        print("✓ QueueChannel works correctly")

    def test_queue_channel_capacity(self):
        """Test a full QueueChannel rejects sends after the timeout."""
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.message import Message

        channel = QueueChannel("small", capacity=1)
        assert channel.send(Message(1), timeout=0.01)
        assert channel.send(Message(2), timeout=0.01) is False
        print("✓ QueueChannel capacity enforced")

    def test_direct_channel(self):
        """Test DirectChannel calls subscribers."""
        from awsbridge.runtime.channels import DirectChannel
        from awsbridge.runtime.message import Message

        channel = DirectChannel("direct")
        assert channel.send(Message(1)) is False

        received = []
        channel.subscribe(received.append)
        assert channel.send(Message(2))
        assert [m.payload for m in received] == [2]

        channel.unsubscribe(received.append)
        assert channel.send(Message(3)) is False
        print("✓ DirectChannel works correctly")


class TestResolvers:
    """Tests for value resolvers."""

    def test_header_and_static(self):
        from awsbridge.runtime.message import Message
        from awsbridge.runtime.resolvers import header, resolve

        message = Message("x", {"stream": "s1"})
        assert resolve(header("stream"), message) == "s1"
        assert resolve(header("missing", "dflt"), message) == "dflt"
        assert resolve("static", message) == "static"
        assert resolve(None, message) is None
        print("✓ header()/resolve() work correctly")

    def test_payload_attr(self):
        from awsbridge.runtime.message import Message
        from awsbridge.runtime.resolvers import payload_attr

        class Order:
            customer = "c-1"

        assert payload_attr("customer")(Message({"customer": "c-2"})) == "c-2"
        assert payload_attr("customer")(Message(Order())) == "c-1"
        assert payload_attr("missing")(Message(Order())) is None
        print("✓ payload_attr() works correctly")

    def test_first_of_and_file_name(self):
        from pathlib import Path
        from awsbridge.runtime.message import Message
        from awsbridge.runtime.resolvers import constant, file_name, first_of, header

        resolver = first_of(header("key"), file_name(), constant("fallback"))
        assert resolver(Message(b"x", {"key": "k"})) == "k"
        assert resolver(Message(Path("/tmp/report.pdf"))) == "report.pdf"
        assert resolver(Message(b"x")) == "fallback"
        print("✓ first_of()/file_name() work correctly")


# =============================================================================
# TEST: Providers
# =============================================================================

class TestProviders:
    """Tests for provider implementations."""

    def test_blocking_inline_success(self):
        """Test inline provider completes before submit() returns."""
        from awsbridge.runtime.providers import BlockingProvider

        client = MagicMock()
        client.echo.return_value = {"Value": "hi"}
        results, errors = [], []

        future = BlockingProvider(client).submit(EchoRequest("hi"), results.append, errors.append)

        client.echo.assert_called_once_with(Value="hi")
        assert results == [{"Value": "hi"}]
        assert errors == []
        assert future.done() and future.result() == {"Value": "hi"}
        print("✓ BlockingProvider inline success works")

    def test_blocking_inline_error(self):
        """Test inline provider reports ClientError through on_error."""
        from awsbridge.runtime.providers import BlockingProvider

        client = MagicMock()
        error = client_error()
        client.echo.side_effect = error
        results, errors = [], []

        future = BlockingProvider(client).submit(EchoRequest("hi"), results.append, errors.append)

        assert results == []
        assert errors == [error]
        assert future.exception() is error
        print("✓ BlockingProvider inline error works")

    def test_blocking_executor(self):
        """Test pool provider runs the call off the caller thread."""
        from awsbridge.runtime.providers import BlockingProvider

        client = MagicMock()
        client.echo.return_value = {"Value": "pooled"}
        done = threading.Event()
        seen = {}

        def on_success(result):
            seen["result"] = result
            done.set()

        provider = BlockingProvider(client, ThreadPoolExecutor(max_workers=1, thread_name_prefix="pool"))
        try:
            provider.submit(EchoRequest("x"), on_success, lambda e: done.set())
            assert done.wait(5)
        finally:
            provider.close()

        assert seen["result"] == {"Value": "pooled"}
        print("✓ BlockingProvider executor works")

    def test_callback_provider_duplicate_completion(self):
        """Test only the first completion is delivered."""
        from awsbridge.runtime.providers import CallbackProvider

        def async_call(request, on_success, on_error):
            on_success("first")
            on_success("second")
            on_error(RuntimeError("late"))

        results, errors = [], []
        future = CallbackProvider(async_call).submit(EchoRequest(), results.append, errors.append)

        assert results == ["first"]
        assert errors == []
        assert future.result() == "first"
        print("✓ CallbackProvider ignores duplicate completions")

    def test_callback_provider_wraps_non_exceptions(self):
        """Test error values that are not exceptions become ProviderError."""
        from awsbridge.runtime.errors import ProviderError
        from awsbridge.runtime.providers import CallbackProvider

        provider = CallbackProvider(lambda request, ok, fail: fail("throttled"))
        errors = []
        provider.submit(EchoRequest(), lambda r: None, errors.append)

        assert isinstance(errors[0], ProviderError)
        assert str(errors[0]) == "throttled"
        try:
            provider.execute(EchoRequest(), timeout=1)
            assert False, "execute should raise"
        except ProviderError:
            pass
        print("✓ CallbackProvider wraps non-exception errors")

    def test_callback_provider_call_raises(self):
        """Test an exception thrown by the async call becomes an error completion."""
        from awsbridge.runtime.providers import CallbackProvider

        def async_call(request, on_success, on_error):
            raise RuntimeError("cannot submit")

        errors = []
        future = CallbackProvider(async_call).submit(EchoRequest(), lambda r: None, errors.append)
        assert str(errors[0]) == "cannot submit"
        assert isinstance(future.exception(), RuntimeError)
        print("✓ CallbackProvider reports submit-time failures")


# =============================================================================
# TEST: SyncGate
# =============================================================================

class TestSyncGate:
    """Tests for the SyncGate state machine."""

    def test_success(self):
        from awsbridge.runtime.bridge import GateState, SyncGate

        gate = SyncGate()
        assert gate.state == GateState.IDLE
        assert gate.complete(result="early") is False

        gate.dispatched()
        assert gate.state == GateState.DISPATCHED
        assert gate.complete(result="ok")
        assert gate.state == GateState.COMPLETED_SUCCESS
        assert gate.complete(result="again") is False

        assert gate.wait(1) == "ok"
        assert gate.state == GateState.IDLE
        print("✓ SyncGate success path works")

    def test_failure(self):
        from awsbridge.runtime.bridge import GateState, SyncGate

        gate = SyncGate()
        gate.dispatched()
        error = RuntimeError("failed")
        gate.complete(error=error)
        assert gate.state == GateState.COMPLETED_FAILURE

        try:
            gate.wait(1)
            assert False, "wait should raise"
        except RuntimeError as e:
            assert e is error
        assert gate.state == GateState.IDLE
        print("✓ SyncGate failure path works")

    def test_single_use(self):
        from awsbridge.runtime.bridge import SyncGate

        gate = SyncGate()
        gate.dispatched()
        gate.complete(result=1)
        gate.wait(1)
        try:
            gate.dispatched()
            assert False, "gate reuse should raise"
        except RuntimeError as e:
            assert "single-use" in str(e)
        print("✓ SyncGate is single-use")

    def test_timeout(self):
        from awsbridge.runtime.bridge import SyncGate
        from awsbridge.runtime.errors import SendTimeoutError

        gate = SyncGate()
        gate.dispatched()
        request = EchoRequest("slow")
        try:
            gate.wait(0.05, request)
            assert False, "wait should time out"
        except SendTimeoutError as e:
            assert e.request is request
            assert e.timeout == 0.05
            assert isinstance(e, TimeoutError)
        print("✓ SyncGate times out")

    def test_negative_timeout_waits(self):
        from awsbridge.runtime.bridge import SyncGate

        gate = SyncGate()
        gate.dispatched()
        timer = threading.Timer(0.05, gate.complete, kwargs={"result": "late"})
        timer.start()
        assert gate.wait(-1) == "late"
        timer.join()
        print("✓ SyncGate negative timeout waits for completion")


# =============================================================================
# TEST: AsyncDispatchBridge
# =============================================================================

class TestBridge:
    """Tests for request dispatch and result routing."""

    def test_async_success_routed(self):
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.message import Message

        output = QueueChannel()
        bridge, client = echo_bridge(output_channel=output)

        future = bridge.handle_message(Message("ping", {"trace": "t1"}))

        assert future.result() == {"Value": "ping"}
        reply = output.receive(timeout=1)
        assert reply.payload == "ping"
        assert reply.get("echoed") == "ping"
        assert reply.get("trace") == "t1"
        print("✓ Async success routed to output channel")

    def test_async_failure_routed(self):
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.errors import AwsRequestFailure
        from awsbridge.runtime.message import Message

        client = MagicMock()
        client.echo.side_effect = client_error("ThrottlingException", "slow down")
        output, failures = QueueChannel(), QueueChannel()
        bridge, _ = echo_bridge(client, output_channel=output, failure_channel=failures)

        message = Message("ping")
        bridge.handle_message(message)

        assert len(output) == 0
        routed = failures.receive(timeout=1)
        failure = routed.payload
        assert isinstance(failure, AwsRequestFailure)
        assert failure.failed_message is message
        assert failure.request == EchoRequest("ping")
        assert failure.error_code == "ThrottlingException"
        assert isinstance(failure.cause, ClientError)
        print("✓ Async failure routed to failure channel")

    def test_async_failure_without_channel_dropped(self):
        from awsbridge.runtime.message import Message

        client = MagicMock()
        client.echo.side_effect = client_error()
        bridge, _ = echo_bridge(client)

        future = bridge.handle_message(Message("ping"))
        assert isinstance(future.exception(), ClientError)
        print("✓ Async failure without failure channel does not raise")

    def test_sync_failure_raises(self):
        from awsbridge.runtime.errors import MessageHandlingError
        from awsbridge.runtime.message import Message

        client = MagicMock()
        cause = client_error("ValidationException", "bad value")
        client.echo.side_effect = cause
        bridge, _ = echo_bridge(client, sync=True)

        try:
            bridge.handle_message(Message("ping"))
            assert False, "sync failure should raise"
        except MessageHandlingError as e:
            assert e.__cause__ is cause
            assert e.cause is cause
            assert "bad value" in str(e)
        print("✓ Sync failure raises with cause preserved")

    def test_sync_failure_routed_and_raised(self):
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.errors import MessageHandlingError
        from awsbridge.runtime.message import Message

        client = MagicMock()
        client.echo.side_effect = client_error()
        failures = QueueChannel()
        bridge, _ = echo_bridge(client, failure_channel=failures, sync=True)

        try:
            bridge.handle_message(Message("ping"))
            assert False, "sync failure should raise"
        except MessageHandlingError:
            pass
        assert len(failures) == 1
        print("✓ Sync failure with failure channel is routed and raised")

    def test_sync_success_waits_for_routing(self):
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.message import Message
        from awsbridge.runtime.providers import BlockingProvider

        client = MagicMock()
        client.echo.side_effect = lambda **params: params
        output = QueueChannel()
        bridge, _ = echo_bridge(client, output_channel=output, sync=True)
        bridge.provider = BlockingProvider(client, ThreadPoolExecutor(max_workers=1))
        try:
            bridge.handle_message(Message("ping"))
            # Routed before handle_message returned
            assert len(output) == 1
        finally:
            bridge.provider.close()
        print("✓ Sync send returns after the result is routed")

    def test_build_error_no_provider_call(self):
        from awsbridge.runtime.errors import MessageHandlingError
        from awsbridge.runtime.message import Message

        bridge, client = echo_bridge()
        try:
            bridge.handle_message(Message(None))
            assert False, "build failure should raise"
        except MessageHandlingError as e:
            assert isinstance(e.__cause__, ValueError)
        client.echo.assert_not_called()
        print("✓ Build errors raise before any provider call")

    def test_sync_timeout(self):
        from awsbridge.runtime.errors import SendTimeoutError
        from awsbridge.runtime.message import Message

        bridge, _ = echo_bridge(sync=True, send_timeout=0.05)
        bridge.provider = SilentProvider()
        try:
            bridge.handle_message(Message("ping"))
            assert False, "should time out"
        except SendTimeoutError as e:
            assert e.request == EchoRequest("ping")
        print("✓ Sync send times out")

    def test_send_timeout_resolver(self):
        from awsbridge.runtime.errors import SendTimeoutError
        from awsbridge.runtime.message import Message
        from awsbridge.runtime.resolvers import header

        bridge, _ = echo_bridge(sync=True, send_timeout=header("timeout"))
        bridge.provider = SilentProvider()
        try:
            bridge.handle_message(Message("ping", {"timeout": 0.02}))
            assert False, "should time out"
        except SendTimeoutError as e:
            assert e.timeout == 0.02
        print("✓ Send timeout resolved per message")

    def test_duplicate_completion_routed_once(self):
        from awsbridge.runtime.channels import QueueChannel
        from awsbridge.runtime.message import Message

        output = QueueChannel()
        bridge, _ = echo_bridge(output_channel=output)
        bridge.provider = TwiceProvider()

        bridge.handle_message(Message("ping"))

        assert [m.get("echoed") for m in output.clear()] == ["ping"]
        print("✓ Duplicate completion routed once")

    def test_routing_error_raised_in_sync_mode(self):
        from awsbridge.runtime.channels import DirectChannel
        from awsbridge.runtime.errors import MessageHandlingError
        from awsbridge.runtime.message import Message

        def broken(message):
            raise ValueError("consumer down")

        output = DirectChannel()
        output.subscribe(broken)
        bridge, _ = echo_bridge(output_channel=output, sync=True)

        try:
            bridge.handle_message(Message("ping"))
            assert False, "routing failure should raise"
        except MessageHandlingError as e:
            assert isinstance(e.__cause__, ValueError)
        print("✓ Routing errors surface in sync mode")

    def test_start_is_idempotent(self):
        from awsbridge.runtime.message import Message

        bridge, _ = echo_bridge()
        bridge.verify_resources = MagicMock()

        bridge.start()
        bridge.start()
        bridge.handle_message(Message("ping"))

        bridge.verify_resources.assert_called_once()
        print("✓ start() runs resource checks once")


# =============================================================================
# TEST: Inbound Event Parser
# =============================================================================

class TestInbound:
    """Tests for Lambda event parsing."""

    def test_sqs_event(self):
        from awsbridge.runtime.inbound import EventSource, parse_event
        from awsbridge.runtime.message import AwsHeaders

        event = {"Records": [{
            "eventSource": "aws:sqs",
            "messageId": "m-1",
            "receiptHandle": "rh-1",
            "eventSourceARN": "arn:aws:sqs:us-east-1:123456789012:orders",
            "body": json.dumps({"order": 7}),
            "messageAttributes": {
                "priority": {"dataType": "String", "stringValue": "high"},
                "attempt": {"dataType": "Number", "stringValue": "2"},
            },
        }]}

        messages, source = parse_event(event)

        assert source == EventSource.SQS
        assert len(messages) == 1
        message = messages[0]
        assert message.payload == {"order": 7}
        assert message.get(AwsHeaders.MESSAGE_ID) == "m-1"
        assert message.get(AwsHeaders.RECEIPT_HANDLE) == "rh-1"
        assert message.get(AwsHeaders.QUEUE) == "orders"
        assert message.get("priority") == "high"
        assert message.get("attempt") == 2
        print("✓ SQS event parsed correctly")

    def test_sns_wrapped_in_sqs(self):
        from awsbridge.runtime.inbound import parse_event
        from awsbridge.runtime.message import AwsHeaders

        body = {"Type": "Notification", "TopicArn": "arn:aws:sns:us-east-1:1:alerts",
                "Message": json.dumps({"alert": "disk"})}
        event = {"Records": [{"eventSource": "aws:sqs", "messageId": "m-2", "body": json.dumps(body)}]}

        messages, _ = parse_event(event)

        assert messages[0].payload == {"alert": "disk"}
        assert messages[0].get(AwsHeaders.TOPIC) == "arn:aws:sns:us-east-1:1:alerts"
        print("✓ SNS notification inside SQS unwrapped")

    def test_sns_event(self):
        from awsbridge.runtime.inbound import EventSource, parse_event
        from awsbridge.runtime.message import AwsHeaders

        event = {"Records": [{
            "EventSource": "aws:sns",
            "Sns": {"MessageId": "sns-1", "TopicArn": "arn:aws:sns:us-east-1:1:t", "Message": "plain text"},
        }]}

        messages, source = parse_event(event)

        assert source == EventSource.SNS
        assert messages[0].payload == "plain text"
        assert messages[0].get(AwsHeaders.MESSAGE_ID) == "sns-1"
        print("✓ SNS event parsed correctly")

    def test_kinesis_event(self):
        from awsbridge.runtime.inbound import EventSource, parse_event
        from awsbridge.runtime.message import AwsHeaders

        event = {"Records": [{
            "eventSource": "aws:kinesis",
            "eventID": "shardId-000000000000:4954",
            "eventSourceARN": "arn:aws:kinesis:us-east-1:1:stream/clicks",
            "kinesis": {
                "partitionKey": "user-1",
                "sequenceNumber": "4954",
                "data": base64.b64encode(b"click").decode("ascii"),
            },
        }]}

        messages, source = parse_event(event)

        assert source == EventSource.KINESIS
        message = messages[0]
        assert message.payload == b"click"
        assert message.get(AwsHeaders.PARTITION_KEY) == "user-1"
        assert message.get(AwsHeaders.SEQUENCE_NUMBER) == "4954"
        assert message.get(AwsHeaders.SHARD_ID) == "shardId-000000000000"
        assert message.get(AwsHeaders.STREAM) == "clicks"
        print("✓ Kinesis event parsed correctly")

    def test_direct_and_unknown(self):
        from awsbridge.runtime.inbound import EventSource, detect_event_source, parse_event

        messages, source = parse_event({"payload": "hi", "headers": {"partitionKey": "k"}})
        assert source == EventSource.DIRECT
        assert messages[0].payload == "hi"
        assert messages[0].get("partitionKey") == "k"

        messages, source = parse_event({"something": "else"})
        assert source == EventSource.UNKNOWN
        assert messages[0].payload == {"something": "else"}

        assert detect_event_source({}) == EventSource.UNKNOWN
        print("✓ Direct and unknown events parsed correctly")


# =============================================================================
# TEST: Dependency Injection
# =============================================================================

class TestDeps:
    """Tests for dependency injection container."""

    def test_config_defaults(self):
        from awsbridge.runtime.deps import Deps

        env = {k: v for k, v in os.environ.items() if not k.startswith(("BRIDGE_", "LOCK_", "KINESIS_", "SQS_", "S3_"))}
        with patch.dict(os.environ, env, clear=True):
            deps = Deps(region="eu-west-1", endpoint_url=None)
            config = deps.config

        assert config["BRIDGE_TARGET"] == "kinesis"
        assert config["BRIDGE_SYNC"] is True
        assert config["BRIDGE_SEND_TIMEOUT"] is None
        assert config["BRIDGE_MAX_WORKERS"] == 0
        assert config["LOCK_TABLE_NAME"] == "awsbridge-locks"
        assert config["LOCK_LEASE_SECONDS"] == 20.0
        assert deps.executor is None
        print("✓ Deps config defaults correct")

    def test_config_from_env(self):
        from awsbridge.runtime.deps import Deps

        with patch.dict(os.environ, {
            "BRIDGE_TARGET": "SQS",
            "BRIDGE_SYNC": "false",
            "BRIDGE_SEND_TIMEOUT": "2.5",
            "BRIDGE_MAX_WORKERS": "2",
            "SQS_QUEUE": "jobs",
        }):
            deps = Deps(region="eu-west-1", endpoint_url=None)
            config = deps.config

        assert config["BRIDGE_TARGET"] == "sqs"
        assert config["BRIDGE_SYNC"] is False
        assert config["BRIDGE_SEND_TIMEOUT"] == 2.5
        assert config["SQS_QUEUE"] == "jobs"
        try:
            assert deps.executor is not None
        finally:
            deps.close()
        print("✓ Deps config read from environment")

    def test_lazy_clients(self):
        from awsbridge.runtime.deps import Deps

        deps = Deps(region="eu-west-1", endpoint_url="http://localhost:4566")
        with patch("awsbridge.runtime.deps.boto3.client") as mock_client:
            kinesis = deps.kinesis
            assert deps.kinesis is kinesis
            mock_client.assert_called_once_with(
                "kinesis", endpoint_url="http://localhost:4566", config=deps.client_config
            )
            assert deps.kinesis_provider.client is kinesis
        assert deps.client_config.region_name == "eu-west-1"
        print("✓ Deps clients are lazy and cached")

    def test_get_deps_singleton(self):
        import awsbridge.runtime.deps as deps_module

        deps_module._global_deps = None
        try:
            assert deps_module.get_deps() is deps_module.get_deps()
        finally:
            deps_module._global_deps = None
        print("✓ get_deps() returns a singleton")


# =============================================================================
# RUN ALL TESTS
# =============================================================================

def run_all_tests():
    """Run all test classes."""
    print("\n" + "=" * 70)
    print("BRIDGE RUNTIME TEST SUITE")
    print("=" * 70 + "\n")

    test_classes = [
        ("Message Tests", TestMessage),
        ("Channel Tests", TestChannels),
        ("Resolver Tests", TestResolvers),
        ("Provider Tests", TestProviders),
        ("SyncGate Tests", TestSyncGate),
        ("Bridge Tests", TestBridge),
        ("Inbound Tests", TestInbound),
        ("Deps Tests", TestDeps),
    ]

    passed = 0
    failed = 0

    for name, test_class in test_classes:
        print(f"\n{'=' * 60}")
        print(f"Running: {name}")
        print("=" * 60)

        instance = test_class()
        for method_name in dir(instance):
            if method_name.startswith("test_"):
                try:
                    getattr(instance, method_name)()
                    passed += 1
                except Exception as e:
                    print(f"✗ {method_name}: {e}")
                    failed += 1

    print("\n" + "=" * 70)
    print(f"RESULTS: {passed} passed, {failed} failed")
    print("=" * 70)

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
