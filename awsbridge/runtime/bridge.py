# =============================================================================
# Async Dispatch Bridge
# =============================================================================
# Shared outbound flow for every AWS adapter:
#
#   build_request(message)          -> one request (a batch is one request)
#   provider.submit(request, ...)   -> exactly one completion per request
#   on_success / on_failure         -> output channel / failure channel
#   SyncGate (sync mode)            -> caller blocks until routed, failures raise
#
# Adapters subclass AsyncDispatchBridge and fill in build_request() and the
# success header/payload hooks.
# =============================================================================

import logging
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Any, Dict, Optional, Union

from awsbridge.runtime.channels import MessageChannel
from awsbridge.runtime.errors import (
    AwsRequestFailure,
    BridgeError,
    MessageHandlingError,
    SendTimeoutError,
)
from awsbridge.runtime.message import Message
from awsbridge.runtime.providers import AwsRequest, Provider
from awsbridge.runtime.resolvers import Resolver, resolve

logger = logging.getLogger(__name__)


# =============================================================================
# SYNC GATE
# =============================================================================

class GateState(str, Enum):
    """Lifecycle of a single synchronous send."""
    IDLE = "idle"
    DISPATCHED = "dispatched"
    COMPLETED_SUCCESS = "completed_success"
    COMPLETED_FAILURE = "completed_failure"


class SyncGate:
    """
    Blocks the sending thread until its request has completed and been routed.

    One gate per send; a gate that has gone through dispatch cannot be reused.
    """

    def __init__(self):
        self.state = GateState.IDLE
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._used = False
        self._lock = threading.Lock()
        self._done = threading.Event()

    def dispatched(self) -> None:
        with self._lock:
            if self._used:
                raise RuntimeError("SyncGate is single-use")
            self._used = True
            self.state = GateState.DISPATCHED

    def complete(self, result: Any = None, error: Optional[BaseException] = None) -> bool:
        """Record the outcome; returns False if the gate was not waiting for one."""
        with self._lock:
            if self.state != GateState.DISPATCHED:
                return False
            if error is not None:
                self.error = error
                self.state = GateState.COMPLETED_FAILURE
            else:
                self.result = result
                self.state = GateState.COMPLETED_SUCCESS
        self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None, request: Any = None) -> Any:
        """
        Wait for completion. A None or negative timeout waits forever.

        Raises:
            SendTimeoutError: nothing completed within timeout
            BaseException: the recorded failure
        """
        if timeout is not None and timeout < 0:
            timeout = None
        if not self._done.wait(timeout):
            raise SendTimeoutError(
                f"No response for {type(request).__name__} within {timeout}s",
                request=request,
                timeout=timeout,
            )
        with self._lock:
            state = self.state
            self.state = GateState.IDLE
        if state == GateState.COMPLETED_FAILURE:
            raise self.error
        return self.result


# =============================================================================
# CORRELATION
# =============================================================================

class Correlation:
    """Ties one in-flight request back to the message it came from."""

    def __init__(self, bridge: "AsyncDispatchBridge", message: Message,
                 request: AwsRequest, gate: Optional[SyncGate] = None):
        self.bridge = bridge
        self.message = message
        self.request = request
        self.gate = gate
        self.completed = False
        self._lock = threading.Lock()

    def _claim(self) -> bool:
        with self._lock:
            if self.completed:
                logger.warning(
                    f"Duplicate completion for {type(self.request).__name__} "
                    f"(message {self.message.id}), ignoring"
                )
                return False
            self.completed = True
            return True

    def on_success(self, result: Any) -> None:
        if not self._claim():
            return
        try:
            self.bridge.on_success(self.message, self.request, result)
        except Exception as e:
            self._routing_failed(e)
            return
        if self.gate is not None:
            self.gate.complete(result=result)

    def on_error(self, cause: BaseException) -> None:
        if not self._claim():
            return
        try:
            failure = self.bridge.on_failure(self.message, self.request, cause)
        except Exception as e:
            self._routing_failed(e)
            return
        if self.gate is not None:
            self.gate.complete(error=failure)

    def _routing_failed(self, error: Exception) -> None:
        if self.gate is not None:
            self.gate.complete(error=error)
        else:
            logger.exception(f"Failed to route result for message {self.message.id}: {error}")


# =============================================================================
# BRIDGE
# =============================================================================

class AsyncDispatchBridge:
    """
    Base class for outbound AWS adapters.

    Args:
        provider: Provider running requests against AWS
        output_channel: Receives success messages; None drops them
        failure_channel: Receives AwsRequestFailure payloads
        sync: Block handle_message() until the result is routed and raise failures
        send_timeout: Seconds to wait in sync mode (value or resolver); None waits forever
    """

    def __init__(
        self,
        provider: Provider,
        output_channel: Optional[MessageChannel] = None,
        failure_channel: Optional[MessageChannel] = None,
        sync: bool = False,
        send_timeout: Union[float, Resolver, None] = None,
    ):
        self.provider = provider
        self.output_channel = output_channel
        self.failure_channel = failure_channel
        self.sync = sync
        self.send_timeout = send_timeout
        self._started = False
        self._start_lock = threading.Lock()

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def start(self) -> None:
        """Run one-time resource checks. Safe to call more than once."""
        with self._start_lock:
            if self._started:
                return
            self.verify_resources()
            self._started = True
            logger.info(f"{type(self).__name__} started (sync={self.sync})")

    def verify_resources(self) -> None:
        """Fail fast when a required AWS resource is missing."""

    # ==========================================================================
    # Adapter hooks
    # ==========================================================================

    def build_request(self, message: Message) -> AwsRequest:
        raise NotImplementedError

    def success_headers(self, message: Message, request: AwsRequest, result: Any) -> Dict[str, Any]:
        return {}

    def success_payload(self, message: Message, request: AwsRequest, result: Any) -> Any:
        return message.payload

    # ==========================================================================
    # Flow
    # ==========================================================================

    def handle_message(self, message: Message) -> Future:
        """
        Send one message to AWS.

        Returns the provider handle for the in-flight call. In sync mode the
        call has already completed and been routed when this returns.

        Raises:
            MessageHandlingError: request could not be built, or (sync mode)
                the provider reported a failure
            SendTimeoutError: sync mode wait exceeded send_timeout
        """
        self.start()

        try:
            request = self.build_request(message)
        except Exception as e:
            raise MessageHandlingError(message, e, "Failed to build AWS request") from e

        gate = SyncGate() if self.sync else None
        try:
            handle = self.dispatch(message, request, gate)
        except Exception as e:
            raise MessageHandlingError(message, e, f"Failed to dispatch {type(request).__name__}") from e

        if gate is None:
            return handle

        timeout = resolve(self.send_timeout, message)
        try:
            gate.wait(timeout, request)
        except SendTimeoutError:
            logger.warning(f"Timed out waiting for {type(request).__name__} (message {message.id})")
            raise
        except AwsRequestFailure as failure:
            raise MessageHandlingError(
                message, failure.cause, f"Failed to send {type(request).__name__}"
            ) from failure.cause
        except BridgeError:
            raise
        except Exception as e:
            raise MessageHandlingError(message, e, "Failed to route AWS result") from e
        return handle

    def dispatch(self, message: Message, request: AwsRequest,
                 gate: Optional[SyncGate] = None) -> Future:
        """Submit a request; its completion is routed through a Correlation."""
        correlation = Correlation(self, message, request, gate)
        if gate is not None:
            gate.dispatched()
        logger.debug(f"Dispatching {type(request).__name__} for message {message.id}")
        return self.provider.submit(request, correlation.on_success, correlation.on_error)

    def on_success(self, message: Message, request: AwsRequest, result: Any) -> None:
        if self.output_channel is None:
            logger.debug(f"No output channel, dropping result for message {message.id}")
            return
        reply = message.with_payload(self.success_payload(message, request, result)) \
            .with_headers(**self.success_headers(message, request, result))
        self.output_channel.send(reply)

    def on_failure(self, message: Message, request: AwsRequest,
                   cause: BaseException) -> AwsRequestFailure:
        """Route a failure; returns the envelope so sync callers can re-raise it."""
        failure = AwsRequestFailure(message, request, cause)
        if self.failure_channel is not None:
            self.failure_channel.send(message.with_payload(failure))
        elif not self.sync:
            logger.error(
                f"{type(request).__name__} failed for message {message.id} "
                f"and no failure channel is configured: {cause}",
                exc_info=cause,
            )
        return failure
