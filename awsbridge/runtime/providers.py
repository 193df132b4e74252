# =============================================================================
# Providers - Uniform Boundary Around AWS Clients
# =============================================================================
# A provider knows how to run a request against an AWS client in two shapes:
#
#   execute(request)                          blocking, returns or raises
#   submit(request, on_success, on_error)     callback style, returns a Future
#
# BlockingProvider wraps a boto3 client (inline or on a thread pool).
# CallbackProvider wraps any callback-style async API.
# =============================================================================

import logging
from concurrent.futures import Executor, Future, InvalidStateError
from typing import Any, Callable, ClassVar, Dict, Optional

from awsbridge.runtime.errors import ProviderError

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]
AsyncCall = Callable[[Any, SuccessCallback, ErrorCallback], Any]


class AwsRequest:
    """
    Base for request values sent through a provider.

    Subclasses are dataclasses that set ``operation`` to the boto3 client
    method name and map their fields onto that method's keyword arguments.
    """
    operation: ClassVar[str] = ""

    def to_params(self) -> Dict[str, Any]:
        raise NotImplementedError

    def invoke(self, client: Any) -> Any:
        """Run this request against a boto3 client."""
        return getattr(client, self.operation)(**self.to_params())


class Provider:
    """Capability interface for running requests."""

    def execute(self, request: AwsRequest) -> Any:
        raise NotImplementedError

    def submit(self, request: AwsRequest, on_success: SuccessCallback,
               on_error: ErrorCallback) -> Future:
        raise NotImplementedError

    def close(self) -> None:
        pass


class BlockingProvider(Provider):
    """
    Runs requests through a blocking boto3 client.

    Without an executor the call happens on the invoking thread and the
    callbacks fire before submit() returns. With an executor the call and the
    callbacks run on a pool thread.
    """

    def __init__(self, client: Any, executor: Optional[Executor] = None):
        self.client = client
        self.executor = executor

    def execute(self, request: AwsRequest) -> Any:
        logger.debug(f"Invoking {request.operation} on {type(self.client).__name__}")
        return request.invoke(self.client)

    def submit(self, request: AwsRequest, on_success: SuccessCallback,
               on_error: ErrorCallback) -> Future:
        if self.executor is None:
            future: Future = Future()
            future.set_running_or_notify_cancel()
            try:
                future.set_result(self.execute(request))
            except Exception as e:
                future.set_exception(e)
            _notify(future, on_success, on_error)
            return future

        future = self.executor.submit(self.execute, request)
        future.add_done_callback(lambda f: _notify(f, on_success, on_error))
        return future

    def close(self) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True)


class CallbackProvider(Provider):
    """
    Adapts an API of the form ``async_call(request, on_success, on_error)``.

    The returned Future settles with the first completion reported; any later
    completion for the same call is logged and ignored.
    """

    def __init__(self, async_call: AsyncCall):
        self.async_call = async_call

    def submit(self, request: AwsRequest, on_success: SuccessCallback,
               on_error: ErrorCallback) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()

        def success(result: Any) -> None:
            if _settle(future, result=result):
                on_success(result)

        def error(cause: Any) -> None:
            if not isinstance(cause, BaseException):
                cause = ProviderError(str(cause))
            if _settle(future, error=cause):
                on_error(cause)

        try:
            self.async_call(request, success, error)
        except Exception as e:
            error(e)
        return future

    def execute(self, request: AwsRequest, timeout: Optional[float] = None) -> Any:
        future = self.submit(request, lambda result: None, lambda cause: None)
        return future.result(timeout)


def _settle(future: Future, result: Any = None, error: Optional[BaseException] = None) -> bool:
    try:
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)
        return True
    except InvalidStateError:
        logger.warning("Provider reported more than one completion for a request, ignoring")
        return False


def _notify(future: Future, on_success: SuccessCallback, on_error: ErrorCallback) -> None:
    error = future.exception()
    try:
        if error is not None:
            on_error(error)
        else:
            on_success(future.result())
    except Exception:
        logger.exception("Completion callback raised")
