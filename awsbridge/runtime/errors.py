# =============================================================================
# Bridge Errors
# =============================================================================
# ConfigurationError / UnsupportedPayloadError are raised while building a
# request, before anything reaches AWS. Provider failures are wrapped in
# AwsRequestFailure and routed to the failure channel. MessageHandlingError
# is what a caller of handle_message() actually sees.
# =============================================================================

from typing import Any, Optional

from botocore.exceptions import ClientError


class BridgeError(Exception):
    """Base class for all adapter errors."""


class ConfigurationError(BridgeError):
    """A required field (destination, key, ...) or AWS resource is missing."""


class UnsupportedPayloadError(BridgeError):
    """Payload cannot be mapped onto a request for the target service."""


class ProviderError(BridgeError):
    """Error reported by a provider call."""

    def __init__(self, message: str, error_code: str = "", response: Any = None):
        super().__init__(message)
        self.error_code = error_code
        self.response = response


class SendTimeoutError(BridgeError, TimeoutError):
    """Synchronous wait for a provider answer ran out of time."""

    def __init__(self, message: str, request: Any = None, timeout: Optional[float] = None):
        super().__init__(message)
        self.request = request
        self.timeout = timeout


class AwsRequestFailure(BridgeError):
    """
    Failure envelope routed to the failure channel.

    Attributes:
        cause: The error the provider reported
        request: The exact request object that failed
        failed_message: The inbound message the request was built from
    """

    def __init__(self, failed_message: Any, request: Any, cause: BaseException):
        super().__init__(str(cause))
        self.failed_message = failed_message
        self.request = request
        self.cause = cause
        self.__cause__ = cause

    @property
    def error_code(self) -> str:
        return error_code_of(self.cause) or getattr(self.cause, "error_code", "")


class MessageHandlingError(BridgeError):
    """Raised to the caller when a message could not be handled."""

    def __init__(self, failed_message: Any, cause: BaseException, description: str = ""):
        text = description or "Failed to handle message"
        super().__init__(f"{text}: {cause}")
        self.failed_message = failed_message
        self.cause = cause
        self.__cause__ = cause


def error_code_of(error: BaseException) -> str:
    """Return the AWS error code carried by a botocore ClientError, if any."""
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "")
    return ""
