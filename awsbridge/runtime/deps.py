# =============================================================================
# Dependency Injection Container
# =============================================================================
# Provides lazy-loaded AWS clients, providers and environment configuration
# to the adapters. Nothing talks to AWS until a client is first accessed.
# =============================================================================

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from awsbridge.runtime.providers import BlockingProvider

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"


def _env(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _env_bool(key: str, default: bool = False) -> bool:
    return _env(key, str(default)).lower() == "true"


def _env_float(key: str, default: Optional[float] = None) -> Optional[float]:
    raw = _env(key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {key}={raw!r}")
        return default


@dataclass
class Deps:
    """
    Dependency injection container for adapters.

    Usage:
        deps = create_deps()
        handler = KinesisMessageHandler(deps.kinesis_provider, stream=deps.config["KINESIS_STREAM"])
    """
    region: str = field(default_factory=lambda: _env("AWS_REGION", DEFAULT_REGION))
    endpoint_url: Optional[str] = field(default_factory=lambda: _env("AWS_ENDPOINT_URL") or None)

    # ==========================================================================
    # AWS Clients (lazy-loaded)
    # ==========================================================================

    @cached_property
    def client_config(self) -> Config:
        """Socket timeouts shared by every client; retries stay with botocore."""
        return Config(
            region_name=self.region,
            connect_timeout=int(self.config["AWS_CONNECT_TIMEOUT"]),
            read_timeout=int(self.config["AWS_READ_TIMEOUT"]),
        )

    def _client(self, service: str):
        logger.debug(f"Creating {service} client in {self.region}")
        return boto3.client(service, endpoint_url=self.endpoint_url, config=self.client_config)

    @cached_property
    def kinesis(self):
        """Kinesis client."""
        return self._client("kinesis")

    @cached_property
    def s3(self):
        """S3 client."""
        return self._client("s3")

    @cached_property
    def sqs(self):
        """SQS client."""
        return self._client("sqs")

    @cached_property
    def dynamodb(self):
        """DynamoDB client (low-level, used by the lock registry)."""
        return self._client("dynamodb")

    # ==========================================================================
    # Providers
    # ==========================================================================

    @cached_property
    def executor(self) -> Optional[ThreadPoolExecutor]:
        """Worker pool for async sends; None runs sends on the caller's thread."""
        workers = self.config["BRIDGE_MAX_WORKERS"]
        if workers <= 0:
            return None
        return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="awsbridge")

    @cached_property
    def kinesis_provider(self) -> BlockingProvider:
        return BlockingProvider(self.kinesis, self.executor)

    @cached_property
    def s3_provider(self) -> BlockingProvider:
        return BlockingProvider(self.s3, self.executor)

    @cached_property
    def sqs_provider(self) -> BlockingProvider:
        return BlockingProvider(self.sqs, self.executor)

    # ==========================================================================
    # Configuration
    # ==========================================================================

    @cached_property
    def config(self) -> Dict[str, Any]:
        """Environment configuration."""
        return {
            "BRIDGE_TARGET": _env("BRIDGE_TARGET", "kinesis").lower(),
            "KINESIS_STREAM": _env("KINESIS_STREAM"),
            "SQS_QUEUE": _env("SQS_QUEUE"),
            "S3_BUCKET": _env("S3_BUCKET"),
            "S3_KEY_PREFIX": _env("S3_KEY_PREFIX"),
            "LOCK_TABLE_NAME": _env("LOCK_TABLE_NAME", "awsbridge-locks"),
            "LOCK_LEASE_SECONDS": _env_float("LOCK_LEASE_SECONDS", 20.0),
            "BRIDGE_SYNC": _env_bool("BRIDGE_SYNC", True),
            "BRIDGE_SEND_TIMEOUT": _env_float("BRIDGE_SEND_TIMEOUT"),
            "BRIDGE_MAX_WORKERS": int(_env("BRIDGE_MAX_WORKERS", "0")),
            "BRIDGE_CHECK_RESOURCES": _env_bool("BRIDGE_CHECK_RESOURCES", False),
            "AWS_CONNECT_TIMEOUT": _env("AWS_CONNECT_TIMEOUT", "10"),
            "AWS_READ_TIMEOUT": _env("AWS_READ_TIMEOUT", "60"),
            "LOG_LEVEL": _env("LOG_LEVEL", "INFO").upper(),
        }

    def close(self) -> None:
        """Shut down the worker pool, if one was created."""
        if "executor" in self.__dict__ and self.executor is not None:
            self.executor.shutdown(wait=True)


def create_deps(region: str = None) -> Deps:
    """Create a new Deps instance."""
    return Deps(region=region or _env("AWS_REGION", DEFAULT_REGION))


# Global deps instance for the Lambda entry point
_global_deps: Optional[Deps] = None


def get_deps() -> Deps:
    """Get or create global Deps instance."""
    global _global_deps
    if _global_deps is None:
        _global_deps = create_deps()
    return _global_deps
