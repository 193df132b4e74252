# =============================================================================
# Resolvers - Pull Values Out of a Message
# =============================================================================
# A resolver is a plain callable (Message) -> value. Adapters accept either a
# static value or a resolver for each configurable field.
# =============================================================================

import os
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from awsbridge.runtime.message import Message

T = TypeVar("T")
Resolver = Callable[[Message], Any]


def header(name: str, default: Any = None) -> Resolver:
    """Resolve a header value."""
    def resolve_header(message: Message) -> Any:
        return message.headers.get(name, default)
    resolve_header.__name__ = f"header[{name}]"
    return resolve_header


def payload_attr(name: str, default: Any = None) -> Resolver:
    """Resolve a payload mapping key or attribute."""
    def resolve_payload_attr(message: Message) -> Any:
        payload = message.payload
        if isinstance(payload, dict):
            return payload.get(name, default)
        return getattr(payload, name, default)
    resolve_payload_attr.__name__ = f"payload[{name}]"
    return resolve_payload_attr


def constant(value: T) -> Callable[[Message], T]:
    """Resolve to the same value for every message."""
    def resolve_constant(message: Message) -> T:
        return value
    return resolve_constant


def file_name() -> Resolver:
    """Name of a path payload, None for anything else."""
    def resolve_file_name(message: Message) -> Optional[str]:
        if isinstance(message.payload, os.PathLike):
            return Path(message.payload).name
        return None
    return resolve_file_name


def first_of(*resolvers: Resolver) -> Resolver:
    """First non-None value produced by the given resolvers."""
    def resolve_first(message: Message) -> Any:
        for resolver in resolvers:
            value = resolver(message)
            if value is not None:
                return value
        return None
    return resolve_first


def resolve(source: Any, message: Message) -> Any:
    """Evaluate a resolver, or return a static value unchanged."""
    if callable(source):
        return source(message)
    return source
