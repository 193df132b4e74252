# =============================================================================
# Message Channels
# =============================================================================
# Minimal channel contract used by the adapters for success/failure routing.
# QueueChannel is pollable (tests, CLI), DirectChannel hands the message to
# subscribers on the sender's thread.
# =============================================================================

import logging
import queue
from typing import Callable, List, Optional

from awsbridge.runtime.message import Message

logger = logging.getLogger(__name__)

MessageHandlerFunc = Callable[[Message], None]


class MessageChannel:
    """Anything that accepts messages."""

    name: str = ""

    def send(self, message: Message, timeout: Optional[float] = None) -> bool:
        raise NotImplementedError


class QueueChannel(MessageChannel):
    """Buffering channel; consumers poll with receive()."""

    def __init__(self, name: str = "queueChannel", capacity: int = 0):
        self.name = name
        self._queue: "queue.Queue[Message]" = queue.Queue(maxsize=capacity)

    def send(self, message: Message, timeout: Optional[float] = None) -> bool:
        try:
            self._queue.put(message, timeout=timeout)
            return True
        except queue.Full:
            logger.warning(f"Channel {self.name} is full, message {message.id} not sent")
            return False

    def receive(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next message, or None when nothing arrives within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def clear(self) -> List[Message]:
        """Drain and return everything currently buffered."""
        drained = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                return drained

    def __len__(self) -> int:
        return self._queue.qsize()


class DirectChannel(MessageChannel):
    """Invokes every subscriber synchronously on send()."""

    def __init__(self, name: str = "directChannel"):
        self.name = name
        self._subscribers: List[MessageHandlerFunc] = []

    def subscribe(self, handler: MessageHandlerFunc) -> None:
        self._subscribers.append(handler)

    def unsubscribe(self, handler: MessageHandlerFunc) -> None:
        self._subscribers.remove(handler)

    def send(self, message: Message, timeout: Optional[float] = None) -> bool:
        if not self._subscribers:
            logger.warning(f"Channel {self.name} has no subscribers, dropping message {message.id}")
            return False
        for handler in self._subscribers:
            handler(message)
        return True


class NullChannel(MessageChannel):
    """Accepts and discards."""

    name = "nullChannel"

    def send(self, message: Message, timeout: Optional[float] = None) -> bool:
        logger.debug(f"Discarding message {message.id}")
        return True
