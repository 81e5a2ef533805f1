"""
Notification bridge - typed messages between this service and its producers.

Inbound:  provider-data-ready, payment-confirmed
Outbound: data-approval-result
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..util.logging import logger

PROVIDER_DATA_READY = "provider-data-ready"
PAYMENT_CONFIRMED = "payment-confirmed"
DATA_APPROVAL_RESULT = "data-approval-result"

Handler = Callable[[Dict[str, Any]], Any]


class NotificationBridge(ABC):
    """Abstract message bridge."""

    @abstractmethod
    def publish(self, message_type: str, body: Dict[str, Any]) -> None:
        """Send a message to the remote side."""
        ...

    @abstractmethod
    def subscribe(self, message_type: str, handler: Handler) -> None:
        """Route inbound messages of this type to `handler`. One handler per type."""
        ...

    @abstractmethod
    def dispatch(self, message_type: str, body: Dict[str, Any]) -> Optional[Any]:
        """Deliver an inbound message. Returns the handler result, None if unhandled."""
        ...


class InMemoryBridge(NotificationBridge):
    """
    Single-process bridge.

    Published messages are kept in `published` for inspection; dispatched
    messages go straight to the registered handler. Handler errors
    propagate to the dispatcher.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: Dict[str, Handler] = {}
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, message_type: str, body: Dict[str, Any]) -> None:
        with self._lock:
            self.published.append((message_type, dict(body)))
        logger.log_notification("outbound", message_type, details=body)

    def subscribe(self, message_type: str, handler: Handler) -> None:
        if not callable(handler):
            raise ValueError(f"Handler must be callable: {handler}")
        with self._lock:
            self._handlers[message_type] = handler
        logger.info(f"Registered bridge handler for: {message_type}")

    def dispatch(self, message_type: str, body: Dict[str, Any]) -> Optional[Any]:
        with self._lock:
            handler = self._handlers.get(message_type)

        if handler is None:
            logger.log_notification("inbound", message_type, "ignored", {"reason": "no handler"})
            return None

        logger.log_notification("inbound", message_type, "received", details=body)
        return handler(body)

    def messages(self, message_type: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [body for kind, body in self.published if kind == message_type]
