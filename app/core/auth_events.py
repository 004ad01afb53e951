"""
Auth state-change channel.

Handlers subscribe to discrete auth transitions and get back a callable that
removes them again:

    unsubscribe = auth_events.subscribe(handler)
    ...
    unsubscribe()

Events are published synchronously from the request that caused them. A handler
that raises is logged and skipped; it never fails the request or starves the
other handlers.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Callable, List

logger = logging.getLogger(__name__)


class AuthEventType(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    WALLET_LINKED = "WALLET_LINKED"


@dataclass(frozen=True)
class AuthEvent:
    type: AuthEventType
    user_id: str
    wallet_address: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


AuthEventHandler = Callable[[AuthEvent], None]


class AuthEventBus:
    def __init__(self) -> None:
        self._handlers: List[AuthEventHandler] = []
        self._lock = Lock()

    def subscribe(self, handler: AuthEventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(handler)

        return unsubscribe

    def unsubscribe(self, handler: AuthEventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: AuthEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("auth event handler %r failed on %s", handler, event.type.value)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


def log_auth_event(event: AuthEvent) -> None:
    logger.info(
        "auth event %s user=%s wallet=%s", event.type.value, event.user_id, event.wallet_address
    )


auth_events = AuthEventBus()
