"""
In-process publish/subscribe hook for committed lead changes.

The pipeline publishes ``LeadsChanged`` after a commit; presentation layers
(the socket.io server, tests) subscribe without the pipeline knowing about
any transport.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeadsChanged:
    tenant_id: UUID
    reason: str = "sync"


Subscriber = Callable[[LeadsChanged], Optional[Awaitable[None]]]

_subscribers: List[Subscriber] = []


def subscribe(handler: Subscriber) -> Subscriber:
    if handler not in _subscribers:
        _subscribers.append(handler)
    return handler


def unsubscribe(handler: Subscriber) -> None:
    if handler in _subscribers:
        _subscribers.remove(handler)


async def publish(event: LeadsChanged) -> None:
    """Deliver to every subscriber; a failing subscriber is logged and skipped."""
    for handler in list(_subscribers):
        try:
            result = handler(event)
            if result is not None:
                await result
        except Exception as e:
            logger.warning(f"LeadsChanged subscriber {handler!r} failed: {e}")
