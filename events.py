"""Per-node event feed for value and notification updates."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from const import CC_USER_CODE

_LOGGER = logging.getLogger(__name__)

MASK = "****"
_SECRET_PROPERTIES = ("userCode", "code")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class NodeEvent:
    """A value or notification event reported for a node."""

    node_id: int
    event: str                  # value updated, notification, ...
    args: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def sanitize_args(args: dict[str, Any]) -> dict[str, Any]:
    """Copy event args, masking user code values."""
    clean = dict(args)
    secret = (
        clean.get("commandClass") == CC_USER_CODE
        or clean.get("property") in _SECRET_PROPERTIES
    )
    if secret:
        for key in ("newValue", "prevValue", "value"):
            if clean.get(key) not in (None, ""):
                clean[key] = MASK
    return clean


class Subscription:
    """Handle returned by EventFeed.subscribe."""

    def __init__(self, feed: EventFeed, node_id: int | None, callback: Callable):
        self._feed = feed
        self.node_id = node_id
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._feed._remove(self)


class EventFeed:
    """Delivers node events to subscribers in the order they are published."""

    def __init__(self, history: int = 200):
        self._subscriptions: list[Subscription] = []
        self._recent: deque[NodeEvent] = deque(maxlen=history)

    def subscribe(self, node_id: int | None, callback: Callable[[NodeEvent], None]) -> Subscription:
        """Subscribe to one node's events, or to all nodes with ``None``."""
        sub = Subscription(self, node_id, callback)
        self._subscriptions.append(sub)
        _LOGGER.debug("Event subscription added for node %s", node_id)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: NodeEvent) -> None:
        self._recent.append(event)
        for sub in list(self._subscriptions):
            if not sub.active:
                continue
            if sub.node_id is not None and sub.node_id != event.node_id:
                continue
            try:
                sub.callback(event)
            except Exception as e:
                _LOGGER.error("Error in event subscriber: %s", e)

    def recent(self, count: int = 50, node_id: int | None = None) -> list[dict]:
        """Get the most recent events, optionally for one node."""
        events = [
            e for e in self._recent
            if node_id is None or e.node_id == node_id
        ]
        return [e.to_dict() for e in events[-count:]] if count > 0 else []
