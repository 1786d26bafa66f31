from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, List, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    pass


@dataclass(frozen=True)
class CatalogLoaded(Event):
    channels: int
    groups: int
    from_cache: bool = False


@dataclass(frozen=True)
class CatalogFailed(Event):
    message: str


@dataclass(frozen=True)
class CatalogEmpty(Event):
    pass


@dataclass(frozen=True)
class SourcesChanged(Event):
    kind: str  # "playlist" | "guide"


@dataclass(frozen=True)
class CacheCleared(Event):
    pass


Handler = Callable[[Event], None]


class Subscription:
    """Handle returned by EventStore.subscribe; call it (or leave the `with` block) to unsubscribe."""

    def __init__(self, store: "EventStore", event_type: Type[Event], handler: Handler):
        self._store = store
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._store._remove(self)
            self.active = False

    __call__ = unsubscribe

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class EventStore:
    def __init__(self):
        self._subs: List[Subscription] = []

    def subscribe(self, event_type: Type[Event], handler: Handler) -> Subscription:
        sub = Subscription(self, event_type, handler)
        self._subs.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        self._subs = [s for s in self._subs if s is not sub]

    def subscriber_count(self) -> int:
        return len(self._subs)

    def publish(self, event: Event) -> int:
        delivered = 0
        targets: Tuple[Subscription, ...] = tuple(self._subs)
        for sub in targets:
            if not sub.active or not isinstance(event, sub.event_type):
                continue
            try:
                sub.handler(event)
            except Exception:
                logger.exception("Subscriber for %s failed", type(event).__name__)
            delivered += 1
        return delivered
