import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


logger = logging.getLogger("pricepilot.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                handler(event)
            except Exception as exc:
                # subscribers never undo a committed pricing change
                logger.exception("event_handler_failed", extra={"status": event_name, "error": str(exc)[:500]})


event_bus = InProcessEventBus()
