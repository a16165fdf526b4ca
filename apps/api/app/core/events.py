from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


LEAD_CREATED = "crm.lead.created"
LEAD_UPDATED = "crm.lead.updated"
LEAD_ASSIGNED = "crm.lead.assigned"
LEAD_DELETED = "crm.lead.deleted"


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
            handler(event)


event_bus = InProcessEventBus()
