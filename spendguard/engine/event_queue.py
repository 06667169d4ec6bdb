"""
Event Queue — ordered store of scheduled simulation events.

Pending events are kept sorted by (scheduled_time ascending, priority
descending); events with identical keys keep their insertion order.
Dispatching an event moves a processed copy into the history list, so an
event is always in exactly one of the two collections.

Unknown ids are reported through ``None`` / ``False`` returns, never
exceptions.
"""

from __future__ import annotations

import bisect
import logging
from typing import Iterable

from spendguard.domain.schema import EventSpec, SimulationEvent, new_id

logger = logging.getLogger(__name__)


def _order_key(event: SimulationEvent) -> tuple[int, int]:
    return (event.scheduled_time, -event.priority)


class EventQueue:
    """Priority-ordered queue of simulation events with processed history."""

    def __init__(self) -> None:
        self._pending: list[SimulationEvent] = []
        self._processed: list[SimulationEvent] = []

    def add_event(self, spec: EventSpec) -> str:
        """
        Schedule an event.

        Args:
            spec: Scheduled time, type, priority and payload of the event.

        Returns:
            The id assigned to the new event.
        """
        event = SimulationEvent(
            id=new_id("evt"),
            scheduled_time=spec.scheduled_time,
            type=spec.type,
            priority=spec.priority,
            payload=dict(spec.payload),
            processed=False,
        )
        bisect.insort_right(self._pending, event, key=_order_key)
        logger.debug(
            "Event scheduled: id=%s type=%s at=%d priority=%d",
            event.id, event.type.value, event.scheduled_time, event.priority,
        )
        return event.id

    def add_events(self, specs: Iterable[EventSpec]) -> list[str]:
        return [self.add_event(spec) for spec in specs]

    def get_next_event(self, current_time: int) -> SimulationEvent | None:
        """First pending event that is due at ``current_time``, if any."""
        if self._pending and self._pending[0].scheduled_time <= current_time:
            return self._pending[0]
        return None

    def get_all_ready_events(self, current_time: int) -> list[SimulationEvent]:
        """Every pending event due at ``current_time``, in dispatch order."""
        ready = []
        for event in self._pending:
            if event.scheduled_time > current_time:
                break
            ready.append(event)
        return ready

    def process_event(self, event_id: str) -> SimulationEvent | None:
        """
        Move an event from the pending set to the processed history.

        Returns:
            The processed copy, or None if the id is not pending (including
            a second call for the same id).
        """
        index = self._index_of(event_id)
        if index is None:
            return None
        event = self._pending.pop(index)
        processed = event.model_copy(update={"processed": True})
        self._processed.append(processed)
        return processed

    def remove_event(self, event_id: str) -> bool:
        index = self._index_of(event_id)
        if index is None:
            return False
        del self._pending[index]
        return True

    def get_pending_events(self) -> list[SimulationEvent]:
        return list(self._pending)

    def get_processed_events(self) -> list[SimulationEvent]:
        return list(self._processed)

    def get_event_by_id(self, event_id: str) -> SimulationEvent | None:
        """Look up an event in the pending set first, then in the history."""
        for event in self._pending:
            if event.id == event_id:
                return event
        for event in self._processed:
            if event.id == event_id:
                return event
        return None

    def clear(self) -> None:
        """Empty the queue for reuse."""
        self._pending.clear()
        self._processed.clear()

    def reset(self) -> None:
        """Full reset; same effect as ``clear``."""
        self.clear()

    def get_stats(self) -> dict[str, int]:
        return {"pending": len(self._pending), "processed": len(self._processed)}

    def __len__(self) -> int:
        return len(self._pending)

    # ── Internal ────────────────────────────────────────────────

    def _index_of(self, event_id: str) -> int | None:
        for index, event in enumerate(self._pending):
            if event.id == event_id:
                return index
        return None
