"""
Action Log — append-only record of every agent decision step.

The log is passed by reference to policies and to the engine, so two
simulations never share history unless the host wires them to the same
log. Entries are never read back for control decisions.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator

from spendguard.domain.schema import ActionKind, AgentAction, now_ms

logger = logging.getLogger(__name__)


class ActionLog:
    """Append-only sink of AgentAction records."""

    def __init__(self) -> None:
        self._entries: list[AgentAction] = []

    def append(
        self,
        agent_id: str,
        type: ActionKind,
        description: str,
        data: dict[str, Any] | None = None,
        timestamp: int | None = None,
    ) -> AgentAction:
        """Create and store a new action record."""
        action = AgentAction(
            agent_id=agent_id,
            type=type,
            description=description,
            data=data,
            timestamp=now_ms() if timestamp is None else timestamp,
        )
        self._entries.append(action)
        logger.debug("Action logged: agent=%s type=%s %s", agent_id, type.value, description)
        return action

    def entries(self) -> list[AgentAction]:
        return list(self._entries)

    def for_agent(self, agent_id: str) -> list[AgentAction]:
        return [entry for entry in self._entries if entry.agent_id == agent_id]

    def of_type(self, kind: ActionKind) -> list[AgentAction]:
        return [entry for entry in self._entries if entry.type == kind]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AgentAction]:
        return iter(list(self._entries))
