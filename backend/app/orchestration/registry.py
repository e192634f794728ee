"""Agent registry - routes a classified task to exactly one agent."""

import logging

from backend.app.agents.base import Agent
from backend.app.models.common import TaskType

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Agents registered at startup, in registration order.

    Routing picks the lowest priority among chat-enabled agents that support
    the task; ties go to whichever registered first. There is no fallback to
    a second agent.
    """

    def __init__(self, agents: list[Agent] | None = None) -> None:
        self._agents: list[Agent] = []
        for agent in agents or []:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        if self.get(agent.name) is not None:
            raise ValueError(f"agent {agent.name!r} is already registered")
        self._agents.append(agent)
        logger.debug(f"Registered agent {agent.name} ({agent.capabilities().priority})")

    def get(self, name: str) -> Agent | None:
        return next((a for a in self._agents if a.name == name), None)

    def agents(self) -> list[Agent]:
        return list(self._agents)

    def route(self, task: TaskType) -> Agent | None:
        """Best agent for `task`, or None when nobody handles it."""
        best: Agent | None = None
        for agent in self._agents:
            caps = agent.capabilities()
            if not caps.chat_enabled or not agent.supports(task):
                continue
            # Strict comparison keeps the earlier registration on ties
            if best is None or caps.priority < best.capabilities().priority:
                best = agent
        return best
