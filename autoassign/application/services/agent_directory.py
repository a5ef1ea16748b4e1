"""AgentDirectory: in-memory, periodically refreshed view of agents."""

from __future__ import annotations

import asyncio
import logging
import time

from autoassign.application.ports.agent_source import AgentSource
from autoassign.application.services.retry import RetryPolicy, with_backoff
from autoassign.application.services.workload_tracker import WorkloadTracker
from autoassign.domain.entities.agent import Agent
from autoassign.domain.exceptions import TransientError

logger = logging.getLogger(__name__)


class AgentDirectory:
    """Agent attributes come from the source; workload comes from the tracker.

    ``snapshot()`` returns an immutable tuple, so a decision keeps the view it
    started with even if a refresh lands halfway through.
    """

    def __init__(
        self,
        source: AgentSource,
        tracker: WorkloadTracker,
        retry: RetryPolicy | None = None,
        ttl_seconds: float = 30.0,
    ):
        self._source = source
        self._tracker = tracker
        self._retry = retry or RetryPolicy()
        self._ttl = ttl_seconds
        self._agents: dict[str, Agent] = {}
        self._loaded_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def tracker(self) -> WorkloadTracker:
        return self._tracker

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return time.monotonic() - self._loaded_at >= self._ttl

    async def refresh(self) -> int:
        """Reload agents from the source. Returns the number of agents.

        Raises:
            SourceUnavailable: once retries are exhausted.
        """
        async with self._refresh_lock:
            return await self._reload()

    async def ensure_fresh(self) -> None:
        """Reload only if stale. Concurrent callers share one reload."""
        if not self.is_stale():
            return
        async with self._refresh_lock:
            # another caller may have reloaded while this one waited
            if self.is_stale():
                await self._reload()

    async def _reload(self) -> int:
        agents = await with_backoff(
            self._source.load_agents, self._retry, operation="agent directory refresh"
        )
        fresh = {a.id: a for a in agents}
        for agent in agents:
            self._tracker.track(agent.id, agent.max_capacity, agent.current_workload)
        for gone in set(self._agents) - set(fresh):
            logger.info("Agent %s left the directory", gone)
            self._tracker.forget(gone)
        self._agents = fresh
        self._loaded_at = time.monotonic()
        logger.info("Agent directory refreshed: %d agents", len(fresh))
        return len(fresh)

    def get(self, agent_id: str) -> Agent | None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        return agent.with_workload(self._tracker.workload(agent_id))

    def snapshot(self) -> tuple[Agent, ...]:
        agents = self._agents
        return tuple(
            a.with_workload(self._tracker.workload(a.id))
            for a in sorted(agents.values(), key=lambda a: a.id)
        )

    async def push_workload(self, agent_id: str) -> None:
        """Best-effort report of the engine's counter back to the source."""
        workload = self._tracker.workload(agent_id)
        try:
            await with_backoff(
                lambda: self._source.push_workload(agent_id, workload),
                self._retry,
                operation=f"push workload for {agent_id}",
            )
        except TransientError:
            logger.warning("Could not push workload %d for agent %s", workload, agent_id)
