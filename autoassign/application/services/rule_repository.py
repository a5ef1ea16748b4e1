"""RuleRepository: caches the external rule set and hands out snapshots."""

from __future__ import annotations

import asyncio
import logging
import time

from autoassign.application.ports.rule_source import RuleSource
from autoassign.application.services.retry import RetryPolicy, with_backoff
from autoassign.domain.entities.rule import EMPTY_RULE_SET, RuleSet

logger = logging.getLogger(__name__)


class RuleRepository:
    def __init__(
        self,
        source: RuleSource,
        retry: RetryPolicy | None = None,
        ttl_seconds: float = 30.0,
    ):
        self._source = source
        self._retry = retry or RetryPolicy()
        self._ttl = ttl_seconds
        self._current: RuleSet = EMPTY_RULE_SET
        self._loaded_at: float | None = None
        self._lock = asyncio.Lock()

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return time.monotonic() - self._loaded_at >= self._ttl

    async def refresh(self) -> RuleSet:
        async with self._lock:
            return await self._reload()

    async def snapshot(self) -> RuleSet:
        """Current rule set, refreshed first if the cached copy is stale."""
        if not self.is_stale():
            return self._current
        async with self._lock:
            if self.is_stale():
                return await self._reload()
            return self._current

    async def _reload(self) -> RuleSet:
        rule_set = await with_backoff(
            self._source.load_rule_set, self._retry, operation="rule set refresh"
        )
        if rule_set.version != self._current.version:
            logger.info(
                "Rule set %s loaded (%d rules, %d active)",
                rule_set.version, len(rule_set), len(rule_set.active_rules()),
            )
        self._current = rule_set
        self._loaded_at = time.monotonic()
        return rule_set
