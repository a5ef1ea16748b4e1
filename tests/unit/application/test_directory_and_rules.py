"""Tests for AgentDirectory and RuleRepository caching."""

import asyncio

import pytest

from autoassign.application.services.agent_directory import AgentDirectory
from autoassign.application.services.retry import RetryPolicy
from autoassign.application.services.rule_repository import RuleRepository
from autoassign.application.services.workload_tracker import WorkloadTracker
from autoassign.domain.entities.rule import Escalate, Rule, RuleSet
from autoassign.domain.exceptions import SourceUnavailable
from autoassign.domain.value_objects.condition import Always
from conftest import NO_WAIT, FakeAgentSource, FakeRuleSource


@pytest.mark.asyncio
async def test_refresh_tracks_agents_and_overlays_workload(make_agent):
    source = FakeAgentSource([make_agent("B", current_workload=3), make_agent("A")])
    tracker = WorkloadTracker()
    directory = AgentDirectory(source, tracker, retry=NO_WAIT)

    assert directory.is_stale()
    assert await directory.refresh() == 2
    assert not directory.is_stale()
    assert [a.id for a in directory.snapshot()] == ["A", "B"]

    await tracker.reserve("A")
    assert directory.get("A").current_workload == 1
    assert directory.get("B").current_workload == 3
    assert directory.get("nobody") is None


@pytest.mark.asyncio
async def test_refresh_keeps_engine_counters_and_forgets_departed(make_agent):
    source = FakeAgentSource([make_agent("A"), make_agent("B")])
    tracker = WorkloadTracker()
    directory = AgentDirectory(source, tracker, retry=NO_WAIT)
    await directory.refresh()
    await tracker.reserve("A")

    source.agents = [make_agent("A", current_workload=0, max_capacity=4)]
    await directory.refresh()

    assert tracker.workload("A") == 1
    assert tracker.capacity("A") == 4
    assert not tracker.is_tracked("B")


@pytest.mark.asyncio
async def test_refresh_retries_then_raises(make_agent):
    source = FakeAgentSource([make_agent("A")], fail_times=2)
    directory = AgentDirectory(source, WorkloadTracker(), retry=NO_WAIT)
    assert await directory.refresh() == 1
    assert source.loads == 3

    source.fail_times = 10
    with pytest.raises(SourceUnavailable):
        await directory.refresh()


@pytest.mark.asyncio
async def test_ensure_fresh_respects_ttl(make_agent):
    source = FakeAgentSource([make_agent("A")])
    directory = AgentDirectory(source, WorkloadTracker(), retry=NO_WAIT, ttl_seconds=60)
    await directory.ensure_fresh()
    await directory.ensure_fresh()
    assert source.loads == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_reload(make_agent):
    class SlowSource(FakeAgentSource):
        async def load_agents(self):
            await asyncio.sleep(0.01)
            return await super().load_agents()

    source = SlowSource([make_agent("A")])
    directory = AgentDirectory(source, WorkloadTracker(), retry=NO_WAIT, ttl_seconds=60)

    await asyncio.gather(*(directory.ensure_fresh() for _ in range(20)))

    assert source.loads == 1
    # an explicit refresh always reloads
    await directory.refresh()
    assert source.loads == 2


@pytest.mark.asyncio
async def test_push_workload_is_best_effort(make_agent):
    class FailingPush(FakeAgentSource):
        async def push_workload(self, agent_id, workload):
            raise SourceUnavailable("read only")

    tracker = WorkloadTracker()
    directory = AgentDirectory(FailingPush([make_agent("A")]), tracker, retry=RetryPolicy(attempts=1))
    await directory.refresh()
    await directory.push_workload("A")  # does not raise


@pytest.mark.asyncio
async def test_rule_repository_caches_snapshot():
    rule = Rule(id="r", priority=1, condition=Always(), action=Escalate("x"))
    source = FakeRuleSource([rule], version="v7")
    repo = RuleRepository(source, retry=NO_WAIT, ttl_seconds=60)

    first = await repo.snapshot()
    source.rule_set = RuleSet(version="v8", rules=())
    assert (await repo.snapshot()) is first
    assert (await repo.refresh()).version == "v8"


@pytest.mark.asyncio
async def test_rule_repository_concurrent_snapshots_share_one_load():
    class SlowRules(FakeRuleSource):
        loads = 0

        async def load_rule_set(self):
            self.loads += 1
            await asyncio.sleep(0.01)
            return await super().load_rule_set()

    source = SlowRules(version="v3")
    repo = RuleRepository(source, retry=NO_WAIT, ttl_seconds=60)

    snapshots = await asyncio.gather(*(repo.snapshot() for _ in range(20)))

    assert source.loads == 1
    assert {s.version for s in snapshots} == {"v3"}
