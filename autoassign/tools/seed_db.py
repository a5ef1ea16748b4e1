"""Seed database from an agents CSV and a rules JSON file.

Usage:
    python -m autoassign.tools.seed_db
    python -m autoassign.tools.seed_db --data-dir data
    python -m autoassign.tools.seed_db --drop  # drop existing agents and rules first
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from autoassign.adapters.persistence.database import async_session_factory
from autoassign.adapters.persistence.models import AgentModel, RoutingRuleModel
from autoassign.adapters.seed_loader.loader import load_agents, load_rules
from autoassign.config import settings
from autoassign.domain.entities.rule import action_to_dict
from autoassign.domain.value_objects.condition import condition_to_dict

logger = logging.getLogger(__name__)


async def _drop_data(session: AsyncSession) -> None:
    for model in [RoutingRuleModel, AgentModel]:
        await session.execute(delete(model))
    await session.commit()
    logger.info("Dropped existing agents and rules")


async def seed(data_dir: Path, drop: bool = False) -> dict[str, int]:
    """Main seed function. Returns counts of seeded records.

    Existing rows are updated in place, so re-running the tool after editing
    the files is safe.
    """
    counts = {"agents": 0, "rules": 0}

    agents_file = _find_file(data_dir, "*.csv", ["agents", "agent", "staff"])
    rules_file = _find_file(data_dir, "*.json", ["rules", "routing"])
    if not agents_file:
        raise FileNotFoundError(f"No agents CSV found in {data_dir}. Expected something like agents.csv")

    async with async_session_factory() as session:
        if drop:
            await _drop_data(session)

        # 1. Agents
        for agent in load_agents(agents_file):
            existing = (
                await session.execute(select(AgentModel).where(AgentModel.id == agent.id))
            ).scalar_one_or_none()
            row = existing or AgentModel(id=agent.id)
            row.name = agent.name
            row.skills = sorted(agent.skills)
            row.groups = sorted(agent.groups)
            # keep the workload from the file, otherwise capacity looks wrong on first decisions
            row.current_workload = agent.current_workload
            row.max_capacity = agent.max_capacity
            row.available = agent.available
            row.timezone = agent.timezone
            row.schedule = [w.render() for w in agent.schedule]
            row.historical_success = agent.historical_success
            row.response_time = agent.response_time
            if existing is None:
                session.add(row)
            counts["agents"] += 1
        await session.commit()

        # 2. Rules (optional)
        if rules_file:
            rule_set = load_rules(rules_file)
            for rule in rule_set.rules:
                existing = (
                    await session.execute(select(RoutingRuleModel).where(RoutingRuleModel.id == rule.id))
                ).scalar_one_or_none()
                row = existing or RoutingRuleModel(id=rule.id)
                row.priority = rule.priority
                row.condition = condition_to_dict(rule.condition)
                row.action = action_to_dict(rule.action)
                row.active = rule.active
                row.description = rule.description
                if existing is None:
                    session.add(row)
                counts["rules"] += 1
            await session.commit()
            logger.info("Rule set %s seeded", rule_set.version)
        else:
            logger.info("No rules JSON found, every ticket will be scored")

    logger.info("Seed complete: %d agents, %d rules", counts["agents"], counts["rules"])
    return counts


def _find_file(data_dir: Path, pattern: str, name_hints: list[str]) -> Path | None:
    """Find a file matching any of the name hints."""
    for f in sorted(data_dir.glob(pattern)):
        stem = f.stem.lower()
        for hint in name_hints:
            if hint in stem:
                logger.info("Found %s (matched hint '%s')", f.name, hint)
                return f
    return None


async def _verify_data() -> None:
    """Print sanity checks after seeding."""
    async with async_session_factory() as session:
        agents = (await session.execute(select(AgentModel))).scalars().all()
        rules = (await session.execute(select(RoutingRuleModel))).scalars().all()

        print(f"\n{'='*50}")
        print("SEED VERIFICATION")
        print(f"{'='*50}")
        print(f"Agents: {len(agents)}")
        print(f"Rules:  {len(rules)} ({sum(1 for r in rules if r.active)} active)")

        with_skills = sum(1 for a in agents if a.skills)
        print(f"Agents with skills: {with_skills}/{len(agents)}")
        full = [a.id for a in agents if a.current_workload >= a.max_capacity]
        print(f"Agents at capacity: {full}")

        groups: dict[str, int] = {}
        for a in agents:
            for g in a.groups or ():
                groups[g] = groups.get(g, 0) + 1
        print(f"Group membership: {groups}")
        print(f"{'='*50}\n")


def main():
    parser = argparse.ArgumentParser(description="Seed the assignment engine database")
    parser.add_argument(
        "--data-dir", type=str, default=settings.seed_data_path,
        help=f"Directory containing agents.csv and rules.json (default: {settings.seed_data_path})",
    )
    parser.add_argument(
        "--drop", action="store_true",
        help="Drop existing agents and rules before seeding",
    )
    parser.add_argument(
        "--verify-only", action="store_true",
        help="Only run verification, don't seed",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s | %(message)s")

    data_dir = Path(args.data_dir)
    if not args.verify_only and not data_dir.exists():
        logger.error("Data directory not found: %s", data_dir)
        sys.exit(1)

    if args.verify_only:
        asyncio.run(_verify_data())
    else:
        async def run_all():
            await seed(data_dir, drop=args.drop)
            await _verify_data()
        asyncio.run(run_all())


if __name__ == "__main__":
    main()
