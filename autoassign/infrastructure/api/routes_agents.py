"""Agent directory endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from autoassign.application.use_cases.assign_ticket import AssignmentCoordinator
from autoassign.domain.exceptions import TransientError
from autoassign.infrastructure.api.dependencies import get_coordinator
from autoassign.infrastructure.api.schemas import AgentOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agents"])


@router.get("/agents")
async def list_agents(coordinator: AssignmentCoordinator = Depends(get_coordinator)):
    """Directory snapshot with the engine's live workload counters."""
    try:
        await coordinator.directory.ensure_fresh()
    except TransientError as e:
        raise HTTPException(status_code=503, detail=e.to_dict())
    agents = coordinator.directory.snapshot()
    return {
        "total": len(agents),
        "agents": [AgentOut.from_domain(a).model_dump() for a in agents],
    }


@router.post("/agents/{agent_id}/release")
async def release_capacity(
    agent_id: str,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """Free one unit of an agent's capacity."""
    if not coordinator.directory.tracker.is_tracked(agent_id):
        raise HTTPException(status_code=404, detail="Agent not found")
    workload = await coordinator.release_capacity(agent_id)
    return {"status": "ok", "agent_id": agent_id, "workload": workload}


@router.post("/directory/refresh")
async def refresh_directory(coordinator: AssignmentCoordinator = Depends(get_coordinator)):
    """Reload agents and rules from their sources now."""
    try:
        agents = await coordinator.directory.refresh()
        rule_set = await coordinator.rules.refresh()
    except TransientError as e:
        logger.error("Directory refresh failed: %s", e)
        raise HTTPException(status_code=503, detail=e.to_dict())
    return {
        "status": "ok",
        "agents": agents,
        "rule_set_version": rule_set.version,
        "rules": len(rule_set),
    }


@router.get("/agents/{agent_id}")
async def get_agent(
    agent_id: str,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """One agent with the engine's live workload counter."""
    try:
        await coordinator.directory.ensure_fresh()
    except TransientError as e:
        raise HTTPException(status_code=503, detail=e.to_dict())
    agent = coordinator.directory.get(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return AgentOut.from_domain(agent).model_dump()
