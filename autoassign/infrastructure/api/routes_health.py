"""Health check endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autoassign.adapters.persistence.database import get_session
from autoassign.application.use_cases.assign_ticket import AssignmentCoordinator
from autoassign.infrastructure.api.dependencies import get_coordinator

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_session),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    """Check API and database connectivity."""
    try:
        result = await session.execute(text("SELECT 1"))
        result.scalar()
        db_status = "connected"
    except (SQLAlchemyError, OSError) as e:
        db_status = f"error: {e}"

    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "database": db_status,
        "agents_tracked": len(coordinator.directory.tracker.snapshot()),
        "active_assignments": coordinator.ledger.active_count(),
        "service": "Auto-Assignment Engine",
    }
