"""Admin-only endpoints for system monitoring."""

from fastapi import APIRouter

from healthqueue.dependencies import AdminPrincipal, QueueServiceDep
from healthqueue.schemas.queue import QueueOverviewResponse

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get(
    "/queues/overview",
    response_model=QueueOverviewResponse,
    summary="System-wide queue activity (admin only)",
)
async def get_queue_overview(
    admin: AdminPrincipal,
    service: QueueServiceDep,
) -> QueueOverviewResponse:
    """
    Get active and completed entries, waiting patients per doctor and
    connected realtime subscribers.

    Requires admin role.
    """
    return await service.get_overview()
