"""FastAPI dependencies."""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from healthqueue.core.exceptions import ForbiddenException
from healthqueue.core.notification_hub import NotificationHub
from healthqueue.core.queue_locks import DoctorQueueLocks
from healthqueue.core.redis_client import CacheManager, get_redis_client
from healthqueue.core.security import authenticate_token
from healthqueue.database import get_db
from healthqueue.schemas.auth import Principal, UserRole
from healthqueue.services.doctor_service import DoctorService
from healthqueue.services.queue_service import QueueService

# Security
security = HTTPBearer(auto_error=False)


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Principal:
    """
    Extract and validate the caller from the JWT bearer token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Authenticated principal

    Raises:
        UnauthorizedException: If the token is missing, invalid or expired
    """
    return authenticate_token(credentials.credentials if credentials else None)


def require_roles(*roles: UserRole) -> Callable:
    """
    Build a dependency that admits only principals holding one of the roles.

    Args:
        roles: Accepted roles

    Returns:
        Dependency returning the principal
    """

    async def checker(
        principal: Annotated[Principal, Depends(get_current_principal)],
    ) -> Principal:
        if not any(principal.has_role(role) for role in roles):
            raise ForbiddenException(
                f"Requires role: {', '.join(role.value for role in roles)}"
            )
        return principal

    return checker


def get_cache_manager() -> CacheManager:
    """Get cache manager backed by the shared Redis client."""
    return CacheManager(get_redis_client())


def get_hub(request: Request) -> NotificationHub:
    """Get the application's notification hub."""
    return request.app.state.hub


def get_queue_locks(request: Request) -> DoctorQueueLocks:
    """Get the application's per-doctor lock registry."""
    return request.app.state.queue_locks


def get_doctor_service(
    cache_manager: Annotated[CacheManager | None, Depends(get_cache_manager)],
) -> DoctorService:
    """Get doctor service instance."""
    return DoctorService(cache_manager=cache_manager)


def get_queue_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    hub: Annotated[NotificationHub, Depends(get_hub)],
    locks: Annotated[DoctorQueueLocks, Depends(get_queue_locks)],
    doctor_service: Annotated[DoctorService, Depends(get_doctor_service)],
) -> QueueService:
    """Get queue service bound to the request's session."""
    return QueueService(db, hub=hub, locks=locks, doctor_service=doctor_service)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
CacheManagerDep = Annotated[CacheManager | None, Depends(get_cache_manager)]
QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
AdminPrincipal = Annotated[Principal, Depends(require_roles(UserRole.ADMIN))]
