"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinichub.config import settings
from clinichub.core.exceptions import Forbidden, RateLimitExceeded, Unauthorized
from clinichub.core.permissions import Principal
from clinichub.core.redis_client import (
    CacheManager,
    RateLimiter,
    get_async_redis_client,
    get_redis_client,
)
from clinichub.core.security import decode_access_token
from clinichub.database import get_db
from clinichub.services.appointment_repository import AppointmentRepository
from clinichub.services.appointment_service import AppointmentService
from clinichub.services.audit_service import AuditService, RequestContext
from clinichub.services.email_service import EmailSender
from clinichub.services.notification_service import (
    EmailChannel,
    NotificationFanout,
    RedisLiveChannel,
)
from clinichub.services.user_service import UserService

# Security
security = HTTPBearer(auto_error=False)


def get_cache_manager() -> CacheManager | None:
    """Redis-backed cache for user profiles."""
    return CacheManager(get_redis_client())


def get_rate_limiter() -> RateLimiter | None:
    """Redis-backed rate limiter."""
    return RateLimiter(get_redis_client())


async def get_user_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager | None, Depends(get_cache_manager)],
) -> UserService:
    """User lookups bound to the request's session."""
    return UserService(db, cache)


def principal_from_token(token: str | None) -> UUID:
    """
    Extract the user ID from a bearer token.

    Raises:
        Unauthorized: If the token is missing, invalid or expired
    """
    if not token:
        raise Unauthorized("Could not validate credentials")

    payload = decode_access_token(token)
    if payload is None:
        raise Unauthorized("Could not validate credentials")

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise Unauthorized("Could not validate credentials")

    try:
        return UUID(user_id_str)
    except ValueError:
        raise Unauthorized("Invalid user ID format")


async def resolve_principal(user_id: UUID, users: UserService) -> Principal:
    """
    Load the user behind a token and turn it into a principal.

    Raises:
        Unauthorized: If the user does not exist
        Forbidden: If the account is deactivated
    """
    user = await users.get_user_by_id(user_id)

    if not user:
        raise Unauthorized("User not found")

    if not user.is_active:
        raise Forbidden("User account is deactivated")

    return Principal(id=user.id, role=user.role)


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    users: Annotated[UserService, Depends(get_user_service)],
) -> Principal:
    """Authenticated principal of the current request."""
    user_id = principal_from_token(credentials.credentials if credentials else None)
    return await resolve_principal(user_id, users)


def get_notifier() -> NotificationFanout:
    """Fan-out over the Redis live channel and the email channel."""
    return NotificationFanout(
        live=RedisLiveChannel(get_async_redis_client()),
        deferred=EmailChannel(EmailSender()),
    )


async def get_audit_trail(db: Annotated[AsyncSession, Depends(get_db)]) -> AuditService:
    """Audit trail bound to the request's session."""
    return AuditService(db)


async def get_appointment_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AppointmentRepository:
    """Appointment persistence bound to the request's session."""
    return AppointmentRepository(db)


async def get_appointment_service(
    repository: Annotated[AppointmentRepository, Depends(get_appointment_repository)],
    users: Annotated[UserService, Depends(get_user_service)],
    notifier: Annotated[NotificationFanout, Depends(get_notifier)],
    audit: Annotated[AuditService, Depends(get_audit_trail)],
) -> AppointmentService:
    """Appointment service wired with its collaborators."""
    return AppointmentService(repository, users, notifier, audit)


def get_request_context(request: Request) -> RequestContext:
    """Client address and user agent for the audit trail."""
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def enforce_booking_rate_limit(
    principal: Annotated[Principal, Depends(get_current_principal)],
    limiter: Annotated[RateLimiter | None, Depends(get_rate_limiter)],
) -> None:
    """
    Limit appointment creation per principal.

    Raises:
        RateLimitExceeded: If the principal exceeded the per-minute limit
    """
    if limiter is None:
        return
    key = f"rate_limit:appointments:create:{principal.id}"
    if not limiter.check_rate_limit(key, settings.rate_limit_per_minute, window=60):
        raise RateLimitExceeded("Too many booking attempts, please try again later")


# Type aliases for dependency injection
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
ClientContext = Annotated[RequestContext, Depends(get_request_context)]
