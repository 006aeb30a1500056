"""User lookups used to resolve principals and appointment parties."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinichub.config import settings
from clinichub.core.redis_client import CacheManager
from clinichub.models.users import users
from clinichub.schemas.users import UserInDB


class UserService:
    """Read-only access to users provisioned by the authentication service."""

    def __init__(self, db: AsyncSession, cache_manager: CacheManager | None = None):
        """Initialize service with database session and optional cache manager."""
        self.db = db
        self.cache = cache_manager

    @staticmethod
    def _get_user_cache_key(user_id: UUID) -> str:
        """Generate cache key for user."""
        return f"user:profile:{user_id}"

    async def get_user_by_id(self, user_id: UUID) -> UserInDB | None:
        """Get user by ID with caching."""
        if self.cache:
            cached_user = self.cache.get_json(self._get_user_cache_key(user_id))
            if cached_user:
                return UserInDB.model_validate(cached_user)

        query = select(users).where(users.c.id == user_id)
        result = await self.db.execute(query)
        user = result.mappings().first()

        if not user:
            return None

        user_dict = dict(user)

        if self.cache:
            self.cache.set_json(
                self._get_user_cache_key(user_id),
                user_dict,
                ttl=settings.user_cache_ttl_seconds,
            )

        return UserInDB.model_validate(user_dict)

