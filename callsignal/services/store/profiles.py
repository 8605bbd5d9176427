"""Profile lookup with a bounded, TTL-checked cache."""
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callsignal.core.errors import ProfileNotFoundError
from callsignal.db.models import Profile
from callsignal.services.cache import BoundedCache
from callsignal.services.calls.models import CallerProfile

logger = logging.getLogger(__name__)


class ProfileRepository:
    """Resolves display profiles, caching hits per instance."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Optional[BoundedCache[CallerProfile]] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache if cache is not None else BoundedCache()

    async def get_profile(self, user_id: str) -> CallerProfile:
        """
        Get a user's display profile.

        Raises:
            ProfileNotFoundError: no profile row exists for ``user_id``.
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        async with self.session_factory() as db:
            row = await db.get(Profile, user_id)
            if row is None:
                raise ProfileNotFoundError(f"No profile for user {user_id}")
            profile = CallerProfile.model_validate(row)

        self.cache.set(user_id, profile)
        return profile

    async def upsert_profile(
        self,
        user_id: str,
        full_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        is_online: bool = False,
    ) -> CallerProfile:
        """Create or replace a profile."""
        async with self.session_factory() as db:
            row = await db.get(Profile, user_id)
            if row is None:
                row = Profile(user_id=user_id)
                db.add(row)
            row.full_name = full_name
            row.avatar_url = avatar_url
            row.is_online = is_online
            await db.commit()
            await db.refresh(row)
            profile = CallerProfile.model_validate(row)

        self.cache.set(user_id, profile)
        logger.debug(f"[PROFILES] Upserted profile {user_id}")
        return profile
