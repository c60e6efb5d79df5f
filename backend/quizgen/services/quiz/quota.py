"""Role-based daily generation quotas.

A slot is reserved atomically on the quiz store before any AI call and
released if the generation does not complete, so the day's counter moves
exactly once per successful generation. Days roll over at local midnight.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from quizgen.core.config import settings
from quizgen.core.errors import NotFoundError, ValidationError
from quizgen.db.stores import QuizStore, UserStore
from quizgen.services.cache import Cache
from quizgen.services.quiz.schemas import User

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class QuotaManager:
    """Enforces and reports per-role daily generation ceilings."""

    def __init__(
        self,
        quiz_store: QuizStore,
        user_store: UserStore,
        cache: Cache,
        role_quotas: Optional[Dict[str, int]] = None,
        now: Callable[[], datetime] = _local_now,
    ):
        """Initialize the quota manager.

        Args:
            quiz_store: Store holding the per-day generation counters
            user_store: Store used to look up the user's role and status
            cache: Cache for usage figures and quota info
            role_quotas: Role to daily ceiling map (defaults to ROLE_DAILY_QUOTAS)
            now: Returns the current timezone-aware local time
        """
        self.quiz_store = quiz_store
        self.user_store = user_store
        self.cache = cache
        self.role_quotas = dict(role_quotas or settings.ROLE_DAILY_QUOTAS)
        self._now = now

    # ── Time helpers ──────────────────────────────────────

    def day_start(self) -> datetime:
        """Start of the current local day, used as the counter key."""
        return self._now().replace(hour=0, minute=0, second=0, microsecond=0)

    def reset_time(self) -> datetime:
        """Next local midnight."""
        return self.day_start() + timedelta(days=1)

    def ceiling_for(self, user: User) -> int:
        """Daily ceiling for the user's role.

        Unknown roles fall back to the DEFAULT_ROLE ceiling.

        Args:
            user: User whose role decides the ceiling

        Returns:
            Maximum generations allowed per day
        """
        default = self.role_quotas.get(settings.DEFAULT_ROLE, 0)
        return self.role_quotas.get(user.role, default)

    def _usage_key(self, user_id: str) -> str:
        return f"generation:count:{user_id}:{self.day_start().date().isoformat()}"

    def _info_key(self, user_id: str) -> str:
        return f"quota:info:{user_id}"

    # ── Reservation ───────────────────────────────────────

    async def _load_active_user(self, user_id: str) -> User:
        user = await self.user_store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User", context={"user_id": user_id})
        if not user.is_active:
            raise ValidationError(
                "User account is not active",
                code="USER_INACTIVE",
                context={"user_id": user_id, "status": user.status},
            )
        return user

    async def reserve(self, user_id: str) -> datetime:
        """Reserve one generation slot before any AI call.

        Args:
            user_id: User requesting the generation

        Returns:
            The day key to pass to ``release`` if the generation fails

        Raises:
            NotFoundError: If the user does not exist
            ValidationError: If the account is inactive (``USER_INACTIVE``) or
                the daily ceiling is already reached (``QUOTA_EXCEEDED``)
        """
        user = await self._load_active_user(user_id)
        ceiling = self.ceiling_for(user)
        since = self.day_start()

        reserved = await self.quiz_store.reserve_generation(user_id, since, ceiling)
        if not reserved:
            logger.warning("Daily quota exceeded for user=%s (limit %d)", user_id, ceiling)
            raise ValidationError(
                f"Daily generation quota exceeded ({ceiling} per day)",
                code="QUOTA_EXCEEDED",
                context={
                    "user_id": user_id,
                    "quota": ceiling,
                    "reset_time": self.reset_time().isoformat(),
                },
            )
        logger.debug("Reserved generation slot for user=%s", user_id)
        return since

    async def release(self, user_id: str, since: datetime) -> None:
        """Give back a slot taken by ``reserve``.

        Args:
            user_id: User whose slot is released
            since: Day key returned by ``reserve``
        """
        await self.quiz_store.release_generation(user_id, since)
        logger.debug("Released generation slot for user=%s", user_id)

    async def commit(self, user_id: str) -> None:
        """Keep the reserved slot after a successful generation.

        The counter already moved in ``reserve``; this only drops the cached
        usage figures so the next report re-reads them.

        Args:
            user_id: User whose generation completed
        """
        await self.cache.delete(self._usage_key(user_id))
        await self.cache.delete(self._info_key(user_id))

    # ── Reporting ─────────────────────────────────────────

    async def daily_usage(self, user_id: str) -> int:
        """Generations counted for the user today.

        Args:
            user_id: User identifier

        Returns:
            Today's count, served from cache when fresh
        """
        key = self._usage_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return int(cached)
        used = await self.quiz_store.count_generations_today(user_id, self.day_start())
        await self.cache.set(key, used, settings.QUOTA_USAGE_CACHE_TTL)
        return used

    async def get_quota_info(self, user_id: str) -> Dict[str, Any]:
        """Get the user's daily quota status.

        Args:
            user_id: User identifier

        Returns:
            Dict with ``daily`` (quota, used, remaining, reset_time) and
            ``percentage`` used

        Raises:
            NotFoundError: If the user does not exist
        """
        key = self._info_key(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        user = await self.user_store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User", context={"user_id": user_id})

        quota = self.ceiling_for(user)
        used = await self.daily_usage(user_id)
        info = {
            "daily": {
                "quota": quota,
                "used": used,
                "remaining": max(0, quota - used),
                "reset_time": self.reset_time().isoformat(),
            },
            "percentage": round(used / quota * 100) if quota else 100,
        }
        await self.cache.set(key, info, settings.QUOTA_INFO_CACHE_TTL)
        return info
