"""
Cache Invalidation Hooks

Called by mutation handlers after the persistence write succeeds. Each hook
evicts every cached read the mutation can make stale: exact keys first,
then pattern families.

Principal eviction is security relevant (a demoted admin must not keep a
cached admin role), so it always runs first and a failure is logged at
error level. Everything else is best effort and self-heals via TTL.

Hooks never raise: an identifier that cannot form a key had nothing cached
under it, so its keys are skipped and the rest are still evicted.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, TypeVar, Union

import structlog

from ...constants import ANNOUNCEMENTS_DOMAIN, ATTENDANCE_DOMAIN, MARKS_DOMAIN
from ...domain.cache.principal import Role
from ...domain.cache.value_objects import CacheKey, KeyNamespaceError, KeyPattern
from .cache_service import CacheService

logger = structlog.get_logger(__name__)

K = TypeVar("K", CacheKey, KeyPattern)


@dataclass
class InvalidationReport:
    """What a hook evicted."""

    keys_deleted: List[str] = field(default_factory=list)
    keys_failed: List[str] = field(default_factory=list)
    pattern_deletions: int = 0
    principal_evicted: Optional[bool] = None

    @property
    def complete(self) -> bool:
        return not self.keys_failed and self.principal_evicted is not False


class CacheInvalidationService:
    """Targeted eviction for user, academic record and announcement mutations."""

    def __init__(self, cache: CacheService):
        self.cache = cache

    async def on_role_changed(self, user_id: str) -> InvalidationReport:
        report = await self._evict_principal(user_id, reason="role_changed")
        await self._evict_patterns(
            report,
            _build(KeyPattern.dashboard_stats_for, user_id),
            KeyPattern.dashboard_stats_for_role(Role.ADMIN.value),
        )
        return report

    async def on_counsellor_assigned(
        self,
        student_id: str,
        counsellor_id: str,
        previous_counsellor_id: Optional[str] = None,
    ) -> InvalidationReport:
        report = await self._evict_principal(student_id, reason="counsellor_assigned")

        affected = [student_id, counsellor_id]
        if previous_counsellor_id and previous_counsellor_id != counsellor_id:
            affected.append(previous_counsellor_id)

        await self._evict_patterns(
            report, *(_build(KeyPattern.dashboard_stats_for, uid) for uid in affected)
        )
        return report

    async def on_user_deleted(self, user_id: str) -> InvalidationReport:
        report = await self._evict_principal(user_id, reason="user_deleted")
        await self._evict_keys(
            report,
            _build(CacheKey.attendance, user_id),
            _build(CacheKey.marks, user_id),
        )
        await self._evict_patterns(
            report,
            _build(KeyPattern.qualified, ATTENDANCE_DOMAIN, user_id),
            _build(KeyPattern.qualified, MARKS_DOMAIN, user_id),
            _build(KeyPattern.dashboard_stats_for, user_id),
            KeyPattern.dashboard_stats_for_role(Role.ADMIN.value),
        )
        return report

    async def on_profile_updated(self, user_id: str) -> InvalidationReport:
        report = await self._evict_principal(user_id, reason="profile_updated")
        await self._evict_patterns(report, _build(KeyPattern.dashboard_stats_for, user_id))
        return report

    async def on_attendance_changed(self, student_id: str) -> InvalidationReport:
        report = InvalidationReport()
        await self._evict_keys(report, _build(CacheKey.attendance, student_id))
        await self._evict_patterns(
            report,
            _build(KeyPattern.qualified, ATTENDANCE_DOMAIN, student_id),
            _build(KeyPattern.dashboard_stats_for, student_id),
        )
        return report

    async def on_marks_changed(self, student_id: str) -> InvalidationReport:
        report = InvalidationReport()
        await self._evict_keys(report, _build(CacheKey.marks, student_id))
        await self._evict_patterns(
            report,
            _build(KeyPattern.qualified, MARKS_DOMAIN, student_id),
            _build(KeyPattern.dashboard_stats_for, student_id),
        )
        return report

    async def on_on_duty_request_changed(
        self, student_id: str, counsellor_id: Optional[str] = None
    ) -> InvalidationReport:
        report = InvalidationReport()
        patterns = [_build(KeyPattern.dashboard_stats_for, student_id)]
        if counsellor_id:
            patterns.append(_build(KeyPattern.dashboard_stats_for, counsellor_id))
        patterns.append(KeyPattern.dashboard_stats_for_role(Role.ADMIN.value))
        await self._evict_patterns(report, *patterns)
        return report

    async def on_announcements_changed(self) -> InvalidationReport:
        report = InvalidationReport()
        await self._evict_patterns(report, KeyPattern.domain_wide(ANNOUNCEMENTS_DOMAIN))
        return report

    async def _evict_principal(self, user_id: str, reason: str) -> InvalidationReport:
        report = InvalidationReport()
        key = _build(CacheKey.principal, user_id)
        if key is None:
            # Never cached: resolution loads such principals directly
            report.principal_evicted = True
            return report

        evicted = await self.cache.delete(key)
        report.principal_evicted = evicted

        if evicted:
            report.keys_deleted.append(key.value)
            logger.info("Principal evicted", user_id=user_id, reason=reason)
        else:
            report.keys_failed.append(key.value)
            logger.error(
                "Principal eviction failed, cached role may be stale until TTL",
                user_id=user_id,
                reason=reason,
                key=key.value,
            )
        return report

    async def _evict_keys(
        self, report: InvalidationReport, *keys: Optional[CacheKey]
    ) -> None:
        for key in keys:
            if key is None:
                continue
            if await self.cache.delete(key):
                report.keys_deleted.append(key.value)
            else:
                report.keys_failed.append(key.value)

    async def _evict_patterns(
        self, report: InvalidationReport, *patterns: Union[KeyPattern, str, None]
    ) -> None:
        for pattern in _unique(patterns):
            report.pattern_deletions += await self.cache.delete_by_pattern(pattern)


def _build(builder: Callable[..., K], *args: Any) -> Optional[K]:
    """Call a key builder, returning None for identifiers that cannot form a key."""
    try:
        return builder(*args)
    except KeyNamespaceError as e:
        logger.warning("Skipping uncacheable key", args=args, error=str(e))
        return None


def _unique(patterns: Sequence[Union[KeyPattern, str, None]]) -> List[KeyPattern]:
    seen = set()
    result = []
    for pattern in patterns:
        if pattern is None:
            continue
        key_pattern = KeyPattern.parse(pattern)
        if key_pattern.value not in seen:
            seen.add(key_pattern.value)
            result.append(key_pattern)
    return result
