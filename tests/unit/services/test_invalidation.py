"""
Unit tests for domain invalidation hooks.
"""

from unittest.mock import AsyncMock

import pytest

from acms.domain.cache.value_objects import CacheKey
from acms.services.cache.invalidation import CacheInvalidationService


@pytest.fixture
def invalidation(cache_service):
    return CacheInvalidationService(cache_service)


async def _seed(cache_service, *keys):
    for key in keys:
        await cache_service.set(key, {"cached": True}, ttl=600)


async def _present(cache_service, key) -> bool:
    return (await cache_service.lookup(key)).is_hit


class TestUserHooks:
    @pytest.mark.asyncio
    async def test_role_change_evicts_principal_and_dashboards(
        self, invalidation, cache_service
    ):
        evicted = [
            CacheKey.principal("u1"),
            CacheKey.dashboard_stats("u1", "student"),
            CacheKey.dashboard_stats("u1", "counsellor"),
            CacheKey.dashboard_stats("adm-1", "admin"),
        ]
        kept = [CacheKey.principal("u2"), CacheKey.dashboard_stats("u2", "student")]
        await _seed(cache_service, *evicted, *kept)

        report = await invalidation.on_role_changed("u1")

        assert report.complete
        assert report.principal_evicted is True
        assert report.pattern_deletions == 3
        for key in evicted:
            assert not await _present(cache_service, key)
        for key in kept:
            assert await _present(cache_service, key)

    @pytest.mark.asyncio
    async def test_counsellor_assignment_touches_all_parties(
        self, invalidation, cache_service
    ):
        keys = [
            CacheKey.principal("stu-1"),
            CacheKey.dashboard_stats("stu-1", "student"),
            CacheKey.dashboard_stats("cou-new", "counsellor"),
            CacheKey.dashboard_stats("cou-old", "counsellor"),
        ]
        await _seed(cache_service, *keys)

        await invalidation.on_counsellor_assigned("stu-1", "cou-new", "cou-old")

        for key in keys:
            assert not await _present(cache_service, key)

    @pytest.mark.asyncio
    async def test_user_deleted_evicts_everything_about_user(
        self, invalidation, cache_service
    ):
        evicted = [
            CacheKey.principal("stu-1"),
            CacheKey.attendance("stu-1"),
            CacheKey.attendance_by_subject("stu-1"),
            CacheKey.marks("stu-1"),
            CacheKey.marks_summary("stu-1"),
            CacheKey.dashboard_stats("stu-1", "student"),
        ]
        kept = [CacheKey.marks("stu-2"), CacheKey.marks_summary("stu-2")]
        await _seed(cache_service, *evicted, *kept)

        report = await invalidation.on_user_deleted("stu-1")

        assert report.complete
        for key in evicted:
            assert not await _present(cache_service, key)
        for key in kept:
            assert await _present(cache_service, key)

    @pytest.mark.asyncio
    async def test_profile_update(self, invalidation, cache_service):
        await _seed(cache_service, CacheKey.principal("u1"), CacheKey.dashboard_stats("u1", "student"))

        await invalidation.on_profile_updated("u1")

        assert not await _present(cache_service, CacheKey.principal("u1"))
        assert not await _present(cache_service, CacheKey.dashboard_stats("u1", "student"))

    @pytest.mark.asyncio
    async def test_principal_evicted_before_patterns(self):
        cache = AsyncMock()
        cache.delete = AsyncMock(return_value=True)
        cache.delete_by_pattern = AsyncMock(return_value=0)
        order = []
        cache.delete.side_effect = lambda key: order.append(("delete", str(key))) or True
        cache.delete_by_pattern.side_effect = (
            lambda pattern: order.append(("pattern", str(pattern))) or 0
        )

        await CacheInvalidationService(cache).on_role_changed("u1")

        assert order[0] == ("delete", "principal:u1")
        assert ("pattern", "dashboard:u1:*") in order

    @pytest.mark.asyncio
    async def test_failed_principal_eviction_is_reported(self, store, fake_redis):
        from acms.services.cache.cache_service import CacheService

        fake_redis.fail("delete")
        invalidation = CacheInvalidationService(CacheService(store))

        report = await invalidation.on_role_changed("u1")

        assert report.principal_evicted is False
        assert not report.complete
        assert report.keys_failed == ["principal:u1"]


class TestAcademicRecordHooks:
    @pytest.mark.asyncio
    async def test_attendance_change(self, invalidation, cache_service):
        evicted = [
            CacheKey.attendance("stu-1"),
            CacheKey.attendance_by_subject("stu-1"),
            CacheKey.dashboard_stats("stu-1", "student"),
        ]
        kept = [CacheKey.marks("stu-1"), CacheKey.principal("stu-1")]
        await _seed(cache_service, *evicted, *kept)

        report = await invalidation.on_attendance_changed("stu-1")

        assert report.principal_evicted is None
        for key in evicted:
            assert not await _present(cache_service, key)
        for key in kept:
            assert await _present(cache_service, key)

    @pytest.mark.asyncio
    async def test_marks_change(self, invalidation, cache_service):
        await _seed(
            cache_service,
            CacheKey.marks("stu-1"),
            CacheKey.marks_summary("stu-1"),
            CacheKey.attendance("stu-1"),
        )

        await invalidation.on_marks_changed("stu-1")

        assert not await _present(cache_service, CacheKey.marks("stu-1"))
        assert not await _present(cache_service, CacheKey.marks_summary("stu-1"))
        assert await _present(cache_service, CacheKey.attendance("stu-1"))

    @pytest.mark.asyncio
    async def test_on_duty_request_change(self, invalidation, cache_service):
        keys = [
            CacheKey.dashboard_stats("stu-1", "student"),
            CacheKey.dashboard_stats("cou-1", "counsellor"),
            CacheKey.dashboard_stats("adm-1", "admin"),
        ]
        await _seed(cache_service, *keys, CacheKey.dashboard_stats("cou-2", "counsellor"))

        report = await invalidation.on_on_duty_request_changed("stu-1", "cou-1")

        assert report.pattern_deletions == 3
        assert await _present(cache_service, CacheKey.dashboard_stats("cou-2", "counsellor"))

    @pytest.mark.asyncio
    async def test_announcements_change(self, invalidation, cache_service, fake_redis):
        await _seed(
            cache_service,
            CacheKey.announcements("all"),
            CacheKey.announcements("students"),
            CacheKey.principal("u1"),
        )
        await fake_redis.incr("rl:general:10.0.0.1")

        report = await invalidation.on_announcements_changed()

        assert report.pattern_deletions == 2
        assert await _present(cache_service, CacheKey.principal("u1"))
        assert "rl:general:10.0.0.1" in fake_redis.data

    @pytest.mark.asyncio
    async def test_hooks_fail_open(self, store, fake_redis):
        from acms.services.cache.cache_service import CacheService

        fake_redis.fail("*")
        invalidation = CacheInvalidationService(CacheService(store))

        report = await invalidation.on_marks_changed("stu-1")

        assert report.pattern_deletions == 0
        assert report.keys_failed == ["marks:stu-1"]


class TestUnusualIdentifiers:
    @pytest.mark.asyncio
    async def test_identifiers_with_unsafe_characters(self, invalidation, cache_service):
        evicted = [
            CacheKey.principal("stu 1"),
            CacheKey.attendance("stu 1"),
            CacheKey.marks("stu 1"),
            CacheKey.marks_summary("stu 1"),
            CacheKey.dashboard_stats("stu 1", "student"),
        ]
        kept = [CacheKey.principal("stu"), CacheKey.dashboard_stats("stu", "student")]
        await _seed(cache_service, *evicted, *kept)

        report = await invalidation.on_user_deleted("stu 1")

        assert report.complete
        assert "principal:stu%201" in report.keys_deleted
        for key in evicted:
            assert not await _present(cache_service, key)
        for key in kept:
            assert await _present(cache_service, key)

    @pytest.mark.asyncio
    async def test_glob_characters_in_identifier_match_literally(
        self, invalidation, cache_service
    ):
        others = [CacheKey.dashboard_stats("u1", "student"), CacheKey.marks("u1")]
        await _seed(cache_service, *others)

        await invalidation.on_marks_changed("*")
        await invalidation.on_role_changed("u?")

        for key in others:
            assert await _present(cache_service, key)

    @pytest.mark.asyncio
    async def test_identifier_too_long_for_a_key_does_not_raise(
        self, invalidation, cache_service
    ):
        long_id = "u" * 300
        admin_stats = CacheKey.dashboard_stats("adm-1", "admin")
        counsellor_stats = CacheKey.dashboard_stats("cou-1", "counsellor")
        await _seed(cache_service, admin_stats, counsellor_stats)

        deleted = await invalidation.on_user_deleted(long_id)
        assigned = await invalidation.on_counsellor_assigned(long_id, "cou-1")

        assert deleted.complete and assigned.complete
        assert deleted.principal_evicted is True
        assert not await _present(cache_service, admin_stats)
        assert not await _present(cache_service, counsellor_stats)
