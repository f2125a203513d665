"""
Tests for stored key management: adding, rotation, primary flags and analytics.
"""

from datetime import datetime, timedelta, timezone

import pytest

from offer_analyst.byok import (
    AlertSeverity,
    ApiKeyManager,
    SecurityAlert,
    UsageLogEntry,
    order_candidates,
)
from offer_analyst.exceptions import ConfigurationError, InvalidProviderError, KeyNotFoundError

from fakes import (
    NOW,
    FakeAlertStore,
    FakeCipher,
    FakeKeyStore,
    failed_entries,
    make_key,
    usage_entries,
)


def make_manager(store=None, with_alerts=True):
    store = store if store is not None else FakeKeyStore()
    alerts = FakeAlertStore(store) if with_alerts else None
    return ApiKeyManager(store, FakeCipher(), clock=lambda: NOW, alert_store=alerts), store


class TestAddKey:
    """Tests for ApiKeyManager.add_key."""

    @pytest.mark.asyncio
    async def test_add_key_encrypts_and_previews(self):
        manager, store = make_manager()

        key = await manager.add_key("user-1", "Work", "OpenAI", "sk-secret-9876")

        assert key.provider == "openai"
        assert key.key_encrypted == "enc:sk-secret-9876"
        assert key.key_preview == "9876"
        assert key.created_at == NOW
        assert store.keys[key.id] is key

    @pytest.mark.asyncio
    async def test_gemini_alias_stored_as_google(self):
        manager, _ = make_manager()
        key = await manager.add_key("user-1", "", "gemini", "AIza-key-1234")
        assert key.provider == "google"
        assert key.name == "google key"

    @pytest.mark.asyncio
    async def test_unknown_provider_rejected(self):
        manager, _ = make_manager()
        with pytest.raises(InvalidProviderError):
            await manager.add_key("user-1", "x", "cohere", "key")

    @pytest.mark.asyncio
    async def test_empty_key_rejected(self):
        manager, _ = make_manager()
        with pytest.raises(ValueError):
            await manager.add_key("user-1", "x", "openai", "   ")

    @pytest.mark.asyncio
    async def test_non_positive_rate_limit_rejected(self):
        manager, _ = make_manager()
        with pytest.raises(ValueError):
            await manager.add_key("user-1", "x", "openai", "sk-1", rate_limit=0)

    @pytest.mark.asyncio
    async def test_new_primary_clears_previous(self):
        old = make_key("old", is_primary=True)
        manager, store = make_manager(FakeKeyStore([old]))

        new = await manager.add_key("user-1", "New", "openai", "sk-new-key", is_primary=True)

        assert new.is_primary is True
        assert store.keys["old"].is_primary is False

    @pytest.mark.asyncio
    async def test_aware_expiry_normalized_to_utc(self):
        manager, _ = make_manager()
        expires = datetime(2024, 7, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        key = await manager.add_key("user-1", "x", "openai", "sk-1", expires_at=expires)

        assert key.expires_at == datetime(2024, 7, 1, 12, 0)


class TestKeyLookup:
    @pytest.mark.asyncio
    async def test_get_key_not_found(self):
        manager, _ = make_manager(FakeKeyStore([make_key("a", user_id="user-2")]))
        with pytest.raises(KeyNotFoundError):
            await manager.get_key("user-1", "a")

    @pytest.mark.asyncio
    async def test_delete_key(self):
        manager, store = make_manager(FakeKeyStore([make_key("a")]))
        assert await manager.delete_key("user-1", "a") is True
        assert await manager.delete_key("user-1", "a") is False
        assert store.keys == {}


class TestRotation:
    """Tests for key rotation."""

    @pytest.mark.asyncio
    async def test_rotate_keeps_old_key_deprecated(self):
        old = make_key("old", priority=4, is_primary=True, rate_limit=30)
        manager, store = make_manager(FakeKeyStore([old]))

        result = await manager.rotate_key("user-1", "old", "sk-rotated-5555")

        new = result.new_key
        assert new.name == "old (Rotated)"
        assert new.key_encrypted == "enc:sk-rotated-5555"
        assert new.priority == 4
        assert new.rate_limit == 30
        assert new.is_primary is True
        assert store.keys[new.id].is_primary is True

        deprecated = store.keys["old"]
        assert deprecated.is_active is False
        assert deprecated.is_primary is False
        assert deprecated.priority == 0
        assert deprecated.name == "old (Deprecated)"
        assert result.old_key_deleted is False
        assert "deprecated" in result.message

    @pytest.mark.asyncio
    async def test_rotate_and_delete_old(self):
        manager, store = make_manager(FakeKeyStore([make_key("old")]))

        result = await manager.rotate_key("user-1", "old", "sk-rotated-5555", delete_old=True)

        assert "old" not in store.keys
        assert result.old_key_deleted is True
        assert result.new_key.is_primary is False

    @pytest.mark.asyncio
    async def test_rotated_primary_key_stays_primary(self):
        store = FakeKeyStore([
            make_key("old", is_primary=True),
            make_key("spare", age_minutes=5),
        ])
        manager, _ = make_manager(store)

        for delete_old in (False, True):
            current = next(k for k in store.keys.values() if k.is_primary)
            result = await manager.rotate_key("user-1", current.id, "sk-next-1234", delete_old=delete_old)

            primaries = [k.id for k in store.keys.values() if k.is_primary]
            assert primaries == [result.new_key.id]
            assert result.new_key.is_primary is True

        ordered = order_candidates(await store.find_eligible_keys("user-1", "openai", NOW))
        assert ordered[0].is_primary is True

    @pytest.mark.asyncio
    async def test_rotate_missing_key(self):
        manager, _ = make_manager()
        with pytest.raises(KeyNotFoundError):
            await manager.rotate_key("user-1", "missing", "sk-new")


class TestPrimaryAndPriority:
    @pytest.mark.asyncio
    async def test_set_primary_is_exclusive_per_provider(self):
        store = FakeKeyStore([
            make_key("a", is_primary=True),
            make_key("b"),
            make_key("c", provider="anthropic", is_primary=True),
        ])
        manager, _ = make_manager(store)

        await manager.set_primary("user-1", "b")

        assert store.keys["a"].is_primary is False
        assert store.keys["b"].is_primary is True
        assert store.keys["c"].is_primary is True

    @pytest.mark.asyncio
    async def test_update_priority(self):
        manager, store = make_manager(FakeKeyStore([make_key("a")]))
        assert await manager.update_priority("user-1", "a", 8) is True
        assert store.keys["a"].priority == 8
        assert await manager.update_priority("user-1", "missing", 8) is False


class TestRotationReminders:
    @pytest.mark.asyncio
    async def test_keys_needing_rotation(self):
        store = FakeKeyStore([
            make_key("ancient", age_minutes=120 * 24 * 60),
            make_key("fresh", age_minutes=10 * 24 * 60),
            make_key("ancient-off", age_minutes=200 * 24 * 60, is_active=False),
        ])
        manager, _ = make_manager(store)

        due = await manager.keys_needing_rotation("user-1", max_age_days=90)

        assert [(key.id, days) for key, days in due] == [("ancient", 120)]


class TestStatsAndAnalytics:
    """Tests for usage statistics."""

    @pytest.mark.asyncio
    async def test_stats(self):
        store = FakeKeyStore([make_key("a", usage_count=3), make_key("b", usage_count=4)])
        manager, _ = make_manager(store)

        stats = await manager.get_stats("user-1")

        assert stats.to_dict() == {"total_keys": 2, "total_requests": 7, "byok_active": True}

    @pytest.mark.asyncio
    async def test_stats_without_keys(self):
        manager, _ = make_manager()
        stats = await manager.get_stats("user-1")
        assert stats.byok_active is False

    @pytest.mark.asyncio
    async def test_analytics_aggregates(self):
        store = FakeKeyStore([make_key("a"), make_key("b", provider="anthropic")])
        store.usage.extend([
            UsageLogEntry(key_id="a", timestamp=NOW - timedelta(hours=3), provider="openai",
                          action="chat", response_time_ms=100, tokens_used=50),
            UsageLogEntry(key_id="a", timestamp=NOW - timedelta(hours=2), provider="openai",
                          action="chat", response_time_ms=201, tokens_used=25),
            UsageLogEntry(key_id="b", timestamp=NOW - timedelta(hours=1), provider="anthropic",
                          action="summary", success=False),
            UsageLogEntry(key_id="a", timestamp=NOW - timedelta(days=45), provider="openai"),
        ])
        manager, _ = make_manager(store)

        analytics = await manager.get_usage_analytics("user-1")

        assert analytics.total_requests == 3
        assert analytics.success_rate == 66.7
        assert analytics.avg_response_time_ms == 150
        assert analytics.total_tokens == 75
        assert analytics.requests_by_provider == {"openai": 2, "anthropic": 1}
        assert analytics.requests_by_action == {"chat": 2, "summary": 1}
        assert [e.key_id for e in analytics.recent_activity] == ["b", "a", "a"]

    @pytest.mark.asyncio
    async def test_analytics_for_one_key(self):
        store = FakeKeyStore([make_key("a"), make_key("b")])
        store.usage.extend([
            UsageLogEntry(key_id="a", timestamp=NOW - timedelta(hours=1)),
            UsageLogEntry(key_id="b", timestamp=NOW - timedelta(hours=1)),
        ])
        manager, _ = make_manager(store)

        analytics = await manager.get_usage_analytics("user-1", key_id="b")

        assert analytics.total_requests == 1
        assert analytics.success_rate == 100.0

    @pytest.mark.asyncio
    async def test_analytics_empty(self):
        manager, _ = make_manager()
        analytics = await manager.get_usage_analytics("user-1")
        assert analytics.to_dict()["total_requests"] == 0
        assert analytics.recent_activity == []

    @pytest.mark.asyncio
    async def test_timeline_buckets_by_day(self):
        store = FakeKeyStore([make_key("a")])
        store.usage.extend([
            UsageLogEntry(key_id="a", timestamp=datetime(2024, 5, 30, 9, 0)),
            UsageLogEntry(key_id="a", timestamp=datetime(2024, 5, 30, 18, 0), success=False),
            UsageLogEntry(key_id="a", timestamp=datetime(2024, 6, 1, 8, 0)),
        ])
        manager, _ = make_manager(store)

        timeline = await manager.get_usage_timeline("user-1", days=7)

        assert timeline == [
            {"date": "2024-05-30", "requests": 2, "successful_requests": 1, "failed_requests": 1},
            {"date": "2024-06-01", "requests": 1, "successful_requests": 1, "failed_requests": 0},
        ]


class TestRotationHistory:
    @pytest.mark.asyncio
    async def test_history_includes_deprecated_keys(self):
        store = FakeKeyStore([
            make_key("old", age_minutes=600),
            make_key("claude", provider="anthropic"),
        ])
        manager, _ = make_manager(store)
        result = await manager.rotate_key("user-1", "old", "sk-rotated-5555")

        history = await manager.get_key_rotation_history("user-1", provider="OpenAI")

        assert [k.id for k in history] == [result.new_key.id, "old"]
        assert history[1].name == "old (Deprecated)"
        assert history[1].is_active is False

        everything = await manager.get_key_rotation_history("user-1")
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_history_unknown_provider(self):
        manager, _ = make_manager()
        with pytest.raises(InvalidProviderError):
            await manager.get_key_rotation_history("user-1", provider="cohere")


class TestSuspiciousActivity:
    """Tests for ApiKeyManager.check_for_suspicious_activity."""

    @pytest.mark.asyncio
    async def test_rate_limit_exceeded_over_a_day(self):
        store = FakeKeyStore([make_key("k1", rate_limit=1)])
        store.usage.extend(usage_entries("k1", 25, minutes_ago=120))
        manager, _ = make_manager(store)

        created = await manager.check_for_suspicious_activity("k1")

        assert [a.alert_type for a in created] == ["rate_limit_exceeded"]
        alert = created[0]
        assert alert.severity == AlertSeverity.HIGH
        assert alert.user_id == "user-1"
        assert alert.metadata == {"requests": 25, "limit": 24}
        assert "25 requests in last 24 hours (limit: 24)" in alert.message
        assert alert.created_at == NOW

    @pytest.mark.asyncio
    async def test_usage_at_daily_limit_not_flagged(self):
        store = FakeKeyStore([make_key("k1", rate_limit=1)])
        store.usage.extend(usage_entries("k1", 24, minutes_ago=120))
        manager, _ = make_manager(store)

        assert await manager.check_for_suspicious_activity("k1") == []

    @pytest.mark.asyncio
    async def test_usage_older_than_a_day_ignored(self):
        store = FakeKeyStore([make_key("k1", rate_limit=1)])
        store.usage.extend(usage_entries("k1", 30, minutes_ago=25 * 60))
        manager, _ = make_manager(store)

        assert await manager.check_for_suspicious_activity("k1") == []

    @pytest.mark.asyncio
    async def test_high_failure_rate(self):
        store = FakeKeyStore([make_key("k1")])
        store.usage.extend(failed_entries("k1", 11))
        store.usage.extend(usage_entries("k1", 9))
        manager, _ = make_manager(store)

        created = await manager.check_for_suspicious_activity("k1")

        assert [a.alert_type for a in created] == ["high_failure_rate"]
        assert created[0].severity == AlertSeverity.MEDIUM
        assert created[0].metadata == {"failed": 11, "total": 20}

    @pytest.mark.asyncio
    async def test_failures_need_both_count_and_ratio(self):
        few = FakeKeyStore([make_key("k1")])
        few.usage.extend(failed_entries("k1", 10))
        manager, _ = make_manager(few)
        assert await manager.check_for_suspicious_activity("k1") == []

        diluted = FakeKeyStore([make_key("k1")])
        diluted.usage.extend(failed_entries("k1", 11))
        diluted.usage.extend(usage_entries("k1", 11))
        manager, _ = make_manager(diluted)
        assert await manager.check_for_suspicious_activity("k1") == []

    @pytest.mark.asyncio
    async def test_open_alert_not_repeated(self):
        store = FakeKeyStore([make_key("k1")])
        store.usage.extend(failed_entries("k1", 12))
        manager, _ = make_manager(store)

        first = await manager.check_for_suspicious_activity("k1")
        second = await manager.check_for_suspicious_activity("k1")
        assert len(first) == 1
        assert second == []

        await manager.resolve_alert("user-1", first[0].id)
        third = await manager.check_for_suspicious_activity("k1")
        assert len(third) == 1

    @pytest.mark.asyncio
    async def test_unknown_key_and_store_errors(self):
        store = FakeKeyStore([make_key("k1")])
        store.fail_count_for.add("k1")
        manager, _ = make_manager(store)

        assert await manager.check_for_suspicious_activity("missing") == []
        assert await manager.check_for_suspicious_activity("k1") == []

    @pytest.mark.asyncio
    async def test_skipped_without_alert_store(self):
        store = FakeKeyStore([make_key("k1")])
        store.usage.extend(failed_entries("k1", 12))
        manager, _ = make_manager(store, with_alerts=False)

        assert await manager.check_for_suspicious_activity("k1") == []
        with pytest.raises(ConfigurationError):
            await manager.list_alerts("user-1")


class TestSecurityAlerts:
    """Tests for alert listing and housekeeping."""

    def _alert(self, alert_id, user_id="user-1", minutes_ago=0, **overrides):
        return SecurityAlert(
            id=alert_id,
            user_id=user_id,
            key_id="k1",
            alert_type="high_failure_rate",
            severity=AlertSeverity.MEDIUM,
            message=f"alert {alert_id}",
            created_at=NOW - timedelta(minutes=minutes_ago),
            **overrides,
        )

    async def _seeded(self):
        manager, _ = make_manager(FakeKeyStore([make_key("k1")]))
        for alert in (
            self._alert("new"),
            self._alert("old", minutes_ago=30),
            self._alert("done", minutes_ago=60, is_read=True, is_resolved=True),
            self._alert("theirs", user_id="user-2"),
        ):
            await manager.alert_store.save_alert(alert)
        return manager

    @pytest.mark.asyncio
    async def test_list_filters_and_names_keys(self):
        manager = await self._seeded()

        alerts = await manager.list_alerts("user-1")
        assert [a.id for a in alerts] == ["new", "old", "done"]
        assert alerts[0].key_name == "k1"

        unresolved = await manager.list_alerts("user-1", unresolved_only=True, limit=1)
        assert [a.id for a in unresolved] == ["new"]

    @pytest.mark.asyncio
    async def test_read_resolve_and_count(self):
        manager = await self._seeded()
        assert await manager.unread_alert_count("user-1") == 2

        assert await manager.mark_alert_read("user-1", "new") is True
        assert await manager.mark_alert_read("user-2", "old") is False
        assert await manager.unread_alert_count("user-1") == 1

        assert await manager.resolve_alert("user-1", "old") is True
        resolved = manager.alert_store.alerts["old"]
        assert resolved.is_read is True
        assert resolved.resolved_at == NOW
        assert await manager.unread_alert_count("user-1") == 0

    @pytest.mark.asyncio
    async def test_delete_resolved(self):
        manager = await self._seeded()

        assert await manager.delete_resolved_alerts("user-1") == 1
        assert set(manager.alert_store.alerts) == {"new", "old", "theirs"}
