"""
Tests for the SQLite key store and migrations.
"""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from offer_analyst.byok import AlertSeverity, SecurityAlert, StoredKey, UsageLogEntry
from offer_analyst.data import (
    MigrationRunner,
    RepositoryFactory,
    SQLiteApiKeyRepository,
    SQLiteConnection,
    SQLiteSecurityAlertRepository,
    get_repository_factory,
    initialize_repositories,
    reset_database,
    run_migrations,
)
from offer_analyst.exceptions import KeyStoreError

NOW = datetime(2024, 6, 1, 12, 0, 0)


def stored_key(key_id, user_id="user-1", provider="openai", **overrides):
    fields = dict(
        id=key_id,
        user_id=user_id,
        provider=provider,
        key_encrypted=f"cipher-{key_id}",
        name=f"Key {key_id}",
        key_preview="abcd",
        created_at=NOW - timedelta(days=1),
    )
    fields.update(overrides)
    return StoredKey(**fields)


@pytest_asyncio.fixture
async def repo():
    with tempfile.TemporaryDirectory() as tmpdir:
        connection = SQLiteConnection(str(Path(tmpdir) / "keys.db"), pool_size=2)
        await MigrationRunner(connection).run()
        yield SQLiteApiKeyRepository(connection)
        await connection.disconnect()


@pytest_asyncio.fixture
async def alerts(repo):
    await repo.save_key(stored_key("k1", name="Work key"))
    return SQLiteSecurityAlertRepository(repo.connection)


class TestMigrations:
    """Tests for schema migrations."""

    @pytest.mark.asyncio
    async def test_run_applies_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = str(Path(tmpdir) / "nested" / "keys.db")
            assert await run_migrations(db_path) == 2
            assert await run_migrations(db_path) == 0

    @pytest.mark.asyncio
    async def test_current_version(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            connection = SQLiteConnection(str(Path(tmpdir) / "keys.db"), pool_size=1)
            runner = MigrationRunner(connection)
            try:
                assert await runner.current_version() == 0
                await runner.run()
                assert await runner.current_version() == 2
            finally:
                await connection.disconnect()

    @pytest.mark.asyncio
    async def test_reset_database_recreates_schema(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = str(Path(tmpdir) / "keys.db")
            await run_migrations(db_path)
            await reset_database(db_path)
            assert await run_migrations(db_path) == 0


class TestSQLiteApiKeyRepository:
    """Tests for SQLiteApiKeyRepository."""

    @pytest.mark.asyncio
    async def test_save_and_get_round_trip(self, repo):
        key = stored_key(
            "k1",
            priority=3,
            is_primary=True,
            rate_limit=20,
            expires_at=NOW + timedelta(days=30),
        )
        await repo.save_key(key)

        loaded = await repo.get_key("k1")
        assert loaded.priority == 3
        assert loaded.is_primary is True
        assert loaded.rate_limit == 20
        assert loaded.expires_at == NOW + timedelta(days=30)
        assert loaded.created_at == key.created_at
        assert loaded.key_encrypted == "cipher-k1"

    @pytest.mark.asyncio
    async def test_get_key_scoped_to_user(self, repo):
        await repo.save_key(stored_key("k1"))
        assert await repo.get_key("k1", user_id="user-1") is not None
        assert await repo.get_key("k1", user_id="intruder") is None

    @pytest.mark.asyncio
    async def test_find_eligible_filters_and_orders(self, repo):
        await repo.save_key(stored_key("low", priority=0, created_at=NOW - timedelta(hours=1)))
        await repo.save_key(stored_key("high", priority=5, created_at=NOW - timedelta(days=3)))
        await repo.save_key(stored_key("primary", priority=0, is_primary=True, created_at=NOW - timedelta(days=3)))
        await repo.save_key(stored_key("expired", priority=9, expires_at=NOW - timedelta(minutes=1)))
        await repo.save_key(stored_key("inactive", priority=9, is_active=False))
        await repo.save_key(stored_key("future", priority=1, expires_at=NOW + timedelta(minutes=1)))
        await repo.save_key(stored_key("other-provider", provider="anthropic", priority=9))
        await repo.save_key(stored_key("other-user", user_id="user-2", priority=9))

        keys = await repo.find_eligible_keys("user-1", "openai", NOW)

        assert [k.id for k in keys] == ["high", "future", "primary", "low"]

    @pytest.mark.asyncio
    async def test_count_recent_usage_inclusive_window(self, repo):
        await repo.save_key(stored_key("k1"))
        since = NOW - timedelta(minutes=60)
        for ts in (since - timedelta(seconds=1), since, NOW):
            await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=ts))

        assert await repo.count_recent_usage("k1", since) == 2
        assert await repo.count_recent_usage("missing", since) == 0

    @pytest.mark.asyncio
    async def test_touch_last_used(self, repo):
        await repo.save_key(stored_key("k1"))
        await repo.touch_last_used("k1", NOW)
        await repo.touch_last_used("k1", NOW + timedelta(minutes=1))

        key = await repo.get_key("k1")
        assert key.usage_count == 2
        assert key.last_used == NOW + timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_save_existing_key_keeps_usage(self, repo):
        key = stored_key("k1")
        await repo.save_key(key)
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=NOW))

        key.name = "Renamed"
        await repo.save_key(key)

        assert (await repo.get_key("k1")).name == "Renamed"
        assert await repo.count_recent_usage("k1", NOW - timedelta(hours=1)) == 1

    @pytest.mark.asyncio
    async def test_list_keys_active_newest_first(self, repo):
        await repo.save_key(stored_key("old", created_at=NOW - timedelta(days=5)))
        await repo.save_key(stored_key("new", created_at=NOW - timedelta(days=1)))
        await repo.save_key(stored_key("off", is_active=False))
        await repo.save_key(stored_key("claude", provider="anthropic"))

        assert [k.id for k in await repo.list_keys("user-1", provider="openai")] == ["new", "old"]
        all_keys = await repo.list_keys("user-1", include_inactive=True)
        assert {k.id for k in all_keys} == {"old", "new", "off", "claude"}

    @pytest.mark.asyncio
    async def test_update_key(self, repo):
        await repo.save_key(stored_key("k1"))

        assert await repo.update_key("k1", "user-1", priority=7, is_active=False) is True
        assert await repo.update_key("k1", "intruder", priority=1) is False

        key = await repo.get_key("k1")
        assert key.priority == 7
        assert key.is_active is False

    @pytest.mark.asyncio
    async def test_update_key_rejects_unknown_fields(self, repo):
        await repo.save_key(stored_key("k1"))
        with pytest.raises(ValueError):
            await repo.update_key("k1", "user-1", provider="anthropic")

    @pytest.mark.asyncio
    async def test_delete_key_cascades_usage(self, repo):
        await repo.save_key(stored_key("k1"))
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=NOW))

        assert await repo.delete_key("k1", "intruder") is False
        assert await repo.delete_key("k1", "user-1") is True
        assert await repo.get_key("k1") is None
        assert await repo.count_recent_usage("k1", NOW - timedelta(days=1)) == 0

    @pytest.mark.asyncio
    async def test_clear_primary(self, repo):
        await repo.save_key(stored_key("a", is_primary=True))
        await repo.save_key(stored_key("b", provider="anthropic", is_primary=True))

        assert await repo.clear_primary("user-1", "openai") == 1
        assert (await repo.get_key("a")).is_primary is False
        assert (await repo.get_key("b")).is_primary is True

    @pytest.mark.asyncio
    async def test_list_usage(self, repo):
        await repo.save_key(stored_key("k1"))
        await repo.save_key(stored_key("k2", provider="mistral"))
        await repo.save_key(stored_key("theirs", user_id="user-2"))
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=NOW - timedelta(hours=2), action="chat"))
        await repo.append_usage(UsageLogEntry(key_id="k2", timestamp=NOW - timedelta(hours=1), success=False))
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=NOW - timedelta(days=40)))
        await repo.append_usage(UsageLogEntry(key_id="theirs", timestamp=NOW))

        entries = await repo.list_usage("user-1", NOW - timedelta(days=30))

        assert [e.key_id for e in entries] == ["k2", "k1"]
        assert entries[0].provider == "mistral"
        assert entries[0].success is False
        assert entries[1].action == "chat"
        assert entries[1].user_id == "user-1"

        only_k1 = await repo.list_usage("user-1", NOW - timedelta(days=30), key_id="k1")
        assert [e.key_id for e in only_k1] == ["k1"]

    @pytest.mark.asyncio
    async def test_count_failed_usage(self, repo):
        await repo.save_key(stored_key("k1"))
        since = NOW - timedelta(hours=24)
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=NOW, success=False))
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=NOW))
        await repo.append_usage(UsageLogEntry(key_id="k1", timestamp=since - timedelta(seconds=1), success=False))

        assert await repo.count_failed_usage("k1", since) == 1


def alert(alert_id, user_id="user-1", key_id="k1", minutes_ago=0, **overrides):
    fields = dict(
        id=alert_id,
        user_id=user_id,
        key_id=key_id,
        alert_type="high_failure_rate",
        severity=AlertSeverity.MEDIUM,
        message=f"alert {alert_id}",
        created_at=NOW - timedelta(minutes=minutes_ago),
    )
    fields.update(overrides)
    return SecurityAlert(**fields)


class TestSQLiteSecurityAlertRepository:
    """Tests for SQLiteSecurityAlertRepository."""

    @pytest.mark.asyncio
    async def test_save_and_list_with_key_name(self, alerts):
        await alerts.save_alert(alert("a1", metadata={"failed": 11, "total": 20}))
        await alerts.save_alert(alert("a2", key_id=None, minutes_ago=5, severity=AlertSeverity.HIGH))
        await alerts.save_alert(alert("theirs", user_id="user-2"))

        listed = await alerts.list_alerts("user-1")

        assert [a.id for a in listed] == ["a1", "a2"]
        assert listed[0].key_name == "Work key"
        assert listed[0].metadata == {"failed": 11, "total": 20}
        assert listed[0].created_at == NOW
        assert listed[1].key_name is None
        assert listed[1].severity == AlertSeverity.HIGH

    @pytest.mark.asyncio
    async def test_filters_and_limit(self, alerts):
        await alerts.save_alert(alert("unread"))
        await alerts.save_alert(alert("read", minutes_ago=1, is_read=True))
        await alerts.save_alert(alert("done", minutes_ago=2, is_read=True, is_resolved=True))

        assert [a.id for a in await alerts.list_alerts("user-1", unread_only=True)] == ["unread"]
        assert [a.id for a in await alerts.list_alerts("user-1", unresolved_only=True)] == ["unread", "read"]
        assert len(await alerts.list_alerts("user-1", limit=2)) == 2

    @pytest.mark.asyncio
    async def test_find_open_alert(self, alerts):
        since = NOW - timedelta(hours=24)
        await alerts.save_alert(alert("stale", minutes_ago=25 * 60))
        assert await alerts.find_open_alert("user-1", "k1", "high_failure_rate", since) is None

        await alerts.save_alert(alert("fresh", minutes_ago=10))
        found = await alerts.find_open_alert("user-1", "k1", "high_failure_rate", since)
        assert found.id == "fresh"
        assert await alerts.find_open_alert("user-1", "k1", "rate_limit_exceeded", since) is None

        await alerts.resolve_alert("fresh", "user-1", NOW)
        assert await alerts.find_open_alert("user-1", "k1", "high_failure_rate", since) is None

    @pytest.mark.asyncio
    async def test_read_resolve_count_and_delete(self, alerts):
        await alerts.save_alert(alert("a1"))
        await alerts.save_alert(alert("a2"))

        assert await alerts.count_unread_alerts("user-1") == 2
        assert await alerts.mark_alert_read("a1", "intruder") is False
        assert await alerts.mark_alert_read("a1", "user-1") is True
        assert await alerts.resolve_alert("a2", "user-1", NOW) is True
        assert await alerts.count_unread_alerts("user-1") == 0

        by_id = {a.id: a for a in await alerts.list_alerts("user-1")}
        assert by_id["a2"].is_resolved is True
        assert by_id["a2"].is_read is True
        assert by_id["a2"].resolved_at == NOW
        assert by_id["a1"].resolved_at is None

        assert await alerts.delete_resolved_alerts("user-1") == 1
        assert [a.id for a in await alerts.list_alerts("user-1")] == ["a1"]

    @pytest.mark.asyncio
    async def test_deleting_key_keeps_alert(self, repo, alerts):
        await alerts.save_alert(alert("a1"))
        await repo.delete_key("k1", "user-1")

        remaining = await alerts.list_alerts("user-1")
        assert remaining[0].key_id is None


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_query_without_schema_raises_key_store_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            connection = SQLiteConnection(str(Path(tmpdir) / "empty.db"), pool_size=1)
            repo = SQLiteApiKeyRepository(connection)
            try:
                with pytest.raises(KeyStoreError):
                    await repo.find_eligible_keys("user-1", "openai", NOW)
                with pytest.raises(KeyStoreError):
                    await repo.count_recent_usage("k1", NOW)
            finally:
                await connection.disconnect()


class TestRepositoryFactory:
    """Tests for repository factory."""

    @pytest.mark.asyncio
    async def test_factory_shares_connection(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            factory = RepositoryFactory("sqlite", db_path=str(Path(tmpdir) / "keys.db"), pool_size=1)
            try:
                first = await factory.get_connection()
                assert await factory.get_connection() is first
                repo = await factory.get_api_key_repository()
                assert isinstance(repo, SQLiteApiKeyRepository)
                alerts = await factory.get_security_alert_repository()
                assert isinstance(alerts, SQLiteSecurityAlertRepository)
            finally:
                await factory.close()

    @pytest.mark.asyncio
    async def test_unsupported_backend(self):
        factory = RepositoryFactory("postgres")
        with pytest.raises(ValueError):
            await factory.get_connection()

    def test_initialize_sets_default(self):
        factory = initialize_repositories(db_path="unused.db")
        assert get_repository_factory() is factory
