"""Tests for the SQLite versioned object store."""

import os
import sqlite3

import pytest
from unittest.mock import MagicMock

from lexicon_guard._storage.versioned import OpenMode, StoreEnvironment
from lexicon_guard.errors import (
    BlockedError,
    StoreCorruptedError,
    UpgradeAbortedError,
    UpgradeError,
    UpgradePreconditionError,
    VersionError,
)
from lexicon_guard.schema import apply_migrations, collections_at


def on_disk_version(path):
    raw = sqlite3.connect(path)
    try:
        return raw.execute("PRAGMA user_version").fetchone()[0]
    finally:
        raw.close()


class TestOpen:
    """Opening databases and running upgrades."""

    @pytest.mark.asyncio
    async def test_create_runs_upgrade_from_zero(self, environment):
        calls = []

        def on_upgrade(raw, tx, old, new):
            calls.append((old, new))
            apply_migrations(raw, tx, old, new)

        connection = await environment.open("main", 4, on_upgrade=on_upgrade)

        assert calls == [(0, 4)]
        assert connection.version == 4
        assert connection.collection_names == sorted(collections_at(4))
        assert on_disk_version(environment.path_for("main")) == 4
        connection.close()

    @pytest.mark.asyncio
    async def test_open_without_version_uses_current(self, environment):
        (await environment.open("main", 7, on_upgrade=apply_migrations)).close()

        connection = await environment.open("main")
        assert connection.version == 7
        connection.close()

    @pytest.mark.asyncio
    async def test_same_version_does_not_fire_callback(self, environment):
        (await environment.open("main", 5, on_upgrade=apply_migrations)).close()
        on_upgrade = MagicMock()

        connection = await environment.open("main", 5, on_upgrade=on_upgrade)

        on_upgrade.assert_not_called()
        connection.close()

    @pytest.mark.asyncio
    async def test_upgrade_keeps_existing_rows(self, environment, seed_store):
        await seed_store(environment, "main", 11)

        connection = await environment.open("main", 12, on_upgrade=apply_migrations)
        async with connection.transaction(["chapters", "diffResults"]) as tx:
            assert await tx.count("chapters") == 5
            assert await tx.count("diffResults") == 0
        connection.close()

    @pytest.mark.asyncio
    async def test_lower_version_raises(self, environment):
        (await environment.open("main", 5, on_upgrade=apply_migrations)).close()

        with pytest.raises(VersionError) as exc_info:
            await environment.open("main", 4)
        assert exc_info.value.current == 5

    @pytest.mark.asyncio
    async def test_rejects_non_positive_version(self, environment):
        with pytest.raises(ValueError):
            await environment.open("main", 0)

    @pytest.mark.asyncio
    async def test_rejects_invalid_name(self, environment):
        with pytest.raises(ValueError, match="Invalid database name"):
            await environment.open("../escape", 1)


class TestReadOnlyNoUpgrade:
    """The mode used by the version gate and the backup export."""

    @pytest.mark.asyncio
    async def test_missing_database_is_not_created(self, environment):
        with pytest.raises(UpgradePreconditionError) as exc_info:
            await environment.open("main", mode=OpenMode.READ_ONLY_NO_UPGRADE)

        assert exc_info.value.old_version == 0
        assert not os.path.exists(environment.path_for("main"))

    @pytest.mark.asyncio
    async def test_older_database_is_left_alone(self, environment):
        (await environment.open("main", 11, on_upgrade=apply_migrations)).close()
        on_upgrade = MagicMock()

        with pytest.raises(UpgradePreconditionError) as exc_info:
            await environment.open(
                "main", 12, mode=OpenMode.READ_ONLY_NO_UPGRADE, on_upgrade=on_upgrade
            )

        on_upgrade.assert_not_called()
        assert (exc_info.value.old_version, exc_info.value.new_version) == (11, 12)
        assert on_disk_version(environment.path_for("main")) == 11

    @pytest.mark.asyncio
    async def test_read_only_connection_refuses_writes(self, environment):
        (await environment.open("main", 1, on_upgrade=apply_migrations)).close()

        connection = await environment.open("main", mode=OpenMode.READ_ONLY_NO_UPGRADE)
        assert connection.read_only
        with pytest.raises(PermissionError):
            async with connection.transaction("chapters", "readwrite"):
                pass
        connection.close()


class TestUpgradeFailure:
    """A failed upgrade commits nothing."""

    @pytest.mark.asyncio
    async def test_raising_callback_rolls_back(self, environment, seed_store):
        await seed_store(environment, "main", 11)

        def broken(raw, tx, old, new):
            apply_migrations(raw, tx, old, new)
            tx.clear("chapters")
            raise RuntimeError("migration bug")

        with pytest.raises(UpgradeError) as exc_info:
            await environment.open("main", 12, on_upgrade=broken)

        assert (exc_info.value.old_version, exc_info.value.new_version) == (11, 12)
        assert on_disk_version(environment.path_for("main")) == 11

        connection = await environment.open("main")
        assert "diffResults" not in connection.collection_names
        async with connection.transaction("chapters") as tx:
            assert await tx.count("chapters") == 5
        connection.close()

    @pytest.mark.asyncio
    async def test_sql_error_in_callback_is_an_upgrade_error(self, environment, seed_store):
        await seed_store(environment, "main", 11)

        def broken(raw, tx, old, new):
            raw.execute("UPDATE no_such_table SET x = 1")

        with pytest.raises(UpgradeError) as exc_info:
            await environment.open("main", 12, on_upgrade=broken)

        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
        assert on_disk_version(environment.path_for("main")) == 11

    @pytest.mark.asyncio
    async def test_failed_create_removes_file(self, environment):
        def broken(raw, tx, old, new):
            raise RuntimeError("nope")

        with pytest.raises(UpgradeError):
            await environment.open("main", 1, on_upgrade=broken)
        assert not os.path.exists(environment.path_for("main"))

    @pytest.mark.asyncio
    async def test_abort(self, environment):
        (await environment.open("main", 1, on_upgrade=apply_migrations)).close()

        def aborting(raw, tx, old, new):
            tx.abort()

        with pytest.raises(UpgradeAbortedError):
            await environment.open("main", 2, on_upgrade=aborting)
        assert on_disk_version(environment.path_for("main")) == 1


class TestTransactions:
    """Transactions over the collections of one connection."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self, environment):
        connection = await environment.open("main", 1, on_upgrade=apply_migrations)

        async with connection.transaction("chapters", "readwrite") as tx:
            await tx.put("chapters", {"url": "u1", "title": "One"})
            await tx.put("chapters", {"url": "u1", "title": "One, edited"})
            await tx.put("chapters", {"url": "u2", "title": "Two"})

        async with connection.transaction("chapters") as tx:
            assert await tx.count("chapters") == 2
            assert (await tx.get("chapters", "u1"))["title"] == "One, edited"
            assert await tx.get("chapters", "missing") is None

        async with connection.transaction("chapters", "readwrite") as tx:
            await tx.delete("chapters", "u1")
        async with connection.transaction("chapters") as tx:
            assert [row["url"] for row in await tx.get_all("chapters")] == ["u2"]
        connection.close()

    @pytest.mark.asyncio
    async def test_composite_key_path(self, environment):
        connection = await environment.open("main", 12, on_upgrade=apply_migrations)
        row = {
            "chapterId": "c", "aiVersionId": "a", "fanVersionId": None,
            "rawVersionId": "r", "algoVersion": "1",
        }

        async with connection.transaction("diffResults", "readwrite") as tx:
            await tx.put("diffResults", row)
            await tx.put("diffResults", {**row, "markers": [1]})
            await tx.put("diffResults", {**row, "algoVersion": "2"})

        async with connection.transaction("diffResults") as tx:
            assert await tx.count("diffResults") == 2
            stored = await tx.get("diffResults", ["c", "a", None, "r", "1"])
            assert stored["markers"] == [1]
        connection.close()

    @pytest.mark.asyncio
    async def test_row_without_key_is_rejected(self, environment):
        connection = await environment.open("main", 1, on_upgrade=apply_migrations)
        with pytest.raises(ValueError, match="key path"):
            async with connection.transaction("chapters", "readwrite") as tx:
                await tx.put("chapters", {"title": "no url"})
        connection.close()

    @pytest.mark.asyncio
    async def test_error_in_block_rolls_back(self, environment):
        connection = await environment.open("main", 1, on_upgrade=apply_migrations)

        with pytest.raises(RuntimeError):
            async with connection.transaction("chapters", "readwrite") as tx:
                await tx.put("chapters", {"url": "u1"})
                raise RuntimeError("boom")

        async with connection.transaction("chapters") as tx:
            assert await tx.count("chapters") == 0
        connection.close()

    @pytest.mark.asyncio
    async def test_readonly_transaction_refuses_writes(self, environment):
        connection = await environment.open("main", 1, on_upgrade=apply_migrations)
        async with connection.transaction("chapters") as tx:
            with pytest.raises(PermissionError):
                await tx.put("chapters", {"url": "u1"})
        connection.close()

    @pytest.mark.asyncio
    async def test_unknown_collections(self, environment):
        connection = await environment.open("main", 1, on_upgrade=apply_migrations)

        with pytest.raises(KeyError):
            async with connection.transaction("diffResults"):
                pass

        async with connection.transaction("chapters") as tx:
            with pytest.raises(KeyError):
                await tx.get_all("translations")
        connection.close()

    @pytest.mark.asyncio
    async def test_close_waits_for_running_transaction(self, environment):
        connection = await environment.open("main", 1, on_upgrade=apply_migrations)

        async with connection.transaction("chapters", "readwrite") as tx:
            connection.close()
            await tx.put("chapters", {"url": "u1"})

        assert connection.closed
        reopened = await environment.open("main")
        async with reopened.transaction("chapters") as tx:
            assert await tx.count("chapters") == 1
        reopened.close()


class TestVersionChange:
    """Other open connections block version changes unless they close."""

    @pytest.mark.asyncio
    async def test_open_connection_blocks_upgrade(self, environment):
        holder = await environment.open("main", 1, on_upgrade=apply_migrations)
        on_blocked = MagicMock()

        with pytest.raises(BlockedError):
            await environment.open("main", 4, on_upgrade=apply_migrations, on_blocked=on_blocked)

        on_blocked.assert_called_once_with(1, 4)
        assert on_disk_version(environment.path_for("main")) == 1
        holder.close()

    @pytest.mark.asyncio
    async def test_connection_that_closes_on_versionchange(self, environment):
        holder = await environment.open("main", 1, on_upgrade=apply_migrations)
        seen = []

        def on_versionchange(old, new):
            seen.append((old, new))
            holder.close()

        holder.on_versionchange = on_versionchange

        connection = await environment.open("main", 4, on_upgrade=apply_migrations)

        assert seen == [(1, 4)]
        assert holder.closed
        assert connection.version == 4
        connection.close()


class TestIntrospection:
    """Listing databases without opening them."""

    @pytest.mark.asyncio
    async def test_databases(self, environment):
        assert await environment.databases() == []

        (await environment.open("main", 11, on_upgrade=apply_migrations)).close()
        (await environment.open("other", 1)).close()

        listed = {info.name: info.version for info in await environment.databases()}
        assert listed == {"main": 11, "other": 1}

    @pytest.mark.asyncio
    async def test_version_zero_file_is_not_listed(self, environment, data_dir):
        sqlite3.connect(os.path.join(data_dir, "empty.sqlite3")).close()
        assert await environment.databases() == []

    @pytest.mark.asyncio
    async def test_unsupported(self, data_dir):
        env = StoreEnvironment(data_dir, supports_introspection=False)
        with pytest.raises(NotImplementedError):
            await env.databases()


class TestCorruption:

    @pytest.mark.asyncio
    async def test_garbage_file(self, environment):
        with open(environment.path_for("main"), "wb") as f:
            f.write(b"definitely not sqlite " * 200)

        with pytest.raises(StoreCorruptedError):
            await environment.open("main", mode=OpenMode.READ_ONLY_NO_UPGRADE)
        with pytest.raises(StoreCorruptedError):
            await environment.databases()


class TestDeleteDatabase:

    @pytest.mark.asyncio
    async def test_missing(self, environment):
        assert await environment.delete_database("main") is False

    @pytest.mark.asyncio
    async def test_deletes_file(self, environment):
        (await environment.open("main", 1, on_upgrade=apply_migrations)).close()

        assert await environment.delete_database("main") is True
        assert not os.path.exists(environment.path_for("main"))

    @pytest.mark.asyncio
    async def test_blocked_by_open_connection(self, environment):
        holder = await environment.open("main", 1, on_upgrade=apply_migrations)
        on_blocked = MagicMock()

        with pytest.raises(BlockedError):
            await environment.delete_database("main", on_blocked=on_blocked)

        on_blocked.assert_called_once_with(1, None)
        assert os.path.exists(environment.path_for("main"))
        holder.close()

    @pytest.mark.asyncio
    async def test_corrupt_file_is_deleted(self, environment):
        with open(environment.path_for("main"), "wb") as f:
            f.write(b"garbage " * 500)

        assert await environment.delete_database("main") is True
        assert not os.path.exists(environment.path_for("main"))
