"""Example of guarding a schema upgrade with MigrationGuard."""

import asyncio
import dataclasses

from lexicon_guard import GuardConfig, MigrationGuard, StoreConfig
from lexicon_guard.backup import get_status_title
from lexicon_guard.backup.tiers import NoHandoff
from lexicon_guard.errors import StoreAccessError


async def seed_v11(guard: MigrationGuard):
    """Create a v11 store with a few rows, as an older release would have."""
    old = MigrationGuard(
        config=dataclasses.replace(guard.config, expected_version=11),
        handoff=NoHandoff(),
    )
    connection = await old.get_connection()
    async with connection.transaction(["chapters", "translations"], "readwrite") as tx:
        await tx.put("chapters", {"url": "https://example.com/novel/1", "title": "Chapter 1"})
        await tx.put("chapters", {"url": "https://example.com/novel/2", "title": "Chapter 2"})
        await tx.put("translations", {"id": "t-1", "chapterUrl": "https://example.com/novel/1"})
    await old.close()


async def main():
    config = GuardConfig(store=StoreConfig(data_dir="./guard_example_data"))
    guard = MigrationGuard(config=config, handoff=NoHandoff())

    # start from a clean example directory on every run
    await guard.start_fresh()
    await seed_v11(guard)

    # Version gate + pre-migration backup
    result = await guard.prepare_connection()
    print(f"{get_status_title(result.status)}: {result.message}")

    try:
        connection = await guard.get_connection()
    except StoreAccessError as e:
        print(f"Cannot open store ({e.status}): {e}")
        return

    print(f"Opened {connection.name} at v{connection.version}")
    print(f"Backup metadata: {guard.get_backup_metadata()}")

    # Roll back to the backup, as a recovery screen would after a failed upgrade
    restored = await guard.restore_from_backup()
    print(f"Restore: {restored.message} (v{restored.restored_version})")

    await guard.close()


if __name__ == "__main__":
    asyncio.run(main())
