#!/usr/bin/env python
"""Example of using the lexicon-guard recovery REST API."""

import httpx
import asyncio
import json


async def main():
    """Demonstrate API usage."""
    base_url = "http://localhost:8000/api/v1"

    async with httpx.AsyncClient() as client:
        print("Checking liveness...")
        response = await client.get(f"{base_url}/health/live")
        print(f"Health: {response.json()}")

        print("\nChecking database version...")
        status = (await client.get(f"{base_url}/migration/status")).json()
        print(json.dumps(status, indent=2))

        check = status["check"]
        if check["status"] == "upgrade-needed" and check["requiresBackup"]:
            print("\nCreating pre-migration backup...")
            response = await client.post(
                f"{base_url}/migration/backup",
                json={"fromVersion": check["currentOnDiskVersion"], "toVersion": check["expectedVersion"]},
            )
            if response.status_code == 409:
                print(f"Backup refused, do not upgrade: {response.json()['detail']}")
                return
            print(f"Backup: {response.json()}")

        if check["status"] == "migration-failed":
            print("\nRestoring from backup...")
            response = await client.post(f"{base_url}/migration/restore")
            print(f"Restore ({response.status_code}): {response.json()}")

        print("\nRestore info...")
        info = await client.get(f"{base_url}/migration/restore")
        print(f"Restore info: {info.json()}")


if __name__ == "__main__":
    asyncio.run(main())
