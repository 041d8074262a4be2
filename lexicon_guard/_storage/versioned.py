"""Versioned object store on SQLite.

Each named database is one SQLite file in the environment's data directory.
The schema version lives in ``PRAGMA user_version``; every collection is a
table of ``(key, value)`` rows where ``value`` is the JSON row and ``key`` is
derived from the collection's key path. A catalog table records the key
paths.

Opening a database at a higher version than the one on disk runs an upgrade
callback inside a single exclusive transaction. Callers that must never
upgrade open with ``OpenMode.READ_ONLY_NO_UPGRADE``; in that mode any
situation that would fire the callback raises ``UpgradePreconditionError``
before a single byte is written.
"""

import asyncio
import json
import os
import re
import sqlite3
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Union

from .._utils import logger
from ..errors import (
    BlockedError,
    MigrationGuardError,
    StoreCorruptedError,
    UpgradeAbortedError,
    UpgradeError,
    UpgradePreconditionError,
    VersionError,
)

KeyPath = Union[str, List[str]]
UpgradeCallback = Callable[[sqlite3.Connection, "UpgradeTransaction", int, int], None]
BlockedCallback = Callable[[int, Optional[int]], None]

DB_SUFFIX = ".sqlite3"
SIDE_SUFFIXES = ("-journal", "-wal", "-shm")
CATALOG_TABLE = "__collections__"

_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")
_COLLECTION_RE = re.compile(r"^[A-Za-z0-9_]+$")


class OpenMode(str, Enum):
    READ_ONLY_NO_UPGRADE = "read-only-no-upgrade"
    REAL_UPGRADE = "real-upgrade"


@dataclass(frozen=True)
class DatabaseInfo:
    name: str
    version: int


class _CallbackError(Exception):
    """Carries an exception raised by the upgrade callback out of the worker thread."""


def _translate_error(exc: sqlite3.Error, name: str) -> MigrationGuardError:
    """Map a SQLite error to the guard's store errors."""
    message = str(exc).lower()
    if isinstance(exc, sqlite3.OperationalError) and ("locked" in message or "busy" in message):
        return BlockedError(f"Database {name} is locked by another connection: {exc}")
    return StoreCorruptedError(f"Database {name} could not be read: {exc}")


def _table(collection: str) -> str:
    return f'"store_{collection}"'


def _encode_key(value: Any) -> str:
    if isinstance(value, tuple):
        value = list(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _row_key(key_path: KeyPath, row: Dict[str, Any]) -> str:
    try:
        if isinstance(key_path, str):
            return _encode_key(row[key_path])
        return _encode_key([row[part] for part in key_path])
    except (KeyError, TypeError) as e:
        raise ValueError(f"Row is missing key path {key_path!r}: {e}") from e


def _select_all(raw: sqlite3.Connection, collection: str) -> List[Dict[str, Any]]:
    cursor = raw.execute(f"SELECT value FROM {_table(collection)} ORDER BY key")
    return [json.loads(value) for (value,) in cursor.fetchall()]


def _select_one(raw: sqlite3.Connection, collection: str, key: Any) -> Optional[Dict[str, Any]]:
    found = raw.execute(
        f"SELECT value FROM {_table(collection)} WHERE key = ?", (_encode_key(key),)
    ).fetchone()
    return json.loads(found[0]) if found else None


def _count(raw: sqlite3.Connection, collection: str) -> int:
    return raw.execute(f"SELECT COUNT(*) FROM {_table(collection)}").fetchone()[0]


def _upsert(raw: sqlite3.Connection, collection: str, key_path: KeyPath,
            rows: Iterable[Dict[str, Any]]) -> int:
    params = [
        (_row_key(key_path, row), json.dumps(row, ensure_ascii=False, default=str))
        for row in rows
    ]
    raw.executemany(
        f"INSERT OR REPLACE INTO {_table(collection)} (key, value) VALUES (?, ?)", params
    )
    return len(params)


def _delete(raw: sqlite3.Connection, collection: str, key: Any) -> None:
    raw.execute(f"DELETE FROM {_table(collection)} WHERE key = ?", (_encode_key(key),))


def _clear(raw: sqlite3.Connection, collection: str) -> None:
    raw.execute(f"DELETE FROM {_table(collection)}")


def _load_catalog(raw: sqlite3.Connection) -> Dict[str, KeyPath]:
    rows = raw.execute(f"SELECT name, key_path FROM {CATALOG_TABLE}").fetchall()
    return {name: json.loads(key_path) for name, key_path in rows}


class UpgradeTransaction:
    """Synchronous view of the exclusive transaction an upgrade runs in.

    Only valid while the upgrade callback runs. Everything done through it
    commits together with the new version, or not at all.
    """

    def __init__(self, raw: sqlite3.Connection, catalog: Dict[str, KeyPath]):
        self._raw = raw
        self._catalog = catalog

    def collection_names(self) -> List[str]:
        return sorted(self._catalog)

    def key_path(self, collection: str) -> KeyPath:
        self._require(collection)
        return self._catalog[collection]

    def create_collection(self, collection: str, key_path: KeyPath) -> None:
        if not _COLLECTION_RE.match(collection):
            raise ValueError(f"Invalid collection name: {collection!r}")
        if collection in self._catalog:
            raise ValueError(f"Collection already exists: {collection}")
        if not key_path:
            raise ValueError("key_path must not be empty")
        self._raw.execute(
            f"CREATE TABLE {_table(collection)} (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        self._raw.execute(
            f"INSERT INTO {CATALOG_TABLE} (name, key_path) VALUES (?, ?)",
            (collection, json.dumps(key_path)),
        )
        self._catalog[collection] = key_path

    def delete_collection(self, collection: str) -> None:
        self._require(collection)
        self._raw.execute(f"DROP TABLE {_table(collection)}")
        self._raw.execute(f"DELETE FROM {CATALOG_TABLE} WHERE name = ?", (collection,))
        del self._catalog[collection]

    def get_all(self, collection: str) -> List[Dict[str, Any]]:
        self._require(collection)
        return _select_all(self._raw, collection)

    def count(self, collection: str) -> int:
        self._require(collection)
        return _count(self._raw, collection)

    def put(self, collection: str, row: Dict[str, Any]) -> None:
        self._require(collection)
        _upsert(self._raw, collection, self._catalog[collection], [row])

    def delete(self, collection: str, key: Any) -> None:
        self._require(collection)
        _delete(self._raw, collection, key)

    def clear(self, collection: str) -> None:
        self._require(collection)
        _clear(self._raw, collection)

    def abort(self) -> None:
        """Abandon the upgrade; nothing it did is kept."""
        raise UpgradeAbortedError("Upgrade transaction aborted")

    def _require(self, collection: str) -> None:
        if collection not in self._catalog:
            raise KeyError(f"Unknown collection: {collection}")


class Transaction:
    """Asynchronous transaction over a set of collections of one connection."""

    def __init__(self, connection: "Connection", collections: List[str], mode: str):
        self._connection = connection
        self._collections = collections
        self.mode = mode
        self._finished = False

    @property
    def collections(self) -> List[str]:
        return list(self._collections)

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        self._check(collection)
        return await self._connection._run(_select_all, collection)

    async def count(self, collection: str) -> int:
        self._check(collection)
        return await self._connection._run(_count, collection)

    async def get(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        self._check(collection)
        return await self._connection._run(_select_one, collection, key)

    async def put(self, collection: str, row: Dict[str, Any]) -> None:
        await self.put_many(collection, [row])

    async def put_many(self, collection: str, rows: Iterable[Dict[str, Any]]) -> int:
        self._check(collection, write=True)
        key_path = self._connection.key_path(collection)
        return await self._connection._run(_upsert, collection, key_path, list(rows))

    async def delete(self, collection: str, key: Any) -> None:
        self._check(collection, write=True)
        await self._connection._run(_delete, collection, key)

    async def clear(self, collection: str) -> None:
        self._check(collection, write=True)
        await self._connection._run(_clear, collection)

    def _check(self, collection: str, write: bool = False) -> None:
        if self._finished:
            raise MigrationGuardError("Transaction has already finished")
        if collection not in self._collections:
            raise KeyError(f"Collection {collection} is not part of this transaction")
        if write and self.mode != "readwrite":
            raise PermissionError(f"Cannot write to {collection} in a readonly transaction")


class Connection:
    """An open database at a fixed version.

    Transactions on one connection run one at a time. When another caller
    needs a version change, ``on_versionchange(old, new)`` is invoked; the
    handler is expected to ``close()`` the connection, otherwise the other
    caller is blocked.
    """

    def __init__(
        self,
        environment: "StoreEnvironment",
        name: str,
        raw: sqlite3.Connection,
        version: int,
        read_only: bool,
        catalog: Dict[str, KeyPath],
    ):
        self.environment = environment
        self.name = name
        self.version = version
        self.read_only = read_only
        self.on_versionchange: Optional[Callable[[int, Optional[int]], None]] = None
        self.closed = False
        self._raw: Optional[sqlite3.Connection] = raw
        self._catalog = catalog
        self._tx_lock = asyncio.Lock()
        self._thread_lock = threading.Lock()
        self._in_transaction = False

    @property
    def collection_names(self) -> List[str]:
        return sorted(self._catalog)

    def key_path(self, collection: str) -> KeyPath:
        return self._catalog[collection]

    @asynccontextmanager
    async def transaction(
        self,
        collections: Optional[Union[str, Iterable[str]]] = None,
        mode: str = "readonly",
    ) -> AsyncIterator[Transaction]:
        """Open a transaction over ``collections`` (all when omitted).

        A readonly transaction takes one SQLite read snapshot, so every read
        inside it sees the same state. A readwrite transaction commits on a
        clean exit and rolls back when the block raises.
        """
        if mode not in ("readonly", "readwrite"):
            raise ValueError(f"Unknown transaction mode: {mode}")
        if mode == "readwrite" and self.read_only:
            raise PermissionError(f"Connection to {self.name} was opened read-only")
        if collections is None:
            names = self.collection_names
        elif isinstance(collections, str):
            names = [collections]
        else:
            names = list(collections)
        unknown = [n for n in names if n not in self._catalog]
        if unknown:
            raise KeyError(f"Unknown collections in {self.name}: {unknown}")

        async with self._tx_lock:
            if self.closed:
                raise MigrationGuardError(f"Connection to {self.name} is closed")
            self._in_transaction = True
            tx = Transaction(self, names, mode)
            try:
                await self._run(self._begin, mode)
                try:
                    yield tx
                except BaseException:
                    tx._finished = True
                    await self._run(self._rollback)
                    raise
                tx._finished = True
                await self._run(self._commit)
            finally:
                self._in_transaction = False
                if self.closed:
                    self._close_raw()

    def close(self) -> None:
        """Close the connection; a running transaction finishes first."""
        if self.closed:
            return
        self.closed = True
        self.environment._unregister(self)
        if not self._in_transaction:
            self._close_raw()

    def _fire_versionchange(self, old_version: int, new_version: Optional[int]) -> None:
        if self.on_versionchange is None:
            return
        try:
            self.on_versionchange(old_version, new_version)
        except Exception as e:
            logger.warning(f"versionchange handler for {self.name} failed: {e}")

    def _close_raw(self) -> None:
        with self._thread_lock:
            if self._raw is not None:
                self._raw.close()
                self._raw = None

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        def call():
            with self._thread_lock:
                if self._raw is None:
                    raise MigrationGuardError(f"Connection to {self.name} is closed")
                return func(self._raw, *args)

        try:
            return await asyncio.to_thread(call)
        except sqlite3.Error as e:
            raise _translate_error(e, self.name) from e

    @staticmethod
    def _begin(raw: sqlite3.Connection, mode: str) -> None:
        raw.execute("BEGIN" if mode == "readonly" else "BEGIN IMMEDIATE")
        try:
            # take the shared lock now so the snapshot starts here
            raw.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
        except sqlite3.Error:
            raw.execute("ROLLBACK")
            raise

    @staticmethod
    def _commit(raw: sqlite3.Connection) -> None:
        if raw.in_transaction:
            raw.execute("COMMIT")

    @staticmethod
    def _rollback(raw: sqlite3.Connection) -> None:
        if raw.in_transaction:
            raw.execute("ROLLBACK")

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"Connection(name={self.name!r}, version={self.version}, {state})"


class StoreEnvironment:
    """Hosts the versioned databases of one data directory."""

    def __init__(self, data_dir: str, busy_timeout: float = 5.0, supports_introspection: bool = True):
        self.data_dir = data_dir
        self.busy_timeout = busy_timeout
        self.supports_introspection = supports_introspection
        self._connections: Dict[str, List[Connection]] = {}
        self._lock = asyncio.Lock()

    def path_for(self, name: str) -> str:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid database name: {name!r}")
        return os.path.join(self.data_dir, f"{name}{DB_SUFFIX}")

    def open_connections(self, name: str) -> List[Connection]:
        return [c for c in self._connections.get(name, []) if not c.closed]

    async def databases(self) -> List[DatabaseInfo]:
        """List existing databases with their versions, without opening any for write.

        Raises:
            NotImplementedError: If introspection is disabled for this environment.
        """
        if not self.supports_introspection:
            raise NotImplementedError("Database introspection is not supported")
        return await asyncio.to_thread(self._list_databases)

    async def open(
        self,
        name: str,
        version: Optional[int] = None,
        *,
        mode: OpenMode = OpenMode.REAL_UPGRADE,
        on_upgrade: Optional[UpgradeCallback] = None,
        on_blocked: Optional[BlockedCallback] = None,
    ) -> Connection:
        """Open ``name`` at ``version`` (the current version when None).

        A database that does not exist is created at ``version`` (or 1),
        which fires the upgrade callback with ``old_version == 0``.

        Raises:
            VersionError: ``version`` is lower than the version on disk.
            UpgradePreconditionError: An upgrade would run in read-only mode.
            BlockedError: Other connections stay open during a version change,
                or another process holds a lock.
            UpgradeError: The upgrade callback raised; nothing was committed.
            UpgradeAbortedError: The upgrade callback aborted.
            StoreCorruptedError: The file is not a readable database.
        """
        if version is not None and version < 1:
            raise ValueError(f"Version must be a positive integer, got {version}")
        read_only = mode is OpenMode.READ_ONLY_NO_UPGRADE

        async with self._lock:
            path = self.path_for(name)
            existed = os.path.exists(path)
            try:
                current = await asyncio.to_thread(self._read_version, path) if existed else 0
            except sqlite3.Error as e:
                raise _translate_error(e, name) from e

            target = version if version is not None else max(current, 1)
            if target < current:
                raise VersionError(name, target, current)

            if target > current:
                if read_only:
                    raise UpgradePreconditionError(name, current, target)
                self._request_exclusive(name, current, target, on_blocked)
                await self._upgrade(name, path, existed, current, target, on_upgrade)

            try:
                raw, catalog = await asyncio.to_thread(self._connect, path, read_only)
            except sqlite3.Error as e:
                raise _translate_error(e, name) from e

            connection = Connection(self, name, raw, target, read_only, catalog)
            self._connections.setdefault(name, []).append(connection)
            logger.debug(f"Opened {name} at v{target} ({mode.value})")
            return connection

    async def delete_database(self, name: str, on_blocked: Optional[BlockedCallback] = None) -> bool:
        """Delete ``name`` and its journal files. Returns False if it did not exist.

        Raises:
            BlockedError: Connections to the database stay open.
        """
        async with self._lock:
            path = self.path_for(name)
            if not any(os.path.exists(path + suffix) for suffix in ("",) + SIDE_SUFFIXES):
                return False
            open_versions = [c.version for c in self.open_connections(name)]
            old_version = max(open_versions) if open_versions else 0
            self._request_exclusive(name, old_version, None, on_blocked)
            await asyncio.to_thread(self._remove_files, name, path)
            logger.info(f"Deleted database {name}")
            return True

    def close_all(self) -> None:
        for connections in list(self._connections.values()):
            for connection in list(connections):
                connection.close()

    def _unregister(self, connection: Connection) -> None:
        connections = self._connections.get(connection.name, [])
        if connection in connections:
            connections.remove(connection)

    def _request_exclusive(
        self,
        name: str,
        old_version: int,
        new_version: Optional[int],
        on_blocked: Optional[BlockedCallback],
    ) -> None:
        for connection in self.open_connections(name):
            connection._fire_versionchange(old_version, new_version)
        remaining = self.open_connections(name)
        if remaining:
            if on_blocked is not None:
                on_blocked(old_version, new_version)
            raise BlockedError(
                f"{len(remaining)} open connection(s) to {name} block the version change"
            )

    async def _upgrade(
        self,
        name: str,
        path: str,
        existed: bool,
        old_version: int,
        new_version: int,
        on_upgrade: Optional[UpgradeCallback],
    ) -> None:
        try:
            await asyncio.to_thread(self._run_upgrade, path, old_version, new_version, on_upgrade)
        except BaseException as e:
            if not existed:
                await asyncio.to_thread(self._remove_files, name, path, False)
            if isinstance(e, _CallbackError):
                cause = e.__cause__
                raise UpgradeError(
                    f"Upgrade of {name} from v{old_version} to v{new_version} failed: {cause}",
                    old_version,
                    new_version,
                ) from cause
            if isinstance(e, sqlite3.Error):
                raise _translate_error(e, name) from e
            if isinstance(e, (UpgradeAbortedError, BlockedError)):
                raise
            if isinstance(e, Exception):
                raise UpgradeError(
                    f"Upgrade of {name} from v{old_version} to v{new_version} failed: {e}",
                    old_version,
                    new_version,
                ) from e
            raise
        logger.info(f"Upgraded {name} from v{old_version} to v{new_version}")

    def _run_upgrade(
        self,
        path: str,
        old_version: int,
        new_version: int,
        on_upgrade: Optional[UpgradeCallback],
    ) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        raw = sqlite3.connect(path, timeout=self.busy_timeout, isolation_level=None)
        try:
            raw.execute("BEGIN EXCLUSIVE")
            try:
                on_disk = raw.execute("PRAGMA user_version").fetchone()[0]
                if on_disk != old_version:
                    raise BlockedError(
                        f"Version changed from v{old_version} to v{on_disk} during upgrade"
                    )
                raw.execute(
                    f"CREATE TABLE IF NOT EXISTS {CATALOG_TABLE} "
                    "(name TEXT PRIMARY KEY, key_path TEXT NOT NULL)"
                )
                if on_upgrade is not None:
                    tx = UpgradeTransaction(raw, _load_catalog(raw))
                    try:
                        on_upgrade(raw, tx, old_version, new_version)
                    except UpgradeAbortedError:
                        raise
                    except Exception as e:
                        # SQL errors from the callback are upgrade failures, not lock or read errors
                        raise _CallbackError() from e
                raw.execute(f"PRAGMA user_version = {int(new_version)}")
                raw.execute("COMMIT")
            except BaseException:
                if raw.in_transaction:
                    raw.execute("ROLLBACK")
                raise
        finally:
            raw.close()

    def _read_version(self, path: str) -> int:
        raw = sqlite3.connect(self._read_only_uri(path), uri=True, timeout=self.busy_timeout)
        try:
            return raw.execute("PRAGMA user_version").fetchone()[0]
        finally:
            raw.close()

    def _connect(self, path: str, read_only: bool):
        if read_only:
            raw = sqlite3.connect(
                self._read_only_uri(path),
                uri=True,
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        else:
            raw = sqlite3.connect(
                path,
                timeout=self.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        try:
            catalog = _load_catalog(raw)
        except sqlite3.Error:
            raw.close()
            raise
        return raw, catalog

    def _list_databases(self) -> List[DatabaseInfo]:
        if not os.path.isdir(self.data_dir):
            return []
        found = []
        for entry in sorted(os.listdir(self.data_dir)):
            if not entry.endswith(DB_SUFFIX):
                continue
            name = entry[: -len(DB_SUFFIX)]
            try:
                version = self._read_version(os.path.join(self.data_dir, entry))
            except sqlite3.Error as e:
                raise _translate_error(e, name) from e
            if version > 0:
                found.append(DatabaseInfo(name=name, version=version))
        return found

    def _remove_files(self, name: str, path: str, check_lock: bool = True) -> None:
        if check_lock and os.path.exists(path):
            self._ensure_unlocked(name, path)
        for suffix in ("",) + SIDE_SUFFIXES:
            try:
                os.remove(path + suffix)
            except FileNotFoundError:
                pass

    def _ensure_unlocked(self, name: str, path: str) -> None:
        raw = sqlite3.connect(path, timeout=self.busy_timeout, isolation_level=None)
        try:
            raw.execute("BEGIN EXCLUSIVE")
            raw.execute("ROLLBACK")
        except sqlite3.OperationalError as e:
            error = _translate_error(e, name)
            if isinstance(error, BlockedError):
                raise error from e
            logger.debug(f"Lock probe on {name} failed, deleting anyway: {e}")
        except sqlite3.DatabaseError as e:
            logger.debug(f"Lock probe on {name} failed, deleting anyway: {e}")
        finally:
            raw.close()

    @staticmethod
    def _read_only_uri(path: str) -> str:
        return Path(path).absolute().as_uri() + "?mode=ro"
