"""
Versioned local record store on SQLite.

A store is one SQLite file holding named collections of JSON records. Each
collection is a table keyed by one field of its records (the key path). The
schema version lives in `PRAGMA user_version`; opening a store that is behind
the requested version runs the missing migration steps inside the transaction
that bumps the version, so an upgrade either fully happens or not at all.

The collection catalog is kept in two SQLModel tables (see models.py) so the
store can check keys and indexes without asking SQLite for its schema.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import Session, SQLModel, select

from minipomodoro.errors import (
    PersistenceError,
    ReadError,
    StoreOpenError,
    UnknownCollectionError,
    WriteError,
)
from minipomodoro.models import CollectionInfo, IndexInfo

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")
_KEY_PATH_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Key = Union[str, int]


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    key_path: str
    auto_increment: bool
    indexes: tuple[str, ...] = ()


class UpgradeTransaction:
    """
    Handed to a migration while the store is being upgraded.

    All changes share the upgrade transaction. Creating something that already
    exists with the same definition does nothing; a different definition
    aborts the upgrade.
    """

    def __init__(self, connection: Connection, old_version: int, new_version: int):
        self.old_version = old_version
        self.new_version = new_version
        self._connection = connection
        self._session = Session(bind=connection, join_transaction_mode="create_savepoint")

    def __enter__(self) -> "UpgradeTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self._session.commit()
        self._session.close()

    def create_collection(self, name: str, key_path: str = "id", auto_increment: bool = False) -> None:
        _check_name(name)
        _check_key_path(key_path)
        existing = self._session.get(CollectionInfo, name)
        if existing is not None:
            if existing.key_path == key_path and existing.auto_increment == auto_increment:
                return
            raise StoreOpenError(f"Collection {name!r} already exists with key {existing.key_path!r}")

        key_column = "record_key INTEGER PRIMARY KEY AUTOINCREMENT" if auto_increment else "record_key PRIMARY KEY"
        self._connection.exec_driver_sql(
            f"CREATE TABLE IF NOT EXISTS {_quote(name)} ({key_column}, record TEXT NOT NULL)"
        )
        self._session.add(CollectionInfo(name=name, key_path=key_path, auto_increment=auto_increment))
        self._session.flush()
        logger.info("created collection %s (key %s)", name, key_path)

    def rename_collection(self, old_name: str, new_name: str) -> None:
        _check_name(new_name)
        info = self._session.get(CollectionInfo, old_name)
        if info is None:
            if self._session.get(CollectionInfo, new_name) is not None:
                return
            raise UnknownCollectionError(f"No collection named {old_name!r}")
        if self._session.get(CollectionInfo, new_name) is not None:
            raise StoreOpenError(f"Collection {new_name!r} already exists")

        self._connection.exec_driver_sql(f"ALTER TABLE {_quote(old_name)} RENAME TO {_quote(new_name)}")
        renamed = CollectionInfo(name=new_name, key_path=info.key_path, auto_increment=info.auto_increment)
        self._session.delete(info)
        self._session.flush()
        self._session.add(renamed)
        for index in self._session.exec(select(IndexInfo).where(IndexInfo.collection == old_name)).all():
            index.collection = new_name
            self._session.add(index)
        self._session.flush()
        logger.info("renamed collection %s to %s", old_name, new_name)

    def delete_collection(self, name: str) -> None:
        info = self._session.get(CollectionInfo, name)
        if info is None:
            return
        self._connection.exec_driver_sql(f"DROP TABLE IF EXISTS {_quote(name)}")
        for index in self._session.exec(select(IndexInfo).where(IndexInfo.collection == name)).all():
            self._session.delete(index)
        self._session.delete(info)
        self._session.flush()
        logger.info("deleted collection %s", name)

    def create_index(self, collection: str, name: str, key_path: str, unique: bool = False) -> None:
        _check_name(name)
        _check_key_path(key_path)
        if self._session.get(CollectionInfo, collection) is None:
            raise UnknownCollectionError(f"No collection named {collection!r}")

        statement = select(IndexInfo).where(IndexInfo.collection == collection, IndexInfo.name == name)
        existing = self._session.exec(statement).first()
        if existing is not None:
            if existing.key_path == key_path and existing.unique == unique:
                return
            raise StoreOpenError(f"Index {name!r} on {collection!r} already exists with key {existing.key_path!r}")

        sql_name = "ix_" + re.sub(r"\W", "_", f"{collection}_{name}")
        self._connection.exec_driver_sql(
            f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS {_quote(sql_name)} "
            f"ON {_quote(collection)} (json_extract(record, '$.{key_path}'))"
        )
        self._session.add(
            IndexInfo(collection=collection, name=name, key_path=key_path, unique=unique, sql_name=sql_name)
        )
        self._session.flush()
        logger.info("created index %s on %s(%s)", name, collection, key_path)


# migrations[n] upgrades a store from version n to n + 1
MigrationStep = Callable[[UpgradeTransaction], None]
Migrations = Sequence[MigrationStep]


class PersistentStore:
    """Async key-value store; one SQLite file per store name under `directory`."""

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)
        self._engine: Optional[AsyncEngine] = None
        self._name: Optional[str] = None
        self._version: Optional[int] = None
        self._collections: dict[str, CollectionSpec] = {}
        self._write_lock = asyncio.Lock()
        self._open_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def version(self) -> Optional[int]:
        return self._version

    @property
    def collections(self) -> dict[str, CollectionSpec]:
        return dict(self._collections)

    def path_for(self, name: str) -> Path:
        return self._directory / f"{name}.sqlite3"

    async def open(self, name: str, version: int, migrations: Migrations) -> None:
        """
        Open (creating if needed) the store `name` at schema `version`.

        A store at version n gets `migrations[n:version]` applied in order,
        all in one transaction. Calling it again with the same arguments does
        nothing.
        """
        async with self._open_lock:
            await self._open(name, version, migrations)

    async def _open(self, name: str, version: int, migrations: Migrations) -> None:
        if self._engine is not None:
            if (name, version) != (self._name, self._version):
                raise StoreOpenError(f"Store already open as {self._name!r} at version {self._version}")
            return
        if isinstance(version, bool) or not isinstance(version, int) or version < 0:
            raise ValueError("Schema version must be a non-negative integer")
        if len(migrations) < version:
            raise ValueError(f"Need {version} migration steps, got {len(migrations)}")
        _check_name(name)

        path = self.path_for(name)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreOpenError(f"Cannot create store directory {self._directory}: {exc}") from exc

        engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
        _use_explicit_transactions(engine)
        try:
            async with engine.begin() as conn:
                catalog = await conn.run_sync(_upgrade, name, version, migrations)
        except Exception as exc:
            await engine.dispose()
            if isinstance(exc, StoreOpenError):
                raise
            if isinstance(exc, (SQLAlchemyError, PersistenceError)):
                raise StoreOpenError(f"Could not open store {name!r}: {exc}") from exc
            raise

        self._engine = engine
        self._name = name
        self._version = version
        self._collections = catalog
        logger.info("opened store %s at version %d (%s)", name, version, path)

    async def close(self) -> None:
        async with self._open_lock:
            if self._engine is None:
                return
            engine, self._engine = self._engine, None
            await engine.dispose()
            logger.info("closed store %s", self._name)
            self._name = None
            self._version = None
            self._collections = {}

    async def get(self, collection: str, key: Key) -> Optional[dict[str, Any]]:
        """Return the record stored under `key`, or None."""
        table = _quote(self._spec(collection).name)
        try:
            async with self._require_engine().connect() as conn:
                result = await conn.execute(
                    text(f"SELECT record FROM {table} WHERE record_key = :key"), {"key": key}
                )
                row = result.first()
        except SQLAlchemyError as exc:
            raise ReadError(f"Reading {collection}[{key!r}] failed: {exc}") from exc

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as exc:
            raise ReadError(f"Record {collection}[{key!r}] is not valid JSON") from exc

    async def put(self, collection: str, record: dict[str, Any]) -> Key:
        """Insert or replace `record` under its key and return the key."""
        spec = self._spec(collection)
        table = _quote(spec.name)
        key = record.get(spec.key_path)
        if key is None and not spec.auto_increment:
            raise ValueError(f"Record for {collection} has no {spec.key_path!r} field")
        if key is not None and (isinstance(key, bool) or not isinstance(key, (str, int))):
            raise ValueError(f"Key {spec.key_path!r} must be a string or an integer")
        payload = json.dumps(record)
        engine = self._require_engine()

        async with self._write_lock:
            try:
                async with engine.begin() as conn:
                    if key is None:
                        result = await conn.execute(
                            text(f"INSERT INTO {table} (record) VALUES (:record)"), {"record": payload}
                        )
                        key = result.lastrowid
                        payload = json.dumps({**record, spec.key_path: key})
                    await conn.execute(
                        text(
                            f"INSERT INTO {table} (record_key, record) VALUES (:key, :record) "
                            "ON CONFLICT(record_key) DO UPDATE SET record = excluded.record"
                        ),
                        {"key": key, "record": payload},
                    )
            except SQLAlchemyError as exc:
                raise WriteError(f"Writing {collection}[{key!r}] failed: {exc}") from exc
        return key

    async def delete(self, collection: str, key: Key) -> None:
        """Remove the record under `key`; missing keys are fine."""
        table = _quote(self._spec(collection).name)
        engine = self._require_engine()
        async with self._write_lock:
            try:
                async with engine.begin() as conn:
                    await conn.execute(text(f"DELETE FROM {table} WHERE record_key = :key"), {"key": key})
            except SQLAlchemyError as exc:
                raise WriteError(f"Deleting {collection}[{key!r}] failed: {exc}") from exc

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StoreOpenError("Store is not open")
        return self._engine

    def _spec(self, collection: str) -> CollectionSpec:
        self._require_engine()
        try:
            return self._collections[collection]
        except KeyError:
            raise UnknownCollectionError(f"No collection named {collection!r} in store {self._name!r}") from None


def _upgrade(connection: Connection, name: str, version: int, migrations: Migrations) -> dict[str, CollectionSpec]:
    old_version = connection.exec_driver_sql("PRAGMA user_version").scalar_one()
    if old_version > version:
        raise StoreOpenError(f"Store {name!r} is at version {old_version}, newer than {version}")

    if old_version < version:
        logger.info("upgrading store %s from version %d to %d", name, old_version, version)
        SQLModel.metadata.create_all(connection, tables=[CollectionInfo.__table__, IndexInfo.__table__])
        with UpgradeTransaction(connection, old_version, version) as tx:
            for step in range(old_version, version):
                migrations[step](tx)
                logger.info("store %s: applied migration %d -> %d", name, step, step + 1)
        connection.exec_driver_sql(f"PRAGMA user_version = {int(version)}")

    return _read_catalog(connection)


def _read_catalog(connection: Connection) -> dict[str, CollectionSpec]:
    if not inspect(connection).has_table(CollectionInfo.__tablename__):
        return {}
    with Session(bind=connection, join_transaction_mode="create_savepoint") as session:
        collections = session.exec(select(CollectionInfo)).all()
        indexes = session.exec(select(IndexInfo)).all()
        return {
            info.name: CollectionSpec(
                name=info.name,
                key_path=info.key_path,
                auto_increment=info.auto_increment,
                indexes=tuple(sorted(i.name for i in indexes if i.collection == info.name)),
            )
            for info in collections
        }


def _use_explicit_transactions(engine: AsyncEngine) -> None:
    # pysqlite only opens transactions before DML; take over so DDL in an
    # upgrade is covered by the same BEGIN as the version bump.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _check_name(name: str) -> None:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise ValueError(f"Invalid name {name!r}")


def _check_key_path(key_path: str) -> None:
    if not isinstance(key_path, str) or not _KEY_PATH_RE.match(key_path):
        raise ValueError(f"Invalid key path {key_path!r}")
