"""
Session coordinator: the one place where the countdown, the distraction list
and the local store meet.

Startup restores whatever the store remembers (a countdown still in progress,
the list of distractions). After that every user action changes memory first,
tells the view, and then writes the full record. Countdown writes are fire and
forget; list writes are awaited so a failure can be rolled back.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from minipomodoro import db
from minipomodoro.countdown import Completed, CountdownEngine, CountdownEvent, Started, Stopped, Tick
from minipomodoro.errors import AlreadyRunningError, NotReadyError, PersistenceError
from minipomodoro.models import CountdownRecord, DistractionListRecord, ListItem
from minipomodoro.notifications import AlertChannel, CompletionAnnouncer
from minipomodoro.store import Migrations, PersistentStore

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class SessionView:
    """What the coordinator tells the UI. Override the calls you render."""

    def on_tick(self, time_left_ms: int, elapsed_ms: int, duration_ms: int) -> None:
        pass

    def on_timer_state_changed(self, is_running: bool) -> None:
        pass

    def on_list_changed(self, items: list[ListItem]) -> None:
        pass

    def on_persistence_error(self, operation: str, error: PersistenceError) -> None:
        pass


class SessionCoordinator:
    def __init__(
        self,
        store: PersistentStore,
        engine: CountdownEngine,
        *,
        timer_id: str,
        list_id: str,
        store_name: str = db.STORE_NAME,
        schema_version: int = db.SCHEMA_VERSION,
        migrations: Migrations = db.MIGRATIONS,
        view: Optional[SessionView] = None,
        alerts: Optional[AlertChannel] = None,
        announcer: Optional[CompletionAnnouncer] = None,
    ):
        self._store = store
        self._engine = engine
        self._timer_id = timer_id
        self._list_id = list_id
        self._store_name = store_name
        self._schema_version = schema_version
        self._migrations = migrations
        self._view = view or SessionView()
        self._alerts = alerts or AlertChannel()
        self._announcer = announcer or CompletionAnnouncer()
        self._alerts.subscribe(self._view.on_persistence_error)

        self._ready = False
        self._items: tuple[ListItem, ...] = ()
        # last list the store confirmed, and the edit it came from
        self._persisted: tuple[ListItem, ...] = ()
        self._persisted_seq = 0
        self._list_seq = 0
        self._list_writes = 0
        self._pending: set[asyncio.Task] = set()

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def timer_id(self) -> str:
        return self._timer_id

    @property
    def list_id(self) -> str:
        return self._list_id

    @property
    def alerts(self) -> AlertChannel:
        return self._alerts

    @property
    def announcer(self) -> CompletionAnnouncer:
        return self._announcer

    @property
    def items(self) -> list[ListItem]:
        return list(self._items)

    @property
    def is_running(self) -> bool:
        return self._engine.is_running

    @property
    def start_timestamp(self) -> Optional[int]:
        return self._engine.start_timestamp

    @property
    def duration_ms(self) -> int:
        return self._engine.duration_ms

    @duration_ms.setter
    def duration_ms(self, value: int) -> None:
        # the running countdown's duration is already saved with its record
        if self._engine.is_running:
            raise AlreadyRunningError("Cannot change the duration of a running countdown")
        self._engine.duration_ms = value

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def open(self) -> None:
        """Open the store and restore the saved countdown and list."""
        if self._ready:
            return
        try:
            await self._store.open(self._store_name, self._schema_version, self._migrations)
        except PersistenceError as exc:
            self._alerts.report("open store", exc)
            raise

        await self._restore_countdown()
        await self._restore_list()
        self._ready = True
        logger.info(
            "session ready (timer %s running=%s, %d distractions)",
            self._timer_id, self._engine.is_running, len(self._items),
        )

    async def drain(self) -> None:
        """Wait until every countdown write submitted so far has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        # The saved countdown record stays so the next open() resumes it.
        self._engine.stop()
        await self.drain()
        await self._store.close()
        self._ready = False

    async def _restore_countdown(self) -> None:
        try:
            raw = await self._store.get(db.COUNTDOWNS, self._timer_id)
        except PersistenceError as exc:
            self._alerts.report("load countdown", exc)
            return

        record = _parse(CountdownRecord, raw)
        if record is None or record.start_timestamp is None:
            return

        duration = record.duration_ms if record.duration_ms is not None else self._engine.duration_ms
        if record.start_timestamp + duration <= self._engine.now():
            logger.info("discarding expired countdown %s", self._timer_id)
            self._submit("delete countdown", self._store.delete, db.COUNTDOWNS, self._timer_id)
            return
        try:
            self._engine.duration_ms = duration
        except (TypeError, ValueError) as exc:
            logger.debug("ignoring countdown %s with bad duration: %s", self._timer_id, exc)
            return

        self._view.on_timer_state_changed(True)
        self._engine.resume(record.start_timestamp, self._handle, self._handle)

    async def _restore_list(self) -> None:
        try:
            raw = await self._store.get(db.LISTS, self._list_id)
        except PersistenceError as exc:
            self._alerts.report("load list", exc)
            raw = None

        record = _parse(DistractionListRecord, raw)
        self._items = tuple(record.items) if record is not None else ()
        self._persisted = self._items
        self._view.on_list_changed(list(self._items))

    # ------------------------------------------------------------------ #
    # Countdown
    # ------------------------------------------------------------------ #

    def start_timer(self) -> int:
        self._require_ready()
        return self._engine.start(self._handle, self._handle, self._handle)

    def stop_timer(self) -> bool:
        """Stop the countdown; returns False if it was not running."""
        self._require_ready()
        event = self._engine.stop()
        if event is None:
            return False
        self._handle(event)
        return True

    def _handle(self, event: CountdownEvent) -> None:
        if isinstance(event, Tick):
            self._view.on_tick(event.time_left_ms, event.elapsed_ms, event.duration_ms)
        elif isinstance(event, Started):
            record = CountdownRecord(
                id=self._timer_id,
                start_timestamp=event.timestamp,
                duration_ms=self._engine.duration_ms,
            )
            self._submit("save countdown", self._store.put, db.COUNTDOWNS, record.to_record())
            self._view.on_timer_state_changed(True)
        elif isinstance(event, Completed):
            self._submit("delete countdown", self._store.delete, db.COUNTDOWNS, self._timer_id)
            self._view.on_timer_state_changed(False)
            self._announcer.announce_completion()
        elif isinstance(event, Stopped):
            self._submit("delete countdown", self._store.delete, db.COUNTDOWNS, self._timer_id)
            self._view.on_timer_state_changed(False)
        else:
            raise TypeError(f"Unhandled countdown event {event!r}")

    def _submit(self, operation: str, write, *args: Any) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._guard(operation, write, *args))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _guard(self, operation: str, write, *args: Any) -> None:
        try:
            await write(*args)
        except PersistenceError as exc:
            # the countdown keeps running; only resumability is lost
            self._alerts.report(operation, exc)

    # ------------------------------------------------------------------ #
    # Distraction list
    # ------------------------------------------------------------------ #

    async def add_item(self, text: str) -> list[ListItem]:
        self._require_ready()
        item = ListItem(text=text)
        return await self._replace_items("add item", self._items + (item,))

    async def remove_item(self, index: int) -> list[ListItem]:
        self._require_ready()
        if not 0 <= index < len(self._items):
            raise IndexError(f"No distraction at position {index}")
        return await self._replace_items("remove item", self._items[:index] + self._items[index + 1:])

    async def _replace_items(self, operation: str, items: tuple[ListItem, ...]) -> list[ListItem]:
        self._list_seq += 1
        seq = self._list_seq
        self._items = items
        self._view.on_list_changed(list(items))

        record = DistractionListRecord(id=self._list_id, items=list(items))
        self._list_writes += 1
        try:
            await self._store.put(db.LISTS, record.to_record())
        except PersistenceError as exc:
            self._list_writes -= 1
            self._settle_items()
            self._alerts.report(operation, exc)
            raise
        self._list_writes -= 1
        if seq > self._persisted_seq:
            self._persisted = items
            self._persisted_seq = seq
        self._settle_items()
        return list(self._items)

    def _settle_items(self) -> None:
        # While a list write is in flight it carries the newest list, so only
        # the last write to finish may reconcile memory with the store.
        if self._list_writes == 0 and self._items != self._persisted:
            self._items = self._persisted
            self._view.on_list_changed(list(self._persisted))

    def _require_ready(self) -> None:
        if not self._ready:
            raise NotReadyError("Session has not finished loading")


def _parse(model: type[RecordT], raw: Optional[dict]) -> Optional[RecordT]:
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.debug("ignoring malformed %s: %s", model.__name__, exc)
        return None
