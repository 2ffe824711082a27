"""Scheduling store contract and a JSON-backed implementation with atomic writes."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from .core.timezone_utils import now_utc
from .exceptions import PersistenceError
from .models import MasterEvent

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[MasterEvent]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class SchedulingStore(Protocol):
    """Persistence collaborator for master events.

    Every call may fail; implementations raise ``PersistenceError`` and never
    retry on their own.
    """

    async def create_master(self, data: MasterEvent) -> str:
        """Persist a new master and return its id."""
        ...

    async def update_master(self, master_id: str, patch: Mapping[str, Any]) -> None:
        """Apply a partial update to an existing master."""
        ...

    async def update_master_time(
        self, master_id: str, start: datetime, end: datetime, all_day: bool
    ) -> None:
        """Move or resize a master (drag/resize path)."""
        ...

    async def delete_master(self, master_id: str) -> None:
        """Remove a master and its whole series."""
        ...

    def subscribe(
        self, callback: SnapshotCallback, on_error: Optional[ErrorCallback] = None
    ) -> Unsubscribe:
        """Deliver the current masters now and after every change."""
        ...


class _Subscription:
    def __init__(
        self,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback],
        user_id: Optional[str],
    ) -> None:
        self.callback = callback
        self.on_error = on_error
        self.user_id = user_id


class JsonSchedulingStore:
    """Scheduling store keeping masters in memory and, optionally, in a JSON file.

    The on-disk format is a JSON object mapping master id -> master record.
    Writes go to a temporary file in the same directory and are moved into
    place with ``Path.replace``. A failed write restores the previous
    in-memory state and raises ``PersistenceError``.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """Create a store.

        Args:
            path: Optional JSON file. Without one the store is memory-only.
        """
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._masters: dict[str, MasterEvent] = {}
        self._subscriptions: list[_Subscription] = []

        if self._path is not None:
            self.load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def load(self) -> None:
        """Read masters from disk; malformed records are logged and skipped."""
        if self._path is None:
            return
        with self._lock:
            if not self._path.exists():
                logger.debug("Store file not found; starting empty: %s", self._path)
                self._masters = {}
                return

            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as exc:
                raise PersistenceError("load", f"cannot read {self._path}: {exc}") from exc
            if not isinstance(data, dict):
                raise PersistenceError("load", f"{self._path}: JSON root must be an object")

            masters: dict[str, MasterEvent] = {}
            for master_id, record in data.items():
                if not isinstance(record, dict):
                    logger.warning("Skipping non-object record %r in %s", master_id, self._path)
                    continue
                try:
                    masters[master_id] = MasterEvent.model_validate({**record, "id": master_id})
                except ValidationError as exc:
                    logger.warning("Skipping invalid master %s: %s", master_id, exc)
            self._masters = masters
            logger.debug("Loaded store %s (%d masters)", self._path, len(masters))

    def _persist_locked(self) -> None:
        if self._path is None:
            return

        data = {
            master_id: master.model_dump(mode="json", exclude={"id"})
            for master_id, master in self._masters.items()
        }
        tmp_path = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self._path.parent, delete=False, encoding="utf-8"
            ) as tf:
                tmp_path = Path(tf.name)
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                with contextlib.suppress(OSError):
                    os.fsync(tf.fileno())
            tmp_path.replace(self._path)
        except OSError:
            if tmp_path is not None:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
            raise

    def _commit_locked(self, operation: str, previous: dict[str, MasterEvent]) -> None:
        try:
            self._persist_locked()
        except OSError as exc:
            self._masters = previous
            logger.warning("Failed to persist store after %s: %s", operation, exc)
            raise PersistenceError(operation, str(exc)) from exc

    def _get_locked(self, operation: str, master_id: str) -> MasterEvent:
        master = self._masters.get(master_id)
        if master is None:
            raise PersistenceError(operation, f"unknown master id {master_id!r}")
        return master

    # Queries

    def get_master(self, master_id: str) -> Optional[MasterEvent]:
        with self._lock:
            return self._masters.get(master_id)

    def list_masters(self, user_id: Optional[str] = None) -> list[MasterEvent]:
        """Masters ordered by start, optionally limited to one user."""
        with self._lock:
            return self._snapshot_locked(user_id)

    def _snapshot_locked(self, user_id: Optional[str]) -> list[MasterEvent]:
        masters = [
            m for m in self._masters.values() if user_id is None or m.user_id == user_id
        ]
        masters.sort(key=lambda m: (m.start, m.id or ""))
        return masters

    # Mutations
    #
    # Blocking work runs in the default executor; subscribers are notified on
    # the calling loop.

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _create_sync(self, data: MasterEvent) -> str:
        master_id = uuid.uuid4().hex
        now = now_utc()
        with self._lock:
            previous = dict(self._masters)
            self._masters[master_id] = data.model_copy(
                update={"id": master_id, "created_at": now, "updated_at": now}
            )
            self._commit_locked("create", previous)
        return master_id

    def _update_sync(self, master_id: str, patch: Mapping[str, Any]) -> None:
        with self._lock:
            current = self._get_locked("update", master_id)
            record = {**current.model_dump(), **dict(patch), "id": master_id, "updated_at": now_utc()}
            try:
                updated = MasterEvent.model_validate(record)
            except ValidationError as exc:
                raise PersistenceError("update", f"invalid patch for {master_id}: {exc}") from exc
            previous = dict(self._masters)
            self._masters[master_id] = updated
            self._commit_locked("update", previous)

    def _delete_sync(self, master_id: str) -> None:
        with self._lock:
            self._get_locked("delete", master_id)
            previous = dict(self._masters)
            del self._masters[master_id]
            self._commit_locked("delete", previous)

    async def create_master(self, data: MasterEvent) -> str:
        master_id = await self._run_blocking(self._create_sync, data)
        logger.info("Created master %s (%s)", master_id, data.title)
        self._notify()
        return master_id

    async def update_master(self, master_id: str, patch: Mapping[str, Any]) -> None:
        await self._run_blocking(self._update_sync, master_id, patch)
        logger.debug("Updated master %s fields: %s", master_id, ", ".join(sorted(patch)))
        self._notify()

    async def update_master_time(
        self, master_id: str, start: datetime, end: datetime, all_day: bool
    ) -> None:
        await self.update_master(master_id, {"start": start, "end": end, "all_day": all_day})

    async def delete_master(self, master_id: str) -> None:
        await self._run_blocking(self._delete_sync, master_id)
        logger.info("Deleted master %s", master_id)
        self._notify()

    # Subscriptions

    def subscribe(
        self,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
        user_id: Optional[str] = None,
    ) -> Unsubscribe:
        """Register ``callback`` and deliver the current snapshot immediately.

        Returns:
            Callable removing the subscription; calling it twice is harmless
        """
        subscription = _Subscription(callback, on_error, user_id)
        with self._lock:
            self._subscriptions.append(subscription)
        self._deliver(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            self._deliver(subscription)

    def _deliver(self, subscription: _Subscription) -> None:
        with self._lock:
            snapshot = self._snapshot_locked(subscription.user_id)
        try:
            subscription.callback(snapshot)
        except Exception as exc:
            if subscription.on_error is None:
                logger.exception("Store subscriber failed")
                return
            subscription.on_error(exc)
