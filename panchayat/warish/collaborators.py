from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol
from uuid import uuid4

from flask import Flask, current_app
from werkzeug.utils import secure_filename

from panchayat.core.config import WorkflowSettings
from panchayat.warish.errors import StorageFailure, StorageTimeout, WarishError

logger = logging.getLogger(__name__)

SETTINGS_KEY = "warish.settings"
STORAGE_KEY = "warish.storage"
NOTIFIER_KEY = "warish.notifier"


@dataclass(frozen=True)
class StoredObject:
    url: str
    storage_id: str


class StorageBackend(Protocol):
    def upload(self, content: bytes, mime_type: str, folder_hint: str, filename: str) -> StoredObject:
        ...

    def delete(self, storage_id: str) -> None:
        ...


class Notifier(Protocol):
    def notify(self, recipient: str, event: str, payload: dict[str, Any]) -> None:
        ...


class LocalFileStorage:
    """Stores uploads below ``root``; the storage id is the path relative to it."""

    def __init__(self, root: Path, url_prefix: str = "/storage") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def upload(self, content: bytes, mime_type: str, folder_hint: str, filename: str) -> StoredObject:
        folder = Path(*[secure_filename(part) for part in folder_hint.split("/") if secure_filename(part)])
        name = secure_filename(filename) or "document.bin"
        relative = folder / f"{uuid4().hex[:12]}-{name}"
        absolute = self.root / relative
        absolute.parent.mkdir(parents=True, exist_ok=True)
        absolute.write_bytes(content)
        storage_id = relative.as_posix()
        return StoredObject(url=f"{self.url_prefix}/{storage_id}", storage_id=storage_id)

    def delete(self, storage_id: str) -> None:
        absolute = self.root / storage_id
        if absolute.exists():
            absolute.unlink()


class StorageGateway:
    """Runs backend calls on a worker thread and bounds how long callers wait."""

    def __init__(self, backend: StorageBackend, timeout_seconds: float, max_workers: int = 4) -> None:
        self.backend = backend
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="warish-storage")

    def upload(self, content: bytes, mime_type: str, folder_hint: str, filename: str) -> StoredObject:
        return self._call(
            "upload",
            self.backend.upload,
            content,
            mime_type,
            folder_hint,
            filename,
            on_late_result=self._discard_late_upload,
        )

    def delete(self, storage_id: str) -> None:
        self._call("delete", self.backend.delete, storage_id)

    def discard(self, storage_id: str) -> None:
        """Best-effort removal used when the metadata write that followed an upload failed."""
        try:
            self.delete(storage_id)
        except WarishError as exc:
            logger.error("Could not remove orphaned storage object %s: %s", storage_id, exc.message)

    def _call(
        self,
        action: str,
        fn: Callable[..., Any],
        *args: Any,
        on_late_result: Callable[[Future], None] | None = None,
    ) -> Any:
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            if not future.cancel() and on_late_result is not None:
                future.add_done_callback(on_late_result)
            logger.error("Storage %s timed out after %.1fs", action, self.timeout_seconds)
            raise StorageTimeout(f"Storage {action} did not answer within {self.timeout_seconds:g}s") from exc
        except WarishError:
            raise
        except Exception as exc:
            logger.exception("Storage %s failed", action)
            raise StorageFailure(f"Storage {action} failed") from exc

    def _discard_late_upload(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        stored = future.result()
        logger.warning("Removing upload %s that completed after its timeout", stored.storage_id)
        try:
            self.backend.delete(stored.storage_id)
        except Exception:
            logger.exception("Could not remove late upload %s", stored.storage_id)


class LogNotifier:
    def notify(self, recipient: str, event: str, payload: dict[str, Any]) -> None:
        logger.info("notify %s event=%s payload=%s", recipient, event, payload)


def init_warish(app: Flask) -> None:
    settings = WorkflowSettings.from_config(app.config)
    root = app.config.get("WARISH_STORAGE_ROOT") or str(Path(app.instance_path) / "storage" / "warish")
    app.extensions[SETTINGS_KEY] = settings
    app.extensions.setdefault(STORAGE_KEY, StorageGateway(LocalFileStorage(Path(root)), settings.storage_timeout_seconds))
    app.extensions.setdefault(NOTIFIER_KEY, LogNotifier())


def workflow_settings() -> WorkflowSettings:
    return current_app.extensions[SETTINGS_KEY]


def storage() -> StorageGateway:
    return current_app.extensions[STORAGE_KEY]


def notifier() -> Notifier:
    return current_app.extensions[NOTIFIER_KEY]


def notify_safely(recipient: str | None, event: str, payload: dict[str, Any]) -> None:
    if not recipient:
        return
    try:
        notifier().notify(recipient, event, payload)
    except Exception:
        logger.warning("Notification %s for %s failed", event, recipient, exc_info=True)
