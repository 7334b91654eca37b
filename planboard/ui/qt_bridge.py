from __future__ import annotations

from typing import Callable

from PySide6.QtCore import QMimeData, QObject, QTimer, Signal

from planboard.domain.errors import PlanningError
from planboard.domain.reorder import DragGesture, Point
from planboard.services.planning_store import PlanningStore

TASK_MIME_PREFIX = "task:"


class _QtTimerHandle:
    def __init__(self, timer: QTimer, on_done: Callable[[QTimer], None]) -> None:
        self._timer = timer
        self._on_done = on_done
        self.done = False

    def cancel(self) -> None:
        if self.done:
            return
        self.done = True
        self._timer.stop()
        self._on_done(self._timer)

    @property
    def active(self) -> bool:
        return not self.done and self._timer.isActive()


class QtTimerScheduler:
    """One-shot timers on the Qt event loop."""

    def __init__(self, parent: QObject | None = None) -> None:
        self._parent = parent
        self._timers: set[QTimer] = set()

    def schedule(self, fn: Callable[[], None], delay_ms: int) -> _QtTimerHandle:
        timer = QTimer(self._parent)
        timer.setSingleShot(True)
        timer.setInterval(max(delay_ms, 0))

        handle = _QtTimerHandle(timer, self._release)

        def fire() -> None:
            handle.done = True
            self._release(timer)
            fn()

        timer.timeout.connect(fire)
        self._timers.add(timer)
        timer.start()
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for timer in self._timers if timer.isActive())

    def _release(self, timer: QTimer) -> None:
        if timer in self._timers:
            self._timers.discard(timer)
            timer.deleteLater()


class StoreBridge(QObject):
    changed = Signal()
    error_raised = Signal(str)

    def __init__(self, store: PlanningStore, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.store = store
        self._unsubscribe = store.subscribe(self._on_change)
        self._unsubscribe_errors = store.on_error(self._on_error)

    def _on_change(self, _store: PlanningStore) -> None:
        self.changed.emit()

    def _on_error(self, message: str, _error: PlanningError) -> None:
        self.error_raised.emit(message)

    def detach(self) -> None:
        self._unsubscribe()
        self._unsubscribe_errors()


def task_mime(task_id: str) -> QMimeData:
    mime = QMimeData()
    mime.setText(f"{TASK_MIME_PREFIX}{task_id}")
    return mime


def task_id_from_mime(mime: QMimeData) -> str | None:
    if not mime.hasText():
        return None
    text = mime.text()
    if not text.startswith(TASK_MIME_PREFIX):
        return None
    return text[len(TASK_MIME_PREFIX):] or None


def gesture_from_drop(
    mime: QMimeData,
    source_column_id: str,
    drop_target: str | None = None,
    x: float | None = None,
    y: float | None = None,
) -> DragGesture | None:
    task_id = task_id_from_mime(mime)
    if task_id is None:
        return None
    pointer = Point(x, y) if x is not None and y is not None else None
    return DragGesture(
        dragged_task_id=task_id,
        source_column_id=source_column_id,
        drop_target=drop_target,
        last_pointer=pointer,
    )
