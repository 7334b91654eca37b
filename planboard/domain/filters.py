from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .entities import Task


def default_ui_state() -> dict[str, Any]:
    return {
        "filters": {"tags": [], "priority": None},
        "layout": {"timeline_collapsed": False},
    }


def merge_ui_state(current: Mapping[str, Any], partial: Mapping[str, Any]) -> dict[str, Any]:
    """Merge `partial` over `current`; nested mappings merge one level deep."""
    merged = copy.deepcopy(dict(current))
    for key, value in partial.items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, Mapping):
            merged[key] = {**existing, **copy.deepcopy(dict(value))}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass(frozen=True)
class TaskFilters:
    tags: tuple[str, ...] = ()
    priority: str | None = None

    @classmethod
    def from_ui_state(cls, ui_state: Mapping[str, Any]) -> TaskFilters:
        filters = ui_state.get("filters") or {}
        return cls(
            tags=tuple(filters.get("tags") or ()),
            priority=filters.get("priority") or None,
        )

    @property
    def active(self) -> bool:
        return bool(self.tags) or self.priority is not None

    def matches(self, task: Task) -> bool:
        if self.tags and not all(tag in task.tags for tag in self.tags):
            return False
        if self.priority is not None:
            priority = task.priority.value if task.priority else None
            if priority != self.priority:
                return False
        return True

    def apply(self, tasks: Iterable[Task]) -> list[Task]:
        return [task for task in tasks if self.matches(task)]
