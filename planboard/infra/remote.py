from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Awaitable, Callable, Mapping, Sequence

from planboard.domain.entities import ReorderItem, Task, TodayDTO
from planboard.domain.errors import TaskServiceError, UnknownServiceError

from .codec import encode_fields, reorder_item_to_dict, task_from_dict, today_from_dict

logger = logging.getLogger(__name__)

Transport = Callable[[str, Mapping[str, Any]], Awaitable[Any]]


class RemoteTaskService:
    """Task service reached through a command transport.

    Every command answers with an envelope: `{"ok": true, "data": ...}` or
    `{"ok": false, "error": {"code", "message", "details"}}`. A transport that
    raises instead may carry the error envelope as its first argument.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def _invoke(self, command: str, args: Mapping[str, Any] | None = None) -> Any:
        try:
            response = await self._transport(command, dict(args or {}))
        except TaskServiceError:
            raise
        except Exception as exc:
            payload = _error_payload(exc)
            if payload is not None:
                raise TaskServiceError.from_payload(payload) from exc
            logger.error("Command %s failed in transport: %s", command, exc)
            raise UnknownServiceError(str(exc) or type(exc).__name__) from exc

        if not isinstance(response, Mapping) or "ok" not in response:
            raise UnknownServiceError(f"Malformed response to {command}")
        if response["ok"]:
            return response.get("data")
        error = response.get("error")
        if not isinstance(error, Mapping):
            raise UnknownServiceError(f"{command} failed without an error payload")
        raise TaskServiceError.from_payload(error)

    async def _decode(self, command: str, args: Mapping[str, Any], decoder: Callable[[Any], Any]) -> Any:
        data = await self._invoke(command, args)
        try:
            return decoder(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise UnknownServiceError(f"Could not decode {command} response: {exc}") from exc

    async def list_today(self, day: date) -> TodayDTO:
        return await self._decode("planning_list_today", {"today": day.isoformat()}, today_from_dict)

    async def create_task(self, data: Mapping[str, Any]) -> Task:
        return await self._decode("planning_create_task", {"input": encode_fields(data)}, task_from_dict)

    async def update_task(self, partial: Mapping[str, Any]) -> None:
        await self._invoke("planning_update_task", {"input": encode_fields(partial)})

    async def reorder_tasks(self, items: Sequence[ReorderItem]) -> None:
        await self._invoke("planning_reorder_tasks", {"tasks": [reorder_item_to_dict(item) for item in items]})

    async def mark_done(self, task_id: str) -> None:
        await self._invoke("planning_mark_done", {"taskId": task_id})

    async def reopen_task(self, task_id: str) -> None:
        await self._invoke("planning_reopen_task", {"taskId": task_id})

    async def start_task(self, task_id: str) -> None:
        await self._invoke("planning_start_task", {"taskId": task_id})

    async def stop_task(self, task_id: str) -> None:
        await self._invoke("planning_stop_task", {"taskId": task_id})

    async def delete_task(self, task_id: str) -> None:
        await self._invoke("planning_delete_task", {"taskId": task_id})

    async def get_ui_state(self, vault_id: str) -> str | None:
        data = await self._invoke("planning_get_ui_state", {"vaultId": vault_id})
        if data is None or isinstance(data, str):
            return data
        return json.dumps(data)

    async def set_ui_state(self, vault_id: str, partial: Mapping[str, Any]) -> None:
        await self._invoke(
            "planning_set_ui_state",
            {"vaultId": vault_id, "partial_state_json": json.dumps(encode_fields(partial))},
        )


def _error_payload(exc: Exception) -> Mapping[str, Any] | None:
    if not exc.args:
        return None
    candidate = exc.args[0]
    if isinstance(candidate, Mapping):
        error = candidate.get("error", candidate)
        if isinstance(error, Mapping) and "code" in error:
            return error
    return None
