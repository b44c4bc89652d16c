"""Fold progress events into a coarse, monotonic stage state."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

from adgen.stream.events import EventName, ProgressEvent

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    PREPARING = "preparing"
    SCRIPTS = "scripts"
    IMAGES = "images"
    COMPLETE = "complete"
    FAILED = "failed"


_ORDER = {Stage.PREPARING: 0, Stage.SCRIPTS: 1, Stage.IMAGES: 2, Stage.COMPLETE: 3}

_STAGE_FOR = {
    EventName.START: Stage.PREPARING,
    EventName.SCRIPTS_START: Stage.SCRIPTS,
    EventName.SCRIPTS_COMPLETE: Stage.IMAGES,
    EventName.IMAGES_START: Stage.IMAGES,
    EventName.CAMPAIGN_COMPLETE: Stage.COMPLETE,
    EventName.COMPLETE: Stage.COMPLETE,
}


class StreamState(BaseModel):
    stage: Stage = Stage.PREPARING
    current_item: str = ""
    items_completed: int = 0
    items_total: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    events_applied: int = 0
    done: bool = False


def _advance(current: Stage, target: Stage) -> Stage:
    if _ORDER[target] > _ORDER[current]:
        return target
    return current


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def reduce(state: StreamState, event: ProgressEvent) -> StreamState:
    """Return the state after ``event``. Never regresses; ignores everything once done."""
    if state.done:
        return state
    kind = event.kind
    if kind is None:
        logger.warning("Ignoring unknown progress event %r", event.name)
        return state

    payload = event.payload
    update: dict[str, Any] = {"events_applied": state.events_applied + 1}

    if kind is EventName.ERROR:
        update.update(
            stage=Stage.FAILED,
            error=str(payload.get("message") or payload.get("error") or "Generation failed"),
            done=True,
        )
        return state.model_copy(update=update)

    if kind is EventName.COMPLETE:
        if not payload:
            update.update(stage=Stage.FAILED, error="Stream completed without a result", done=True)
            return state.model_copy(update=update)
        update.update(stage=Stage.COMPLETE, result=payload, done=True)
        return state.model_copy(update=update)

    if kind in _STAGE_FOR:
        update["stage"] = _advance(state.stage, _STAGE_FOR[kind])

    if kind is EventName.IMAGE_START:
        number = payload.get("scriptNumber")
        update["current_item"] = str(payload.get("scriptName") or (f"Image {number}" if number else "Image"))
    elif kind is EventName.IMAGE_COMPLETE:
        progress = payload.get("progress") if isinstance(payload.get("progress"), dict) else {}
        completed = _as_int(progress.get("completed"))
        if completed is not None:
            update["items_completed"] = max(state.items_completed, completed)
        total = _as_int(progress.get("total"))
        if total is not None:
            update["items_total"] = total

    return state.model_copy(update=update)
