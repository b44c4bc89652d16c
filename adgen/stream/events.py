"""Progress event schema."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    START = "start"
    SCRIPTS_START = "scripts_start"
    SCRIPTS_COMPLETE = "scripts_complete"
    IMAGES_START = "images_start"
    IMAGE_START = "image_start"
    IMAGE_COMPLETE = "image_complete"
    CAMPAIGN_COMPLETE = "campaign_complete"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """One named stage event. Unknown names are kept as-is so they can be logged."""

    name: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def _plain_name(cls, v: Any) -> Any:
        return v.value if isinstance(v, EventName) else v

    @property
    def kind(self) -> Optional[EventName]:
        try:
            return EventName(self.name)
        except ValueError:
            return None

    @classmethod
    def parse(cls, name: str, data: str) -> "ProgressEvent":
        """Build an event from an SSE frame; non-JSON data lands in ``payload['raw']``."""
        payload: dict[str, Any] = {}
        if data:
            try:
                decoded = json.loads(data)
            except ValueError:
                logger.debug("Non-JSON data on %s event", name)
                decoded = {"raw": data}
            payload = decoded if isinstance(decoded, dict) else {"value": decoded}
        return cls(name=name, payload=payload)
