"""Inbound message envelopes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict


@dataclass(frozen=True, slots=True)
class QueueItem:
    """A queued inbound message key and its content."""

    message_key: str
    message_content: Any


class CommandMessage(BaseModel):
    """Targeted ``command`` content.

    Example: ``{"address": "node003", "cmd": "DON", "value": "6", "uom": "51"}``
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    address: str
    cmd: str
    value: Any = None
    uom: Any = None
    query: dict[str, Any] | None = None


class CommandResult(BaseModel):
    """``result.<command>`` sub-message, e.g. ``result.addnode``."""

    model_config = ConfigDict(extra="allow", frozen=True)

    success: bool = False
    reason: str = ""
    address: str = ""
