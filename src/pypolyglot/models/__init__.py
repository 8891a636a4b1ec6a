"""Typed Polyglot message models."""

from pypolyglot.models.config import ConfigSnapshot, NodeEntry, strip_address_prefix
from pypolyglot.models.messages import CommandMessage, CommandResult, QueueItem
from pypolyglot.models.startup import StartupParams

__all__ = [
    "CommandMessage",
    "CommandResult",
    "ConfigSnapshot",
    "NodeEntry",
    "QueueItem",
    "StartupParams",
    "strip_address_prefix",
]
