"""Config snapshot models.

Polyglot restates the whole node server state in every ``config``
message. Only the fields the interface acts on are typed; everything else
is kept as extra data and handed to the node server unchanged.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Polyglot prefixes node addresses with the profile slot, e.g. "n001_".
_ADDRESS_PREFIX = re.compile(r"^n\d{3}_")


def strip_address_prefix(address: str) -> str:
    """Return *address* without Polyglot's ``nNNN_`` slot prefix."""
    return _ADDRESS_PREFIX.sub("", address, count=1)


class NodeEntry(BaseModel):
    """One entry of ``config.newNodes``.

    ``controller``, ``drivers``, ``isprimary``, ``profileNum`` and
    ``timeAdded`` are left raw: the registry converts them and only
    merges the ones present in the payload (see ``model_fields_set``).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    address: str
    primary: str = ""
    nodedef: str = ""
    name: str = ""
    controller: Any = None
    drivers: Any = None
    isprimary: Any = None
    profile_num: Any = Field(default=None, alias="profileNum")
    time_added: Any = Field(default=None, alias="timeAdded")

    @field_validator("address", "primary")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        return strip_address_prefix(value.strip())

    def raw_field(self, wire_name: str) -> tuple[bool, Any]:
        """Return ``(present, value)`` for a field by its wire name."""
        attr = {"profileNum": "profile_num", "timeAdded": "time_added"}.get(wire_name, wire_name)
        return attr in self.model_fields_set, getattr(self, attr)


class ConfigSnapshot(BaseModel):
    """A full ``config`` message."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)

    new_nodes: list[NodeEntry] = Field(default_factory=list)
    custom_params: dict[str, Any] = Field(default_factory=dict)
    custom_data: dict[str, Any] = Field(default_factory=dict)
    typed_params: list[Any] = Field(default_factory=list)
    notices: Any = Field(default_factory=list)

    @field_validator("custom_params", "custom_data", mode="before")
    @classmethod
    def _none_to_empty_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("typed_params", mode="before")
    @classmethod
    def _none_to_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_wire(self) -> dict[str, Any]:
        """Camel-case dict suitable for handing to node server code."""
        return self.model_dump(by_alias=True, exclude={"new_nodes"}) | {
            "newNodes": [entry.model_dump(by_alias=True, exclude_unset=True) for entry in self.new_nodes]
        }
