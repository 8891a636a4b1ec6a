"""Startup parameters Polyglot hands to a node server on stdin."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class StartupParams(BaseModel):
    """MQTT connection parameters and ISY profile number.

    Example stdin line::

        {"mqttHost": "localhost", "mqttPort": "1883", "profileNum": "3"}
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )

    mqtt_host: str = Field(..., min_length=1)
    mqtt_port: int = Field(..., gt=0, lt=65536)
    profile_num: int = Field(..., ge=0)

    @field_validator("profile_num", "mqtt_port", mode="before")
    @classmethod
    def _parse_numeric_string(cls, value: object) -> object:
        # Polyglot sends these either as ints or as numeric strings.
        if isinstance(value, str):
            return int(value.strip(), 10)
        return value
