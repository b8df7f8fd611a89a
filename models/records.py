"""Telemetry record models decoded from the gateway's JSON lines."""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def _require_number(value: Any) -> Any:
    # Lax pydantic coercion would accept "12" or true; the wire only carries numbers.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("expected a JSON number")
    return value


# Non-finite floats would be encoded as null and come back absent.
Reading = Annotated[float, BeforeValidator(_require_number), Field(allow_inf_nan=False)]
Count = Annotated[int, BeforeValidator(_require_number), Field(ge=0)]

_GROUP_CONFIG = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class PrimarySensors(BaseModel):
    """Remote sensor node readings (BME680)."""

    model_config = _GROUP_CONFIG

    temperature_c: Optional[Reading] = Field(default=None, alias="t")
    humidity_pct: Optional[Reading] = Field(default=None, alias="h")
    gas_resistance_ohms: Optional[Count] = Field(default=None, alias="g")


class SecondarySensors(BaseModel):
    """Gateway-local sensor readings (BMP280)."""

    model_config = _GROUP_CONFIG

    temperature_c: Optional[Reading] = Field(default=None, alias="t")
    pressure_hpa: Optional[Reading] = Field(default=None, alias="p")


class LinkQuality(BaseModel):
    model_config = _GROUP_CONFIG

    rssi_dbm: Optional[Reading] = Field(default=None, alias="rssi")
    snr_db: Optional[Reading] = Field(default=None, alias="snr")


class Counters(BaseModel):
    """Radio counters; monotonic on the node, not enforced here."""

    model_config = _GROUP_CONFIG

    packets_received: Count = Field(..., alias="rx")
    checksum_errors: Count = Field(..., alias="err")


class TelemetryRecord(BaseModel):
    """A decoded telemetry unit. Immutable once validated."""

    model_config = _GROUP_CONFIG

    timestamp_ms: Count = Field(..., alias="ts", description="Milliseconds since node boot.")
    node_id: str = Field(..., alias="id")
    primary: PrimarySensors = Field(default_factory=PrimarySensors, alias="n1")
    secondary: SecondarySensors = Field(default_factory=SecondarySensors, alias="n2")
    link: LinkQuality = Field(default_factory=LinkQuality, alias="sig")
    counters: Counters = Field(..., alias="sts")

    @field_validator("primary", "secondary", "link", mode="before")
    @classmethod
    def _null_group_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value
