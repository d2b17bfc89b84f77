"""Geolocation result model."""

from __future__ import annotations

import math
import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# Region/City, optionally Region/Area/City (e.g. America/Argentina/Salta).
_TZ_IDENTIFIER_RE = re.compile(r"^[A-Z][A-Za-z_]*(?:/[A-Za-z0-9][A-Za-z0-9_+\-]*){1,2}$")


def is_timezone_identifier(value: str) -> bool:
    """Whether *value* is syntactically a region/city timezone identifier."""
    return bool(_TZ_IDENTIFIER_RE.match(value))


def _safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


class LocationResult(BaseModel):
    """Normalized geolocation provider response.

    Accepts both the ipapi.co shape (``latitude``/``longitude``/``error``)
    and the ip-api.com shape (``lat``/``lon``/``status``).

    Parameters
    ----------
    latitude : float or None
        Latitude in degrees. Diagnostics only.
    longitude : float or None
        Longitude in degrees. Diagnostics only.
    timezone : str or None
        IANA region/city identifier.
    success : bool
        Whether the provider reported a successful lookup.
    message : str or None
        Provider-supplied failure reason, if any.
    raw : dict
        Full provider response.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    latitude: float | None = Field(default=None, validation_alias=AliasChoices("latitude", "lat"))
    longitude: float | None = Field(default=None, validation_alias=AliasChoices("longitude", "lon", "lng"))
    timezone: str | None = Field(default=None, validation_alias=AliasChoices("timezone", "time_zone", "tz"))
    success: bool = True
    message: str | None = Field(default=None, validation_alias=AliasChoices("message", "reason"))
    raw: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _derive_success(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        if "success" not in merged:
            status = merged.get("status")
            if isinstance(status, str):
                merged["success"] = status.strip().lower() == "success"
            elif "error" in merged:
                merged["success"] = not bool(merged.get("error"))
        merged.setdefault("raw", values)
        return merged

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> float | None:
        if value is None:
            return None
        coerced = _safe_float(value)
        if coerced is None:
            raise ValueError(f"coordinate is not numeric: {value!r}")
        return coerced

    @field_validator("timezone", mode="before")
    @classmethod
    def _strip_timezone(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @model_validator(mode="after")
    def _validate_successful_result(self) -> LocationResult:
        if not self.success:
            return self
        if self.latitude is None or self.longitude is None:
            raise ValueError("latitude and longitude are required")
        if not (math.isfinite(self.latitude) and -90.0 <= self.latitude <= 90.0):
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not (math.isfinite(self.longitude) and -180.0 <= self.longitude <= 180.0):
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.timezone is None:
            raise ValueError("timezone is missing")
        if not is_timezone_identifier(self.timezone):
            raise ValueError(f"timezone is not a region/city identifier: {self.timezone!r}")
        return self
