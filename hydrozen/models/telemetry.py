"""
telemetry.py — Pydantic models for sensor snapshots and leak alerts.

SensorSnapshot   — latest reading for one node, validated from the raw store payload
Alert            — classifier output; frozen once created
AlertCheckResponse / EscalationRequest / EscalationResponse — API bodies

The realtime store has two deployment shapes:
  humidity nodes: {Temperature, airflow, altitude, pressure, wind_speed, predicted_humidity}
  flow nodes:     {flow_rate}
Both are accepted. Missing numeric fields become 0 for the compared metrics
and None for the optional ones; nothing here raises on a partial payload.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high"]
TelemetryVariant = Literal["humidity", "flow"]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _number(value: Any) -> Optional[float]:
    """Coerce a store value to float; None for missing / non-numeric."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ── Snapshot ──────────────────────────────────────────────────────────────────

class SensorSnapshot(BaseModel):
    """Latest reading for one sensor node."""

    node_id: str
    temperature: float = 0.0
    humidity: float = 0.0        # predicted_humidity in the store
    pressure: float = 0.0        # hPa
    flow_rate: Optional[float] = None
    airflow: Optional[float] = None
    wind_speed: Optional[float] = None
    altitude: Optional[float] = None
    observed_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_payload(cls, node_id: str, payload: Any) -> Optional["SensorSnapshot"]:
        """
        Build a snapshot from a raw store value.

        Returns None when the node has no reading yet (null or non-object).
        """
        if not isinstance(payload, dict) or not payload:
            return None

        def pick(*keys: str) -> Optional[float]:
            for key in keys:
                value = _number(payload.get(key))
                if value is not None:
                    return value
            return None

        return cls(
            node_id=node_id,
            temperature=pick("Temperature", "temperature") or 0.0,
            humidity=pick("predicted_humidity", "humidity") or 0.0,
            pressure=pick("pressure") or 0.0,
            flow_rate=pick("flow_rate", "flowRate"),
            airflow=pick("airflow"),
            wind_speed=pick("wind_speed", "windSpeed"),
            altitude=pick("altitude"),
        )

    def to_store_shape(self) -> dict:
        """Node reading in the store's field names (used in notification payloads)."""
        data = {
            "Temperature": self.temperature,
            "predicted_humidity": self.humidity,
            "pressure": self.pressure,
            "airflow": self.airflow,
            "wind_speed": self.wind_speed,
            "altitude": self.altitude,
            "flow_rate": self.flow_rate,
        }
        return {k: v for k, v in data.items() if v is not None}


# ── Alert ─────────────────────────────────────────────────────────────────────

class Alert(BaseModel):
    """A classified divergence between two nodes. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=_utcnow)
    location_label: str
    severity: Severity
    metric_difference: float
    source_nodes: tuple[str, str]


# ── API bodies ────────────────────────────────────────────────────────────────

class AlertCheckResponse(BaseModel):
    """Response for GET /api/v1/telemetry/alert."""
    variant: TelemetryVariant
    alert: Optional[Alert] = None
    node_a: Optional[SensorSnapshot] = None
    node_b: Optional[SensorSnapshot] = None


class EscalationRequest(BaseModel):
    """Client-held alert + the readings that produced it."""
    alert: Alert
    node_a: SensorSnapshot
    node_b: SensorSnapshot


class EscalationResponse(BaseModel):
    success: bool
    report_id: Optional[str] = None
