"""
anomaly.py — Differential leak classifier for a pair of sensor nodes.

Two nodes sit either side of a pipe run. When their readings diverge past a
threshold, the water is going somewhere it shouldn't and an Alert is raised.

USAGE
─────
    from hydrozen.services.anomaly import classify

    alert = classify(node_a, node_b)
    # alert is None            → readings agree
    # alert.severity == "high" → humidity gap above 20 points

Everything here is pure: no I/O, no clock reads beyond Alert's own
created_at, no state carried between calls. The caller decides whether to
escalate. There is no hysteresis — a reading flapping around a threshold
raises and clears an alert on every tick.

TESTING
────────
    pytest tests/test_anomaly.py -v
"""

from __future__ import annotations

from typing import Optional

from hydrozen.models.telemetry import Alert, SensorSnapshot, Severity, TelemetryVariant

# ── Humidity / pressure deployment ────────────────────────────────────────────

HUMIDITY_TRIGGER = 10.0
PRESSURE_TRIGGER = 5.0
_HUMIDITY_SEVERITY = [
    (20.0, "high"),
    (15.0, "medium"),
]

# ── Flow-rate deployment ──────────────────────────────────────────────────────

FLOW_TRIGGER = 10.0
_FLOW_SEVERITY = [
    (30.0, "high"),
    (20.0, "medium"),
]


def _severity(diff: float, tiers: list[tuple[float, str]]) -> Severity:
    for threshold, label in tiers:
        if diff > threshold:
            return label  # type: ignore[return-value]
    return "low"


def classify(
    a: Optional[SensorSnapshot],
    b: Optional[SensorSnapshot],
) -> Optional[Alert]:
    """
    Compare humidity and pressure between two nodes.

    Fires when humidity differs by more than 10 or pressure by more than 5.
    Severity is graded on the humidity gap only, so a pressure-only trigger
    is always "low". Node A is named as the source when the humidity gap is
    the larger of the two, node B otherwise.
    """
    if a is None or b is None:
        return None

    humidity_diff = abs(a.humidity - b.humidity)
    pressure_diff = abs(a.pressure - b.pressure)

    if not (humidity_diff > HUMIDITY_TRIGGER or pressure_diff > PRESSURE_TRIGGER):
        return None

    source = a if humidity_diff > pressure_diff else b
    return Alert(
        location_label=source.node_id,
        severity=_severity(humidity_diff, _HUMIDITY_SEVERITY),
        metric_difference=max(humidity_diff, pressure_diff),
        source_nodes=(a.node_id, b.node_id),
    )


def classify_flow(
    a: Optional[SensorSnapshot],
    b: Optional[SensorSnapshot],
) -> Optional[Alert]:
    """
    Compare flow rate between two nodes (flow-meter deployments).

    A node that reports no flow_rate counts as 0. The node with the higher
    flow is named: water enters the run there and does not arrive downstream.
    """
    if a is None or b is None:
        return None

    flow_a = a.flow_rate or 0.0
    flow_b = b.flow_rate or 0.0
    flow_diff = abs(flow_a - flow_b)

    if flow_diff <= FLOW_TRIGGER:
        return None

    source = a if flow_a >= flow_b else b
    return Alert(
        location_label=source.node_id,
        severity=_severity(flow_diff, _FLOW_SEVERITY),
        metric_difference=flow_diff,
        source_nodes=(a.node_id, b.node_id),
    )


def classify_snapshots(
    a: Optional[SensorSnapshot],
    b: Optional[SensorSnapshot],
    variant: TelemetryVariant = "humidity",
) -> Optional[Alert]:
    """Dispatch on the deployment variant."""
    if variant == "flow":
        return classify_flow(a, b)
    return classify(a, b)
