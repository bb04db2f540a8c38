"""
Notifier — leak escalation emails through an email relay webhook.

The relay (a small mail-sending function owned by ops) accepts:
    {"to": ..., "subject": ..., "alert": {...}, "node1Data": {...}, "node2Data": {...}}
and answers 2xx once the message is queued.

send_leak_alert() returns a plain bool. It never raises and never retries;
the caller decides what a failed send means.
"""

import logging

import httpx

from hydrozen.models.telemetry import Alert, SensorSnapshot

logger = logging.getLogger(__name__)


def alert_subject(alert: Alert) -> str:
    return f"Urgent: Water Leakage Alert - {alert.severity.upper()} Severity"


class Notifier:
    def __init__(
        self,
        http: httpx.AsyncClient,
        webhook_url: str,
        recipient: str = "",
        mock_mode: bool = True,
    ) -> None:
        self.http = http
        self.webhook_url = webhook_url
        self.recipient = recipient
        self.mock_mode = mock_mode
        self.enabled = mock_mode or bool(webhook_url)

        if not self.enabled:
            logger.warning(
                "NOTIFICATION_WEBHOOK_URL not set — leak escalation emails disabled."
            )

    def build_payload(self, alert: Alert, node_a: SensorSnapshot, node_b: SensorSnapshot) -> dict:
        return {
            "to": self.recipient,
            "subject": alert_subject(alert),
            "alert": {
                "id": alert.id,
                "location": alert.location_label,
                "severity": alert.severity,
                "difference": round(alert.metric_difference, 1),
                "timestamp": alert.created_at.isoformat(),
            },
            "node1Data": node_a.to_store_shape(),
            "node2Data": node_b.to_store_shape(),
        }

    async def send_leak_alert(self, alert: Alert, node_a: SensorSnapshot, node_b: SensorSnapshot) -> bool:
        if not self.enabled:
            return False

        payload = self.build_payload(alert, node_a, node_b)
        if self.mock_mode:
            logger.info("[MOCK] Would send leak alert email: %s", payload["subject"])
            return True

        try:
            response = await self.http.post(self.webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Email relay error: %s — %s",
                exc.response.status_code,
                exc.response.text[:200],
            )
            return False
        except httpx.HTTPError as exc:
            logger.error("Email relay request failed: %s", exc)
            return False

        logger.info("Leak alert %s escalated (%s)", alert.id, alert.severity)
        return True
