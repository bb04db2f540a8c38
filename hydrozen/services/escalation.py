"""
escalation.py — Send a leak alert to maintenance and record it.

Flow: notifier.send_leak_alert() → on success, insert a pending
leakage_reports row describing the alert. A failed send records nothing
and returns success=False. A failed insert after a successful send is a
ledger inconsistency (the email is already out), logged and reported as
success without a report id.
"""

import logging
from datetime import datetime, timezone

from pymongo.errors import PyMongoError

from hydrozen.core.errors import LedgerInconsistencyError
from hydrozen.models.telemetry import Alert, EscalationResponse, SensorSnapshot
from hydrozen.services.notifier import Notifier

logger = logging.getLogger(__name__)


class AlertEscalator:
    def __init__(self, notifier: Notifier, db) -> None:
        self.notifier = notifier
        self.db = db

    async def escalate(
        self,
        alert: Alert,
        node_a: SensorSnapshot,
        node_b: SensorSnapshot,
        user_id: str | None = None,
    ) -> EscalationResponse:
        sent = await self.notifier.send_leak_alert(alert, node_a, node_b)
        if not sent:
            logger.warning("Escalation of alert %s failed — nothing recorded", alert.id)
            return EscalationResponse(success=False)

        doc = {
            "alert_id": alert.id,
            "location": alert.location_label,
            "severity": alert.severity,
            "difference": alert.metric_difference,
            "source_nodes": list(alert.source_nodes),
            "status": "pending",
            "user_id": user_id,
            "points_awarded": 0,
            "created_at": datetime.now(tz=timezone.utc),
        }
        try:
            result = await self.db["leakage_reports"].insert_one(doc)
        except PyMongoError as exc:
            error = LedgerInconsistencyError(
                f"Alert {alert.id} was emailed but could not be stored: {exc}",
                user_id=user_id or "",
                operation="leakage_reports.insert",
            )
            logger.error("Ledger inconsistency: %s", error.message)
            return EscalationResponse(success=True)

        return EscalationResponse(success=True, report_id=str(result.inserted_id))
