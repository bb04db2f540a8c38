"""
test_escalation.py — Tests for the email relay notifier and AlertEscalator.
"""

import json
import logging

import httpx
import pytest

from hydrozen.models.telemetry import Alert, SensorSnapshot
from hydrozen.services.escalation import AlertEscalator
from hydrozen.services.notifier import Notifier, alert_subject

WEBHOOK = "https://relay.example.org/send-alert"

ALERT = Alert(
    location_label="node-1",
    severity="high",
    metric_difference=23.456,
    source_nodes=("node-1", "node-2"),
)
NODE_A = SensorSnapshot(node_id="node-1", humidity=80.0, pressure=1010.0, temperature=21.0)
NODE_B = SensorSnapshot(node_id="node-2", humidity=56.5, pressure=1010.0, temperature=21.0)


def _relay(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return http, Notifier(http, webhook_url=WEBHOOK, recipient="ops@example.org", mock_mode=False)


# ── Notifier ──────────────────────────────────────────────────────────────────

class TestNotifier:
    def test_subject_names_severity(self):
        assert alert_subject(ALERT) == "Urgent: Water Leakage Alert - HIGH Severity"

    def test_payload_shape(self):
        payload = Notifier(None, webhook_url=WEBHOOK, recipient="ops@example.org").build_payload(ALERT, NODE_A, NODE_B)
        assert payload["to"] == "ops@example.org"
        assert payload["alert"]["location"] == "node-1"
        assert payload["alert"]["difference"] == 23.5
        assert payload["node1Data"]["predicted_humidity"] == 80.0
        assert payload["node2Data"]["predicted_humidity"] == 56.5

    async def test_posts_to_relay(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(202)

        http, notifier = _relay(handler)
        async with http:
            assert await notifier.send_leak_alert(ALERT, NODE_A, NODE_B) is True
        assert bodies[0]["subject"].startswith("Urgent")

    async def test_relay_error_returns_false(self, caplog):
        http, notifier = _relay(lambda request: httpx.Response(500, text="relay down"))
        async with http:
            with caplog.at_level(logging.ERROR):
                assert await notifier.send_leak_alert(ALERT, NODE_A, NODE_B) is False
        assert "relay down" in caplog.text

    async def test_transport_error_returns_false(self):
        def boom(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        http, notifier = _relay(boom)
        async with http:
            assert await notifier.send_leak_alert(ALERT, NODE_A, NODE_B) is False

    async def test_disabled_without_webhook(self):
        notifier = Notifier(None, webhook_url="", mock_mode=False)
        assert notifier.enabled is False
        assert await notifier.send_leak_alert(ALERT, NODE_A, NODE_B) is False

    async def test_mock_mode_succeeds_without_network(self):
        notifier = Notifier(None, webhook_url="", mock_mode=True)
        assert await notifier.send_leak_alert(ALERT, NODE_A, NODE_B) is True


# ── Escalator ─────────────────────────────────────────────────────────────────

class TestAlertEscalator:
    async def test_success_stores_pending_report(self, fake_db):
        escalator = AlertEscalator(Notifier(None, webhook_url="", mock_mode=True), fake_db)
        result = await escalator.escalate(ALERT, NODE_A, NODE_B, user_id="user-1")

        assert result.success is True
        doc = fake_db["leakage_reports"].docs[0]
        assert str(doc["_id"]) == result.report_id
        assert doc["status"] == "pending"
        assert doc["severity"] == "high"
        assert doc["location"] == "node-1"
        assert doc["points_awarded"] == 0

    async def test_failed_send_records_nothing(self, fake_db):
        escalator = AlertEscalator(Notifier(None, webhook_url="", mock_mode=False), fake_db)
        result = await escalator.escalate(ALERT, NODE_A, NODE_B)
        assert result.success is False
        assert result.report_id is None
        assert fake_db["leakage_reports"].docs == []

    async def test_store_failure_after_send_is_logged(self, fake_db, caplog):
        fake_db["leakage_reports"].fail_on.add("insert_one")
        escalator = AlertEscalator(Notifier(None, webhook_url="", mock_mode=True), fake_db)
        with caplog.at_level(logging.ERROR, logger="hydrozen.services.escalation"):
            result = await escalator.escalate(ALERT, NODE_A, NODE_B, user_id="user-1")

        assert result.success is True
        assert result.report_id is None
        assert "Ledger inconsistency" in caplog.text

    async def test_escalated_report_is_listed(self, fake_db, ledger):
        escalator = AlertEscalator(Notifier(None, webhook_url="", mock_mode=True), fake_db)
        await escalator.escalate(ALERT, NODE_A, NODE_B, user_id="user-1")
        reports = await ledger.list_reports("user-1")
        assert reports[0].status == "pending"
        assert reports[0].difference == pytest.approx(23.456)
