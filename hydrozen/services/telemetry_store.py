"""
TelemetryStore — read-only client for the realtime sensor store.

The store (Firebase Realtime Database) holds one object per sensor node,
overwritten on every reading. Reads go through the REST API:

    GET {TELEMETRY_BASE_URL}/{node path}.json

Graceful degradation: a failed read is logged and treated as "no reading",
which the classifier already handles by returning no alert.

Subscriptions poll both nodes and hand every changed pair to a callback.
subscribe() returns a Subscription; the consumer must cancel() it on
teardown or the polling task outlives the consumer.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from hydrozen.models.telemetry import SensorSnapshot

logger = logging.getLogger(__name__)

NODE_A = "node-1"
NODE_B = "node-2"

PairCallback = Callable[[Optional[SensorSnapshot], Optional[SensorSnapshot]], Awaitable[None]]

# Canned readings for mock mode: a 13.5-point humidity gap, i.e. a "low" alert.
_MOCK_READINGS: dict[str, dict[str, Any]] = {
    NODE_A: {
        "Temperature": 24.6, "airflow": 1.8, "altitude": 212.0,
        "pressure": 1012.4, "wind_speed": 0.6, "predicted_humidity": 62.0,
        "flow_rate": 14.2,
    },
    NODE_B: {
        "Temperature": 24.1, "airflow": 1.7, "altitude": 211.5,
        "pressure": 1011.9, "wind_speed": 0.5, "predicted_humidity": 48.5,
        "flow_rate": 12.9,
    },
}


class Subscription:
    """Handle for a running poll loop."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def active(self) -> bool:
        return not self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()


class TelemetryStore:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        node_paths: dict[str, str],
        mock_mode: bool = True,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.node_paths = node_paths
        self.mock_mode = mock_mode or not base_url

        if self.mock_mode:
            logger.info("TelemetryStore initialised in MOCK mode")

    async def _fetch(self, node_id: str) -> Any:
        if self.mock_mode:
            return _MOCK_READINGS.get(node_id)

        path = self.node_paths.get(node_id)
        if path is None:
            logger.warning("Unknown sensor node %r", node_id)
            return None

        try:
            response = await self.http.get(f"{self.base_url}/{path.strip('/')}.json")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Telemetry read failed for %s: %s", node_id, exc.response.status_code
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Telemetry read failed for %s: %s", node_id, exc)
        return None

    async def read_node(self, node_id: str) -> Optional[SensorSnapshot]:
        """Latest reading for *node_id*, or None if there is none."""
        return SensorSnapshot.from_payload(node_id, await self._fetch(node_id))

    async def read_pair(self) -> tuple[Optional[SensorSnapshot], Optional[SensorSnapshot]]:
        node_a, node_b = await asyncio.gather(self.read_node(NODE_A), self.read_node(NODE_B))
        return node_a, node_b

    def subscribe(self, callback: PairCallback, interval: float = 3.0) -> Subscription:
        """
        Poll both nodes every *interval* seconds; call *callback* on change.

        The first poll always fires the callback. Errors raised by the
        callback are logged and polling continues.
        """

        async def _loop() -> None:
            last: Optional[tuple] = None
            while True:
                node_a, node_b = await self.read_pair()
                current = (
                    node_a.model_dump(exclude={"observed_at"}) if node_a else None,
                    node_b.model_dump(exclude={"observed_at"}) if node_b else None,
                )
                if current != last:
                    last = current
                    try:
                        await callback(node_a, node_b)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception("Telemetry subscriber callback failed")
                await asyncio.sleep(interval)

        return Subscription(asyncio.create_task(_loop()))
