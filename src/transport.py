"""
Video Analytics Transport
Async HTTP delivery of event batches, plus a fire-and-forget beacon send for teardown.
"""

import asyncio
from typing import Any, Dict, Optional, Set

import httpx
import orjson

from errors import TransportFailure
from models import EventBatch
from utils import classify_transport_error, sdk_logger

SDK_CLIENT_HEADER = "VideoAnalytics-SDK/1.0.0"


class Transport:
    """Sends batches to the collector endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 10.0,
        beacon_timeout: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
        debug: bool = False
    ):
        self.endpoint = endpoint.rstrip('/')
        self.beacon_endpoint = f"{self.endpoint}/beacon"
        self.beacon_timeout = beacon_timeout
        self.logger = sdk_logger(debug, component="transport")
        self._beacons: Set[asyncio.Task] = set()

        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0),
            limits=httpx.Limits(max_keepalive_connections=2, max_connections=4)
        )

    def _headers(self, batch: EventBatch) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Analytics-Client": SDK_CLIENT_HEADER,
        }
        if batch.is_retry:
            headers["X-Retry-Attempt"] = str(batch.retry_attempt)
        return headers

    async def send(self, batch: EventBatch) -> Dict[str, Any]:
        """
        Send a batch and return the collector's acknowledgement.

        Raises:
            TransportFailure: on a non-2xx status, a network error or an
                acknowledgement that is not JSON.
        """
        try:
            response = await self.client.post(
                self.endpoint,
                content=batch.to_json(),
                headers=self._headers(batch)
            )
        except httpx.HTTPError as e:
            raise TransportFailure(str(e) or type(e).__name__, reason=classify_transport_error(e)) from e

        if not response.is_success:
            raise TransportFailure(
                f"Server responded with {response.status_code}",
                reason=f"http_error_{response.status_code}",
                status_code=response.status_code
            )

        try:
            ack = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise TransportFailure(
                "Server acknowledgement is not valid JSON",
                reason=classify_transport_error(e),
                status_code=response.status_code
            ) from e

        self.logger.debug(
            "batch_sent",
            batch_id=batch.batch_id,
            event_count=len(batch.events),
            is_retry=batch.is_retry,
            ack=ack
        )
        return ack

    def send_final(self, batch: EventBatch) -> None:
        """
        Dispatch a teardown batch without waiting for it.

        The outcome is never reported to the caller.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("beacon_skipped", reason="no_running_loop", event_count=len(batch.events))
            return

        task = loop.create_task(self._post_beacon(batch))
        self._beacons.add(task)
        task.add_done_callback(self._beacons.discard)
        self.logger.debug("beacon_dispatched", batch_id=batch.batch_id, event_count=len(batch.events))

    async def _post_beacon(self, batch: EventBatch) -> None:
        try:
            await self.client.post(
                self.beacon_endpoint,
                content=batch.to_json(),
                headers=self._headers(batch)
            )
        except Exception as e:
            # Fire-and-forget: nothing may surface from the beacon task
            self.logger.debug("beacon_failed", reason=classify_transport_error(e), error=str(e))

    async def aclose(self):
        """Give outstanding beacons a bounded chance to finish, then close the client."""
        if self._beacons:
            _, pending = await asyncio.wait(set(self._beacons), timeout=self.beacon_timeout)
            for task in pending:
                task.cancel()
        await self.client.aclose()
