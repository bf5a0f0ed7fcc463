"""REST + SSE implementation of the status sync gateway.

Blocking requests calls run in worker threads (asyncio.to_thread) and are
bounded by the sync timeout, so a stalled backend never blocks the board.
HTTP failures are translated to SyncError subclasses at this boundary.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import requests

from queueboard import config
from queueboard.channel import LaneUpdateChannel
from queueboard.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from queueboard.gateway import (
    LaneUpdateCallback,
    StatusSyncGateway,
    SyncRejected,
    SyncTimeout,
    SyncUnavailable,
    Unsubscribe,
)
from queueboard.http_client import api_call_with_protection, create_http_session
from queueboard.models import (
    Ack,
    CheckInRequest,
    Lane,
    OrderRequest,
    TransitionRequest,
    VisitRecord,
)

logger = logging.getLogger(__name__)

# Keepalive comments arrive every 15s; a silent stream past this is dead.
STREAM_READ_TIMEOUT = 45


def _error_message(response: Optional[requests.Response]) -> str:
    if response is None:
        return "No response from queue backend"
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    return body.get("error") or body.get("message") or f"HTTP {response.status_code}"


class HttpSyncGateway(StatusSyncGateway):
    """Talks to the queue backend's /api/queue endpoints."""

    def __init__(
        self,
        base_url: str = config.QUEUE_API_BASE_URL,
        clinic_id: str = config.CLINIC_ID,
        session: Optional[requests.Session] = None,
        breaker: Optional[CircuitBreaker] = None,
        sync_timeout: float = config.SYNC_TIMEOUT_SECONDS,
        reconnect_wait=None,
    ):
        """
        Args:
            base_url: Backend root, e.g. http://localhost:5000
            clinic_id: Clinic whose board this is (X-Clinic-ID header)
            session: Preconfigured session (default: create_http_session())
            breaker: Circuit breaker (default: from config thresholds)
            sync_timeout: Seconds before a pending call becomes SyncTimeout
            reconnect_wait: tenacity wait strategy for the push channel
        """
        self.base_url = base_url.rstrip("/")
        self.clinic_id = clinic_id
        self.session = session or create_http_session(clinic_id=clinic_id)
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.CIRCUIT_FAILURE_THRESHOLD,
            timeout=config.CIRCUIT_TIMEOUT_SECONDS,
        )
        self.sync_timeout = sync_timeout
        self._listeners: List[LaneUpdateCallback] = []
        self.channel = LaneUpdateChannel(
            open_stream=self._open_stream,
            fetch_board=self.fetch_board,
            deliver=self._broadcast,
            wait=reconnect_wait,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """
        Run one protected API call off the event loop.

        Returns:
            Decoded JSON body

        Raises:
            SyncTimeout: Call exceeded sync_timeout or the transport timed out
            SyncRejected: Backend answered 4xx
            SyncUnavailable: Circuit open, retries exhausted or bad response
        """
        call = asyncio.to_thread(
            api_call_with_protection, self.session, self.breaker, method, self._url(path), **kwargs
        )
        try:
            response = await asyncio.wait_for(call, timeout=self.sync_timeout)
        except asyncio.TimeoutError as e:
            raise SyncTimeout(f"{method} {path} not confirmed within {self.sync_timeout}s") from e
        except CircuitBreakerOpen as e:
            raise SyncUnavailable(str(e)) from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status is not None and 400 <= status < 500 and status != 429:
                raise SyncRejected(_error_message(e.response), status_code=status) from e
            raise SyncUnavailable(f"{method} {path} failed: {_error_message(e.response)}") from e
        except requests.exceptions.Timeout as e:
            raise SyncTimeout(f"{method} {path} timed out") from e
        except requests.exceptions.RequestException as e:
            raise SyncUnavailable(f"{method} {path} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise SyncUnavailable(f"{method} {path} returned invalid JSON") from e

    async def push_transition(self, record_id: str, from_lane: Lane, to_lane: Lane) -> Ack:
        body = TransitionRequest(record_id=record_id, from_lane=from_lane, to_lane=to_lane)
        data = await self._request("POST", "/api/queue/transitions", json=body.to_wire())
        logger.info(f"Transition {record_id} {Lane(from_lane).value} -> {Lane(to_lane).value} confirmed")
        return Ack.model_validate(data.get("data") or {"record_id": record_id, "lane": to_lane})

    async def push_order(self, lane: Lane, record_ids: Sequence[str]) -> Ack:
        lane = Lane(lane)
        body = OrderRequest(record_ids=list(record_ids))
        await self._request("PATCH", f"/api/queue/{lane.value}/order", json=body.to_wire())
        return Ack(lane=lane)

    async def fetch_lane(self, lane: Lane) -> List[VisitRecord]:
        lane = Lane(lane)
        data = await self._request("GET", f"/api/queue/{lane.value}")
        return [VisitRecord.model_validate(r) for r in data.get("data", [])]

    async def fetch_board(self) -> Dict[Lane, List[VisitRecord]]:
        data = (await self._request("GET", "/api/queue")).get("data", {})
        return {
            lane: [VisitRecord.model_validate(r) for r in data.get(lane.value, [])]
            for lane in Lane
        }

    async def check_in(self, request: CheckInRequest) -> VisitRecord:
        data = await self._request("POST", "/api/queue/check-in", json=request.to_wire())
        return VisitRecord.model_validate(data["data"])

    async def archive(self, record_id: str) -> Ack:
        await self._request("DELETE", f"/api/queue/completed/{record_id}")
        return Ack(record_id=record_id)

    def subscribe(self, on_lane_update: LaneUpdateCallback) -> Unsubscribe:
        """
        Register for lane updates; the first subscriber opens the channel.

        Must be called from the running event loop.
        """
        self._listeners.append(on_lane_update)
        self.channel.start()

        def unsubscribe() -> None:
            if on_lane_update in self._listeners:
                self._listeners.remove(on_lane_update)

        return unsubscribe

    async def close(self) -> None:
        """Stop the push channel and release pooled connections."""
        self._listeners.clear()
        await self.channel.stop()
        self.session.close()

    def _broadcast(self, lane: Lane, records: List[VisitRecord]) -> None:
        for listener in list(self._listeners):
            listener(lane, records)

    def _open_stream(self) -> requests.Response:
        # Plain session.request: no tenacity retry here, the channel owns
        # reconnect backoff.
        response = requests.Session.request(
            self.session,
            "GET",
            self._url("/api/queue/stream"),
            headers={"Accept": "text/event-stream"},
            stream=True,
            timeout=(config.HTTP_TIMEOUT_SECONDS, STREAM_READ_TIMEOUT),
        )
        response.raise_for_status()
        return response
