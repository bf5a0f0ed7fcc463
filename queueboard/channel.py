"""Server-Sent Events push channel for lane updates.

Each event carries one lane's authoritative sequence:

    data: {"lane": "waiting", "records": [...]}

Reconnect rule: every (re)connect first pulls a full three-lane snapshot
and delivers it, and only then resumes incremental events, so deltas are
never applied on top of stale state.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, Iterable, Iterator, List, Optional

import requests
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_never,
    wait_exponential,
)

from queueboard import config
from queueboard.gateway import SyncError
from queueboard.models import Lane, LaneUpdate, VisitRecord

logger = logging.getLogger(__name__)

_END = object()


class ChannelDropped(Exception):
    """Raised when the push stream breaks mid-flight."""
    pass


RECONNECT_ERRORS = (
    ChannelDropped,
    SyncError,
    ValidationError,
    requests.exceptions.RequestException,
)


def iter_sse_events(lines: Iterable[str]) -> Iterator[dict]:
    """
    Decode an SSE line stream into JSON payloads.

    Comment lines (``: keepalive``) and non-data fields are skipped;
    multi-line data is joined before decoding. Payloads that are not valid
    JSON are logged and dropped.
    """
    data: List[str] = []
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        if not line:
            if data:
                raw = "\n".join(data)
                data = []
                try:
                    yield json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Dropping malformed push event: {raw[:80]!r}")
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip(" "))
    if data:
        try:
            yield json.loads("\n".join(data))
        except json.JSONDecodeError:
            logger.warning("Dropping truncated push event at end of stream")


class LaneUpdateChannel:
    """
    Long-lived subscription to the backend's lane-update stream.

    Blocking stream reads run in a worker thread one event at a time;
    delivery always happens on the event loop, so subscribers can mutate
    the queue store directly.
    """

    def __init__(
        self,
        open_stream: Callable[[], requests.Response],
        fetch_board: Callable[[], Awaitable[Dict[Lane, List[VisitRecord]]]],
        deliver: Callable[[Lane, List[VisitRecord]], None],
        wait=None,
    ):
        """
        Args:
            open_stream: Blocking call returning a streaming response
            fetch_board: Coroutine returning a full board snapshot
            deliver: Called with (lane, records) for every lane update
            wait: tenacity wait strategy between reconnect attempts
        """
        self._open_stream = open_stream
        self._fetch_board = fetch_board
        self._deliver = deliver
        self._wait = wait or wait_exponential(
            multiplier=1, min=1, max=config.RECONNECT_MAX_BACKOFF_SECONDS
        )
        self._task: Optional[asyncio.Task] = None
        self._response: Optional[requests.Response] = None
        self._stopped = False
        self.connected = False
        self.connect_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start listening on the running event loop (idempotent)."""
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Stop listening and release the stream."""
        self._stopped = True
        self._close_response()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while not self._stopped:
            async for attempt in AsyncRetrying(
                stop=stop_never,
                wait=self._wait,
                retry=retry_if_exception_type(RECONNECT_ERRORS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    await self._listen()

    async def _listen(self) -> None:
        """One connection: resnapshot, then stream until the server closes."""
        try:
            self._response = await asyncio.to_thread(self._open_stream)
            self.connected = True
            self.connect_count += 1
            logger.info(f"Push channel connected (connection #{self.connect_count})")

            board = await self._fetch_board()
            for lane in Lane:
                self._deliver_safely(lane, board.get(lane, []))

            events = iter_sse_events(self._response.iter_lines(decode_unicode=True))
            while not self._stopped:
                payload = await asyncio.to_thread(next, events, _END)
                if payload is _END:
                    raise ChannelDropped("Push channel closed by server")
                self._handle(payload)
        except (requests.exceptions.ChunkedEncodingError, requests.exceptions.StreamConsumedError) as e:
            raise ChannelDropped(str(e)) from e
        finally:
            self.connected = False
            self._close_response()

    def _handle(self, payload: dict) -> None:
        try:
            update = LaneUpdate.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid lane update: {e.error_count()} errors")
            return
        self._deliver_safely(update.lane, list(update.records))

    def _deliver_safely(self, lane: Lane, records: List[VisitRecord]) -> None:
        try:
            self._deliver(lane, records)
        except Exception:
            # One bad update must not kill the subscription
            logger.exception(f"Lane update for {lane.value} could not be applied")

    def _close_response(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            response.close()
