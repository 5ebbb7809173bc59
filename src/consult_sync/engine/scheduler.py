"""Polling scheduler that keeps a conversation in sync with the server."""

import asyncio
import itertools
from typing import Callable, Optional

import structlog

from ..domain.errors import StaleResultDiscarded, TransportError
from ..domain.models import Connectivity, ReconcileResult
from ..metrics import FETCH_ERRORS, FETCHES, SKIPPED_TICKS, STALE_RESULTS
from ..transport.base import TransportPort
from .connectivity import ConnectivityMonitor
from .store import OptimisticMessageStore

logger = structlog.get_logger()

OnTick = Callable[[ReconcileResult, bool], None]


class CancellationToken:
    """Flag shared by one scheduler run and every fetch it issues."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        """True once the run that owns this token has been stopped."""
        return self._cancelled

    def cancel(self) -> None:
        """Mark the run as stopped; results fetched under it are dropped."""
        self._cancelled = True


class SyncScheduler:
    """Runs silent background refreshes and manual ones through one fetch path.

    At most one fetch is outstanding at any time. Each fetch is stamped with
    an increasing sequence number and its result is applied only if the run
    is still active and nothing newer has been applied already.
    """

    def __init__(
        self,
        transport: TransportPort,
        store: OptimisticMessageStore,
        connectivity: ConnectivityMonitor,
        poll_interval_ms: int = 10000,
        request_timeout: float = 30.0,
        auto_refresh: bool = True,
    ) -> None:
        self.transport = transport
        self.store = store
        self.connectivity = connectivity
        self.poll_interval_ms = poll_interval_ms
        self.request_timeout = request_timeout
        self.auto_refresh = auto_refresh
        self.conversation_id: Optional[str] = None
        self._on_tick: Optional[OnTick] = None
        self._token: Optional[CancellationToken] = None
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._sequence = itertools.count(1)
        self._last_applied = 0

    @property
    def active(self) -> bool:
        """True between start and stop."""
        return self._token is not None and not self._token.cancelled

    @property
    def fetch_in_flight(self) -> bool:
        """True while a fetch task has not completed."""
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def last_applied_seq(self) -> int:
        """Sequence number of the most recent fetch applied to the store."""
        return self._last_applied

    def start(self, conversation_id: str, on_tick: Optional[OnTick] = None) -> None:
        """Begin polling ``conversation_id`` every ``poll_interval_ms``."""
        if self.active:
            logger.warning("scheduler_already_started", conversation_id=conversation_id)
            return
        self.conversation_id = conversation_id
        self._on_tick = on_tick
        self._token = CancellationToken()
        if self.auto_refresh:
            self._timer = asyncio.create_task(self._run(self._token))
        self._unsubscribe = self.connectivity.on_change(self._on_connectivity_change)
        logger.info(
            "scheduler_started",
            conversation_id=conversation_id,
            poll_interval_ms=self.poll_interval_ms,
            auto_refresh=self.auto_refresh,
        )

    async def stop(self) -> None:
        """Cancel the timer and make any in-flight fetch a no-op."""
        token = self._token
        if token is None or token.cancelled:
            return
        token.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = [t for t in (self._timer, self._in_flight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._timer = None
        self._in_flight = None
        logger.info("scheduler_stopped", conversation_id=self.conversation_id)

    async def refresh(self, manual: bool = True) -> Optional[ReconcileResult]:
        """Fetch now; manual refreshes raise TransportError on failure."""
        token = self._token
        if token is None or token.cancelled:
            raise RuntimeError("Scheduler is not running")
        # Join the outstanding fetch instead of racing it
        while self._in_flight is not None and not self._in_flight.done():
            await asyncio.wait({self._in_flight})
        if token.cancelled:
            return None

        task = self._launch(token, manual=manual)
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _run(self, token: CancellationToken) -> None:
        """Sleep one interval, tick, repeat until the token is cancelled."""
        interval = self.poll_interval_ms / 1000
        try:
            while not token.cancelled:
                await asyncio.sleep(interval)
                if token.cancelled:
                    break
                self._tick(token)
        except asyncio.CancelledError:
            logger.debug("scheduler_timer_cancelled", conversation_id=self.conversation_id)

    def _tick(self, token: CancellationToken) -> None:
        """Start a background fetch unless offline, hidden or already fetching."""
        if not self.connectivity.snapshot().can_sync:
            SKIPPED_TICKS.inc()
            logger.debug("tick_skipped", conversation_id=self.conversation_id, reason="not_syncable")
            return
        if self.fetch_in_flight:
            SKIPPED_TICKS.inc()
            logger.info("tick_skipped", conversation_id=self.conversation_id, reason="fetch_in_flight")
            return
        self._launch(token, manual=False)

    def _launch(self, token: CancellationToken, manual: bool) -> asyncio.Task:
        """Create the fetch task and record it as the one in flight."""
        task = asyncio.create_task(self._fetch(token, manual))
        self._in_flight = task
        task.add_done_callback(self._release)
        return task

    def _release(self, task: asyncio.Task) -> None:
        """Done callback clearing the in-flight slot."""
        if self._in_flight is task:
            self._in_flight = None

    def _on_connectivity_change(self, previous: Connectivity, current: Connectivity) -> None:
        """Fetch at once when the app comes back online or to the foreground."""
        token = self._token
        if token is None or token.cancelled:
            return
        regained = (current.online and not previous.online) or (
            current.foreground and not previous.foreground
        )
        if not regained or not current.can_sync:
            return
        if self.fetch_in_flight:
            logger.debug("regained_refresh_skipped", conversation_id=self.conversation_id)
            return
        logger.info("connectivity_regained_refresh", conversation_id=self.conversation_id)
        self._launch(token, manual=False)

    def _ensure_fresh(self, token: CancellationToken, seq: int) -> None:
        """Raise StaleResultDiscarded if the result for ``seq`` must not be applied."""
        if token.cancelled or seq <= self._last_applied:
            raise StaleResultDiscarded(seq, self._last_applied, cancelled=token.cancelled)

    async def _fetch(self, token: CancellationToken, manual: bool) -> Optional[ReconcileResult]:
        """Fetch, then reconcile the result if it is still the freshest one."""
        seq = next(self._sequence)
        # Local confirmations after this point are not in the response
        issued_at = self.store.version
        FETCHES.inc()
        logger.debug("fetch_started", conversation_id=self.conversation_id, seq=seq, manual=manual)

        error: Optional[Exception] = None
        remote = []
        try:
            remote = await asyncio.wait_for(
                self.transport.fetch_messages(self.conversation_id),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError:
            error = TransportError(
                "Request timed out", detail="The server took too long to respond"
            )
        except TransportError as e:
            error = e
        except Exception as e:
            if manual:
                raise
            error = e

        if error is not None:
            FETCH_ERRORS.inc()
            if token.cancelled:
                return None
            if manual:
                logger.warning(
                    "manual_refresh_failed",
                    conversation_id=self.conversation_id,
                    seq=seq,
                    error=str(error),
                )
                raise error
            logger.warning(
                "silent_refresh_failed",
                conversation_id=self.conversation_id,
                seq=seq,
                error=str(error),
            )
            return None

        try:
            self._ensure_fresh(token, seq)
        except StaleResultDiscarded as e:
            STALE_RESULTS.inc()
            logger.info(
                "fetch_result_discarded",
                conversation_id=self.conversation_id,
                seq=e.seq,
                last_applied=e.last_applied,
                cancelled=e.cancelled,
            )
            return None

        result = self.store.reconcile(remote, issued_at=issued_at)
        self._last_applied = seq
        if self._on_tick is not None:
            self._on_tick(result, manual)
        return result
