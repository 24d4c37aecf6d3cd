"""
Queue Poller — drives the fetch → dispatch → report cycle.

Runs on the event loop as a self-rescheduling timer, started once the
Discord client is ready.

Flow (one tick):
    flush due status retries
    → fetch a bounded batch from the producer
    → dispatch each item sequentially, report its outcome
    → reset or grow the poll interval
    → schedule the next tick

Ticks are single-flight: a tick that finds another one in progress only
reschedules. Network failures on fetch back the interval off
exponentially up to `max_backoff_s`; one successful fetch resets it.
"""
from __future__ import annotations

import asyncio
import structlog
from dataclasses import dataclass
from typing import Any, Optional

from backend.connector import BackendConnector, ProducerError, is_network_error
from backend.ledger import StatusRetryLedger
from core.dispatcher import ActionDispatcher
from models.schemas import QueueItem


@dataclass
class PollState:
    current_interval_s: float
    backoff_attempts: int = 0
    in_flight: bool = False


class QueuePoller:
    """
    Polls the producer queue and dispatches each command.

    Configure intervals in settings:
        worker:
          poll_interval_s: 30
          max_backoff_s: 300
          status_backoff_base_s: 10
          queue_fetch_limit: 20
    """

    def __init__(
        self,
        backend: BackendConnector,
        dispatcher: ActionDispatcher,
        ledger: Optional[StatusRetryLedger] = None,
        poll_interval_s: float = 30.0,
        max_backoff_s: float = 300.0,
        status_backoff_base_s: float = 10.0,
        fetch_limit: int = 20,
        logger=None,
    ):
        self.backend = backend
        self.dispatcher = dispatcher
        self.ledger = ledger if ledger is not None else StatusRetryLedger(
            backend, base_delay_s=status_backoff_base_s, max_delay_s=max_backoff_s,
        )
        self.poll_interval_s = poll_interval_s
        self.max_backoff_s = max_backoff_s
        self.fetch_limit = fetch_limit
        self.state = PollState(current_interval_s=poll_interval_s)
        self._log = logger or structlog.get_logger().bind(component="queue_poller")
        self._running = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Begin polling immediately; a second call is a no-op."""
        if self._running:
            return
        self._running = True
        self._log.info("queue_polling_started", interval_s=self.poll_interval_s)
        self._schedule_next(0)

    async def stop(self) -> None:
        """Cancel the pending tick. A tick already in flight runs to completion."""
        was_running = self._running
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if was_running:
            self._log.info("queue_polling_stopped")

    def _schedule_next(self, delay: Optional[float] = None) -> None:
        if not self._running:
            return
        if self._timer is not None:
            self._timer.cancel()
        delay = self.state.current_interval_s if delay is None else delay
        self._timer = asyncio.get_running_loop().call_later(delay, self._launch_tick)

    def _launch_tick(self) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self.tick())

    async def tick(self) -> dict[str, int]:
        """
        Single poll cycle. Returns counts:
        {"fetched": N, "dispatched": N, "failed": N, "skipped": N}
        """
        stats = {"fetched": 0, "dispatched": 0, "failed": 0, "skipped": 0}

        if self.state.in_flight:
            self._log.debug("poll_skipped_in_flight")
            self._schedule_next()
            return stats

        self.state.in_flight = True
        try:
            try:
                await self.ledger.flush()
            except Exception as e:
                self._log.error("status_flush_error", error=str(e), exc_info=True)

            items, fetched_ok = await self._fetch()
            stats["fetched"] = len(items)
            if not items:
                self._log.debug("queue_empty")

            for raw in items:
                try:
                    outcome = await self._process_item(raw)
                except Exception as e:
                    self._log.error("queue_item_error", item_id=_raw_id(raw), error=str(e), exc_info=True)
                    stats["failed"] += 1
                    continue
                if outcome is None:
                    stats["skipped"] += 1
                elif outcome:
                    stats["dispatched"] += 1
                else:
                    stats["failed"] += 1

            if fetched_ok:
                self._reset_backoff()
        finally:
            self.state.in_flight = False
            self._schedule_next()

        if stats["fetched"]:
            self._log.info("poll_cycle_complete", **stats)
        return stats

    async def _fetch(self) -> tuple[list[Any], bool]:
        try:
            items = await self.backend.fetch_queue(self.fetch_limit)
        except ProducerError as e:
            self._log.warning("queue_fetch_failed", error=str(e))
            if is_network_error(e):
                self._increase_backoff()
                return [], False
            return [], True

        self._log.debug("queue_fetched", count=len(items))
        return items, True

    async def _process_item(self, raw: Any) -> Optional[bool]:
        """Dispatch one raw record and report it. None means skipped."""
        item = QueueItem.from_raw(raw)
        if item is None or not item.id:
            self._log.warning("queue_item_missing_id", item=raw)
            return None

        outcome = await self.dispatcher.dispatch(item)
        if not outcome.success:
            self._log.warning("queue_item_failed",
                              item_id=item.id,
                              action=item.action,
                              reason=outcome.reason.value if outcome.reason else None)
        await self.ledger.report(item.id, outcome.status)
        return outcome.success

    def _increase_backoff(self) -> None:
        self.state.backoff_attempts += 1
        self.state.current_interval_s = min(
            self.poll_interval_s * (2 ** self.state.backoff_attempts),
            self.max_backoff_s,
        )
        self._log.warning("queue_backoff_increased",
                          interval_s=self.state.current_interval_s,
                          attempt=self.state.backoff_attempts)

    def _reset_backoff(self) -> None:
        if self.state.backoff_attempts or self.state.current_interval_s != self.poll_interval_s:
            self._log.debug("queue_backoff_reset", interval_s=self.poll_interval_s)
        self.state.backoff_attempts = 0
        self.state.current_interval_s = self.poll_interval_s


def _raw_id(raw: Any) -> Any:
    return raw.get("id") if isinstance(raw, dict) else None
