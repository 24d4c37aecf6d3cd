"""
Status Retry Ledger — pending status reports that failed on the network.

One record per queue item id. A network-class failure (re)schedules the
record with exponential, capped delay; a rejected update (application-class)
is permanent and the record is dropped. `flush()` runs once per poll tick,
before new items are fetched.
"""
from __future__ import annotations

import structlog
import time
from dataclasses import dataclass
from typing import Callable, Optional

from backend.connector import BackendConnector, ProducerError, is_network_error
from models.schemas import QueueStatus


@dataclass
class RetryRecord:
    id: str
    status: QueueStatus
    attempt: int
    next_attempt_at: float            # unix seconds


class StatusRetryLedger:
    """
    Usage:
        ledger = StatusRetryLedger(backend)
        await ledger.report(item_id, QueueStatus.COMPLETE)   # first attempt
        await ledger.flush()                                 # every tick
    """

    def __init__(
        self,
        backend: BackendConnector,
        base_delay_s: float = 10.0,
        max_delay_s: float = 300.0,
        max_attempts: Optional[int] = None,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.backend = backend
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.max_attempts = max_attempts
        self._clock = clock
        self._records: dict[str, RetryRecord] = {}
        self._log = logger or structlog.get_logger().bind(component="status_ledger")

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._records

    def get(self, item_id: str) -> Optional[RetryRecord]:
        return self._records.get(item_id)

    @property
    def records(self) -> list[RetryRecord]:
        return list(self._records.values())

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay_s * (2 ** (attempt - 1)), self.max_delay_s)

    def enqueue(self, item_id: str, status: QueueStatus) -> Optional[RetryRecord]:
        """Schedule (or reschedule) a retry, replacing any record for the id."""
        existing = self._records.get(item_id)
        attempt = (existing.attempt if existing else 0) + 1

        if self.max_attempts is not None and attempt > self.max_attempts:
            self._records.pop(item_id, None)
            self._log.error("status_retry_evicted",
                            item_id=item_id,
                            status=QueueStatus(status).value,
                            attempts=attempt - 1)
            return None

        delay = self.delay_for(attempt)
        record = RetryRecord(
            id=item_id,
            status=QueueStatus(status),
            attempt=attempt,
            next_attempt_at=self._clock() + delay,
        )
        self._records[item_id] = record
        self._log.warning("status_retry_scheduled",
                          item_id=item_id,
                          status=record.status.value,
                          attempt=attempt,
                          delay_s=delay)
        return record

    async def report(self, item_id: str, status: QueueStatus) -> bool:
        """
        First status report for an item. Network failures are enqueued,
        rejections are logged and dropped. Returns True when accepted.
        """
        try:
            await self.backend.update_status(item_id, status)
        except ProducerError as e:
            if is_network_error(e):
                self.enqueue(item_id, status)
            else:
                self._log.error("status_update_rejected",
                                item_id=item_id,
                                status=QueueStatus(status).value,
                                error=str(e))
            return False

        self._records.pop(item_id, None)
        self._log.debug("status_reported", item_id=item_id, status=QueueStatus(status).value)
        return True

    async def flush(self) -> dict[str, int]:
        """Retry every due record once. Returns counts: {"due", "sent", "requeued", "dropped"}."""
        stats = {"due": 0, "sent": 0, "requeued": 0, "dropped": 0}
        if not self._records:
            return stats

        now = self._clock()
        due = [r for r in self._records.values() if r.next_attempt_at <= now]
        stats["due"] = len(due)

        for record in due:
            try:
                await self.backend.update_status(record.id, record.status)
            except ProducerError as e:
                if is_network_error(e):
                    if self.enqueue(record.id, record.status) is None:
                        stats["dropped"] += 1
                    else:
                        stats["requeued"] += 1
                    continue
                self._records.pop(record.id, None)
                stats["dropped"] += 1
                self._log.error("status_retry_dropped",
                                item_id=record.id,
                                status=record.status.value,
                                attempt=record.attempt,
                                error=str(e))
                continue

            self._records.pop(record.id, None)
            stats["sent"] += 1
            self._log.info("status_retry_succeeded",
                           item_id=record.id,
                           status=record.status.value,
                           attempt=record.attempt)

        return stats
