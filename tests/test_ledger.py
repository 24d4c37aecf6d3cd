"""
Tests — Status Retry Ledger: enqueue, report, flush, eviction.

Run:
  pytest tests/test_ledger.py -v
"""
import pytest
from unittest.mock import AsyncMock

from backend.connector import MockBackendConnector, ProducerNetworkError, ProducerResponseError
from backend.ledger import StatusRetryLedger
from models.schemas import QueueStatus


@pytest.fixture
def backend() -> MockBackendConnector:
    return MockBackendConnector()


@pytest.fixture
def ledger(backend, clock) -> StatusRetryLedger:
    return StatusRetryLedger(backend, base_delay_s=10, max_delay_s=300, clock=clock)


class TestEnqueue:

    def test_first_enqueue(self, ledger, clock):
        record = ledger.enqueue("42", QueueStatus.COMPLETE)

        assert record.attempt == 1
        assert record.next_attempt_at == clock.now + 10
        assert len(ledger) == 1

    def test_same_id_replaces_record(self, ledger, clock):
        ledger.enqueue("42", QueueStatus.COMPLETE)
        clock.advance(5)
        record = ledger.enqueue("42", QueueStatus.COMPLETE)

        assert len(ledger) == 1
        assert ledger.get("42") is record
        assert record.attempt == 2
        assert record.next_attempt_at == clock.now + 20

    def test_delay_is_capped(self, ledger):
        assert [ledger.delay_for(n) for n in range(1, 8)] == [10, 20, 40, 80, 160, 300, 300]

    def test_eviction_after_max_attempts(self, backend, clock):
        ledger = StatusRetryLedger(backend, base_delay_s=10, max_attempts=2, clock=clock)
        ledger.enqueue("42", QueueStatus.FAILED)
        ledger.enqueue("42", QueueStatus.FAILED)

        assert ledger.enqueue("42", QueueStatus.FAILED) is None
        assert "42" not in ledger


class TestReport:

    @pytest.mark.asyncio
    async def test_accepted(self, ledger, backend):
        assert await ledger.report("42", QueueStatus.COMPLETE) is True
        assert backend.status_updates == [("42", "complete")]
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_network_failure_enqueues(self, ledger, backend, clock):
        backend.update_status = AsyncMock(side_effect=ProducerNetworkError("connection refused"))

        assert await ledger.report("42", QueueStatus.COMPLETE) is False

        record = ledger.get("42")
        assert (record.id, record.status, record.attempt) == ("42", QueueStatus.COMPLETE, 1)
        assert record.next_attempt_at == pytest.approx(clock.now + 10)

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, ledger, backend):
        backend.update_status = AsyncMock(side_effect=ProducerResponseError("HTTP 404", 404))

        assert await ledger.report("42", QueueStatus.FAILED) is False
        assert len(ledger) == 0


class TestFlush:

    @pytest.mark.asyncio
    async def test_nothing_due(self, ledger, backend):
        ledger.enqueue("42", QueueStatus.COMPLETE)
        stats = await ledger.flush()

        assert stats["due"] == 0
        assert backend.status_updates == []
        assert "42" in ledger

    @pytest.mark.asyncio
    async def test_due_record_sent_and_removed(self, ledger, backend, clock):
        ledger.enqueue("42", QueueStatus.COMPLETE)
        clock.advance(10)

        stats = await ledger.flush()

        assert stats == {"due": 1, "sent": 1, "requeued": 0, "dropped": 0}
        assert backend.status_updates == [("42", "complete")]
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_network_failure_requeues_with_longer_delay(self, ledger, backend, clock):
        ledger.enqueue("42", QueueStatus.COMPLETE)
        clock.advance(10)
        backend.update_status = AsyncMock(side_effect=ProducerNetworkError("timeout"))

        stats = await ledger.flush()

        assert stats["requeued"] == 1
        record = ledger.get("42")
        assert record.attempt == 2
        assert record.next_attempt_at == clock.now + 20

    @pytest.mark.asyncio
    async def test_rejection_drops_record(self, ledger, backend, clock):
        ledger.enqueue("42", QueueStatus.COMPLETE)
        ledger.enqueue("43", QueueStatus.FAILED)
        clock.advance(10)
        backend.update_status = AsyncMock(side_effect=[ProducerResponseError("HTTP 404", 404), None])

        stats = await ledger.flush()

        assert stats == {"due": 2, "sent": 1, "requeued": 0, "dropped": 1}
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_eviction_during_flush_counts_as_dropped(self, backend, clock):
        ledger = StatusRetryLedger(backend, base_delay_s=10, max_attempts=1, clock=clock)
        ledger.enqueue("42", QueueStatus.COMPLETE)
        clock.advance(10)
        backend.update_status = AsyncMock(side_effect=ProducerNetworkError("timeout"))

        stats = await ledger.flush()

        assert stats["dropped"] == 1
        assert len(ledger) == 0
