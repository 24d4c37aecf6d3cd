"""
Backend Connector — client for the producer's Discord queue API.

Endpoints:
    GET  /discord/queue?limit=N        → {"data": [QueueItem, ...]}
    POST /discord/queue/{id}/status    ← {"status": "complete" | "failed"}

Errors are classified for the poller and the status retry ledger:
    ProducerNetworkError  — no response received (connect/read/timeout)
    ProducerResponseError — a response arrived but was an error or unreadable
"""
from __future__ import annotations

import abc
import structlog
from collections import deque
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import BackendConfig, get_settings
from models.schemas import QueueStatus

logger = structlog.get_logger()

QUEUE_PATH = "/discord/queue"
STATUS_PATH = "/discord/queue/{item_id}/status"


class ProducerError(Exception):
    """Base exception for producer API calls."""


class ProducerNetworkError(ProducerError):
    """Transport-level failure: the producer never answered."""


class ProducerResponseError(ProducerError):
    """The producer answered with an error status or an unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def is_network_error(error: BaseException) -> bool:
    return isinstance(error, (ProducerNetworkError, httpx.TransportError))


class BackendConnector(abc.ABC):
    """Abstract base for producer queue connectors."""

    @abc.abstractmethod
    async def fetch_queue(self, limit: int = 20) -> list[dict[str, Any]]:
        """Fetch up to `limit` queued commands."""
        ...

    @abc.abstractmethod
    async def update_status(self, item_id: str, status: QueueStatus) -> None:
        """Report the delivery outcome of one command."""
        ...

    async def close(self) -> None:
        pass


class RESTBackendConnector(BackendConnector):
    """
    REST connector over httpx.
    Each request is retried by tenacity before its final error is classified.
    """

    def __init__(self, config: BackendConfig = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_settings().backend
        self.client = client
        self._retry_wait = wait_exponential(multiplier=0.5, max=10)

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": self.config.user_agent,
                    "X-API-Key": self.config.api_key,
                },
                timeout=self.config.timeout_s,
            )
        return self.client

    def _log_attempt(self, retry_state) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("backend_request_failed",
                       attempt=retry_state.attempt_number,
                       max_attempts=self.config.max_retries,
                       error=str(error))

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        client = await self._get_client()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.config.max_retries)),
                wait=self._retry_wait,
                retry=retry_if_exception_type(httpx.HTTPError),
                before_sleep=self._log_attempt,
                reraise=True,
            ):
                with attempt:
                    response = await client.request(method, path, **kwargs)
                    response.raise_for_status()
        except httpx.TransportError as e:
            logger.error("backend_request_exhausted", method=method, path=path, error=str(e))
            raise ProducerNetworkError(f"{method} {path}: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ProducerResponseError(
                f"{method} {path}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProducerResponseError(f"{method} {path}: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ProducerResponseError(f"{method} {path}: invalid JSON body", response.status_code) from e

    async def fetch_queue(self, limit: int = 20) -> list[dict[str, Any]]:
        body = await self._request("GET", QUEUE_PATH, params={"limit": limit})
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, list) else []

    async def update_status(self, item_id: str, status: QueueStatus) -> None:
        await self._request(
            "POST", STATUS_PATH.format(item_id=item_id),
            json={"status": QueueStatus(status).value},
        )

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()


class MockBackendConnector(BackendConnector):
    """
    In-memory producer for local development and testing.
    Items are handed out once; status reports are recorded in order.
    """

    def __init__(self, items: Optional[list[dict[str, Any]]] = None):
        self._queue: deque[dict[str, Any]] = deque(items or [])
        self.status_updates: list[tuple[str, str]] = []

    def enqueue(self, item: dict[str, Any]) -> None:
        self._queue.append(item)

    async def fetch_queue(self, limit: int = 20) -> list[dict[str, Any]]:
        batch = []
        while self._queue and len(batch) < limit:
            batch.append(self._queue.popleft())
        return batch

    async def update_status(self, item_id: str, status: QueueStatus) -> None:
        self.status_updates.append((item_id, QueueStatus(status).value))
        logger.info("mock_backend_status", item_id=item_id, status=QueueStatus(status).value)


def create_backend_connector(config: BackendConfig = None) -> BackendConnector:
    """Factory function to create the appropriate backend connector."""
    config = config or get_settings().backend
    if config.type == "rest" and config.base_url:
        return RESTBackendConnector(config)
    logger.warning("using_mock_backend", reason="no backend configured or base_url empty")
    return MockBackendConnector()
