"""In-process RPC: requests, a connection pool, a server, a client and retries."""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

Handler = Callable[[bytes], bytes]
Clock = Callable[[], float]

_U64_MAX = (1 << 64) - 1


class DistributedError(Exception):
    """Base class of errors raised by distributed components."""


class NetworkError(DistributedError):
    """A transport or RPC failure."""


@dataclass(frozen=True)
class RpcRequest:
    """One call; ``timeout`` is in seconds."""

    id: int
    method: str
    payload: bytes
    timeout: Optional[float] = None


@dataclass(frozen=True)
class RpcResponse:
    """The outcome of one call: either ``result`` or ``error`` is set."""

    id: int
    result: Optional[bytes] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.result is None) == (self.error is None):
            raise ValueError("exactly one of result and error must be set")

    @property
    def ok(self) -> bool:
        """True if the call succeeded."""
        return self.error is None


@dataclass(frozen=True)
class BatchRpcRequest:
    """Several calls sent together."""

    requests: list[RpcRequest]
    batch_id: int


@dataclass(frozen=True)
class BatchRpcResponse:
    """The responses to a batch, in request order."""

    responses: list[RpcResponse]
    batch_id: int


@dataclass
class ConnectionInfo:
    """State of one pooled connection; times are clock readings in seconds."""

    id: str
    created_at: float
    last_used: float
    is_healthy: bool = True
    request_count: int = 0


@dataclass(frozen=True)
class ConnectionPoolConfig:
    """Pool limits; durations are in seconds."""

    max_connections: int = 10
    min_connections: int = 2
    connection_timeout: float = 5.0
    idle_timeout: float = 300.0
    health_check_interval: float = 30.0


class ConnectionPool:
    """Hands out reusable connection identifiers."""

    def __init__(
        self, config: Optional[ConnectionPoolConfig] = None, clock: Clock = time.monotonic
    ) -> None:
        self.config = config if config is not None else ConnectionPoolConfig()
        self._clock = clock
        self._connections: dict[str, ConnectionInfo] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    async def get_connection(self, endpoint: str) -> str:
        """Reuse a healthy, fresh connection or open a new one.

        Raises NetworkError when the pool is full.
        """
        with self._lock:
            now = self._clock()
            for conn_id, conn in self._connections.items():
                if conn.is_healthy and now - conn.last_used < self.config.idle_timeout:
                    conn.last_used = now
                    conn.request_count += 1
                    return conn_id
            if len(self._connections) >= self.config.max_connections:
                raise NetworkError("Connection pool exhausted")
            conn_id = f"conn_{next(self._ids)}"
            self._connections[conn_id] = ConnectionInfo(
                id=conn_id, created_at=now, last_used=now, is_healthy=True, request_count=1
            )
            return conn_id

    def release_connection(self, connection_id: str) -> None:
        """Mark a connection as just used."""
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is not None:
                conn.last_used = self._clock()

    def mark_unhealthy(self, connection_id: str) -> None:
        """Stop handing out a connection."""
        with self._lock:
            conn = self._connections.get(connection_id)
            if conn is not None:
                conn.is_healthy = False

    def cleanup_expired(self) -> None:
        """Drop unhealthy or idle connections when above the minimum pool size."""
        with self._lock:
            if len(self._connections) <= self.config.min_connections:
                return
            now = self._clock()
            self._connections = {
                conn_id: conn
                for conn_id, conn in self._connections.items()
                if conn.is_healthy and now - conn.last_used < self.config.idle_timeout
            }

    def get_stats(self) -> dict[str, ConnectionInfo]:
        """Copies of all connection records."""
        with self._lock:
            return {k: dataclasses.replace(v) for k, v in self._connections.items()}


class InMemoryRpcServer:
    """Dispatches calls to registered handlers by method name."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.RLock()

    def register(self, method: str, handler: Handler) -> None:
        """Register or replace the handler of a method."""
        with self._lock:
            self._handlers[method] = handler

    def handler_for(self, method: str) -> Optional[Handler]:
        """The handler of a method, or None."""
        with self._lock:
            return self._handlers.get(method)

    async def handle_batch(self, batch_request: BatchRpcRequest) -> BatchRpcResponse:
        """Run each request of a batch; unknown methods give error responses."""
        responses = []
        for request in batch_request.requests:
            handler = self.handler_for(request.method)
            if handler is None:
                responses.append(
                    RpcResponse(request.id, error=f"Method not found: {request.method}")
                )
            else:
                responses.append(RpcResponse(request.id, result=bytes(handler(request.payload))))
        return BatchRpcResponse(responses=responses, batch_id=batch_request.batch_id)


class InMemoryRpcClient:
    """Calls an in-process server directly."""

    def __init__(
        self, server: InMemoryRpcServer, connection_pool: Optional[ConnectionPool] = None
    ) -> None:
        self.server = server
        self.connection_pool = (
            connection_pool if connection_pool is not None else ConnectionPool()
        )
        self._request_ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_request_id(self) -> int:
        with self._id_lock:
            return next(self._request_ids)

    def call(self, method: str, payload: bytes) -> bytes:
        """Run a method; raises NetworkError if it is not registered."""
        handler = self.server.handler_for(method)
        if handler is None:
            raise NetworkError(f"method not found: {method}")
        return bytes(handler(payload))

    async def call_async(self, method: str, payload: bytes) -> bytes:
        """Take a pooled connection, then run a method."""
        await self.connection_pool.get_connection("localhost")
        return self.call(method, payload)

    async def call_batch(self, requests: list[RpcRequest]) -> list[RpcResponse]:
        """Run several requests as one batch."""
        batch = BatchRpcRequest(requests=list(requests), batch_id=self._next_request_id())
        response = await self.server.handle_batch(batch)
        return response.responses


@dataclass(frozen=True)
class RetryPolicy:
    """How often to retry and how long to back off, in milliseconds."""

    max_retries: int
    retry_on_empty: bool = False
    backoff_base_ms: Optional[int] = None


class RetryClient:
    """Wraps a client and retries failed or, optionally, empty calls."""

    def __init__(
        self,
        inner: InMemoryRpcClient,
        policy: RetryPolicy,
        sleep: Callable[[float], object] = time.sleep,
        async_sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.policy = policy
        self._sleep = sleep
        self._async_sleep = async_sleep

    def _delay(self, attempt: int) -> Optional[float]:
        base = self.policy.backoff_base_ms
        if base is None:
            return None
        millis = min(base * (1 << min(attempt, 16)), _U64_MAX)
        return millis / 1000.0

    def _backoff(self, attempt: int) -> None:
        delay = self._delay(attempt)
        if delay is not None:
            self._sleep(delay)

    async def _backoff_async(self, attempt: int) -> None:
        delay = self._delay(attempt)
        if delay is not None:
            await self._async_sleep(delay)

    def call(self, method: str, payload: bytes) -> bytes:
        """Call with retries; raises the last error when all attempts fail."""
        last_err: Optional[DistributedError] = None
        for attempt in range(self.policy.max_retries + 1):
            try:
                value = self.inner.call(method, payload)
            except DistributedError as err:
                last_err = err
            else:
                if not (self.policy.retry_on_empty and not value):
                    return value
            self._backoff(attempt)
        raise last_err if last_err is not None else NetworkError("retry failed")

    async def call_async(self, method: str, payload: bytes) -> bytes:
        """Asynchronous call with retries."""
        last_err: Optional[DistributedError] = None
        for attempt in range(self.policy.max_retries + 1):
            try:
                value = await self.inner.call_async(method, payload)
            except DistributedError as err:
                last_err = err
            else:
                if not (self.policy.retry_on_empty and not value):
                    return value
            await self._backoff_async(attempt)
        raise last_err if last_err is not None else NetworkError("retry failed")

    async def call_batch(self, requests: list[RpcRequest]) -> list[RpcResponse]:
        """Batch call with retries; empty successful results count as failures if asked."""
        last_err: Optional[DistributedError] = None
        for attempt in range(self.policy.max_retries + 1):
            try:
                responses = await self.inner.call_batch(list(requests))
            except DistributedError as err:
                last_err = err
            else:
                has_empty = any(r.ok and r.result == b"" for r in responses)
                if not (self.policy.retry_on_empty and has_empty):
                    return responses
            await self._backoff_async(attempt)
        raise last_err if last_err is not None else NetworkError("retry failed")