"""
Service optimizers.

AIServiceOptimizer wraps calls to AI providers with a response cache,
in-flight request de-duplication, per-type batching, retry and timeouts.
APIOptimizer backs the HTTP surface with a response cache, fixed-window
rate limiting and per-endpoint request statistics.
"""

import asyncio
import hashlib
import json
import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional

from config.settings import Settings, settings as default_settings
from querygen.cache import CacheContext
from querygen.cost_tracker import estimate_request_cost
from querygen.errors import ProviderError, QueryGenerationError

logger = logging.getLogger(__name__)


# =============================================================================
# AI SERVICE OPTIMIZER
# =============================================================================

@dataclass
class AIRequest:
    """A single call to an AI provider."""
    id: str
    type: str  # "query-generation", "search", "extraction"
    payload: dict
    retries: int = 0


@dataclass
class AIResponse:
    id: str
    type: str
    result: Any
    cached: bool = False
    batched: bool = False
    processing_ms: int = 0
    cost: float = 0.0


@dataclass
class OptimizerConfig:
    cache_enabled: bool = True
    cache_max_size: int = 1000
    cache_ttl: float = 1800.0
    dedup_enabled: bool = True
    batching_enabled: bool = True
    max_batch_size: int = 10
    batch_timeout: float = 5.0
    batchable_types: list[str] = field(default_factory=lambda: ["search"])
    retry_enabled: bool = True
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, s: Settings) -> "OptimizerConfig":
        return cls(
            cache_enabled=s.ai_cache_enabled,
            cache_max_size=s.ai_cache_max_size,
            cache_ttl=s.ai_cache_ttl,
            dedup_enabled=s.ai_request_dedup_enabled,
            batching_enabled=s.ai_batching_enabled,
            max_batch_size=s.ai_max_batch_size,
            batch_timeout=s.ai_batch_timeout,
            batchable_types=list(s.ai_batchable_types),
            retry_enabled=s.ai_retry_enabled,
            max_retries=s.ai_max_retries,
            retry_delay=s.ai_retry_delay,
            timeout=s.ai_timeout,
        )


@dataclass
class _TypeStats:
    count: int = 0
    errors: int = 0
    cache_hits: int = 0
    total_ms: float = 0.0
    total_cost: float = 0.0


Executor = Callable[[AIRequest], Awaitable[Any]]
BatchExecutor = Callable[[list[AIRequest]], Awaitable[list[Any]]]


def request_cache_key(request_type: str, payload: dict) -> str:
    """sha256 of the type and canonical JSON payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{request_type}:{canonical}".encode()).hexdigest()


class AIServiceOptimizer:
    """
    Cache, de-duplicate, batch and retry AI provider calls.

    Args:
        executor: Runs a single request and returns its result
        batch_executor: Optional; runs a list of requests in one call
        config: Defaults to the values in settings
        clock: Monotonic time source (seconds)
        sleep: Awaitable delay, used for retry backoff and batch timers
    """

    def __init__(
        self,
        executor: Executor,
        batch_executor: Optional[BatchExecutor] = None,
        config: OptimizerConfig = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.executor = executor
        self.batch_executor = batch_executor
        self.config = config or OptimizerConfig.from_settings(default_settings)
        self.clock = clock
        self._sleep = sleep
        self.cache = CacheContext(
            max_size=self.config.cache_max_size,
            default_ttl=self.config.cache_ttl,
            clock=clock,
            name="ai-responses",
        )
        self._pending: dict[str, asyncio.Future] = {}
        self._queues: dict[str, list[tuple[AIRequest, asyncio.Future]]] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._batch_tasks: set[asyncio.Task] = set()
        self._stats: dict[str, _TypeStats] = {}
        self.batches_processed = 0
        self.batched_requests = 0

    async def execute(self, request: AIRequest) -> AIResponse:
        """
        Run a request through cache, de-duplication, batching and retry.

        Raises:
            ProviderError: when every attempt fails
        """
        start = self.clock()
        key = request_cache_key(request.type, request.payload)

        if self.config.cache_enabled:
            cached = self.cache.get(key)
            if cached is not None:
                elapsed = (self.clock() - start) * 1000
                self._record(request.type, elapsed, 0.0, success=True, cached=True)
                return AIResponse(request.id, request.type, cached, cached=True, processing_ms=int(elapsed))

        if not self.config.dedup_enabled:
            return await self._process(request, key, start)

        task = self._pending.get(request.id)
        if task is None:
            task = asyncio.ensure_future(self._process(request, key, start))
            self._pending[request.id] = task
            task.add_done_callback(lambda done, rid=request.id: self._forget(rid, done))
        return await asyncio.shield(task)

    def _forget(self, request_id: str, task: asyncio.Future) -> None:
        if self._pending.get(request_id) is task:
            del self._pending[request_id]

    async def _process(self, request: AIRequest, key: str, start: float) -> AIResponse:
        batched = self.config.batching_enabled and request.type in self.config.batchable_types
        try:
            if batched:
                result, cost = await self._enqueue(request)
            else:
                result, cost = await self._execute_with_retry(request)
        except QueryGenerationError:
            self._record(request.type, (self.clock() - start) * 1000, 0.0, success=False)
            raise

        elapsed = (self.clock() - start) * 1000
        if self.config.cache_enabled and result is not None:
            self.cache.set(key, result)
        self._record(request.type, elapsed, cost, success=True)
        return AIResponse(
            request.id, request.type, result,
            batched=batched, processing_ms=int(elapsed), cost=cost,
        )

    async def _execute_with_retry(self, request: AIRequest) -> tuple[Any, float]:
        while True:
            try:
                result = await asyncio.wait_for(self.executor(request), timeout=self.config.timeout)
                return result, estimate_request_cost(request.type)
            except Exception as e:
                if not self.config.retry_enabled or request.retries >= self.config.max_retries:
                    raise ProviderError(
                        f"AI request {request.id} failed after {request.retries + 1} attempt(s): {e or type(e).__name__}",
                        details={"request_id": request.id, "type": request.type, "retries": request.retries},
                    ) from e
                request = replace(request, retries=request.retries + 1)
                logger.warning("Retrying AI request %s (%d/%d): %s",
                               request.id, request.retries, self.config.max_retries, e)
                await self._sleep(self.config.retry_delay)

    # =========================================================================
    # BATCHING
    # =========================================================================

    async def _enqueue(self, request: AIRequest) -> tuple[Any, float]:
        future = asyncio.get_running_loop().create_future()
        queue = self._queues.setdefault(request.type, [])
        queue.append((request, future))

        if len(queue) >= self.config.max_batch_size:
            self._flush(request.type)
        elif request.type not in self._timers:
            self._timers[request.type] = asyncio.create_task(self._flush_after_timeout(request.type))
        return await future

    async def _flush_after_timeout(self, request_type: str) -> None:
        await self._sleep(self.config.batch_timeout)
        self._timers.pop(request_type, None)
        self._flush(request_type)

    def _flush(self, request_type: str) -> None:
        timer = self._timers.pop(request_type, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        items = self._queues.pop(request_type, [])
        if not items:
            return
        task = asyncio.create_task(self._run_batch(request_type, items))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)

    async def _run_batch(self, request_type: str, items: list[tuple[AIRequest, asyncio.Future]]) -> None:
        self.batches_processed += 1
        self.batched_requests += len(items)
        requests = [r for r, _ in items]
        logger.debug("Flushing batch of %d %s requests", len(items), request_type)

        if self.batch_executor is not None:
            try:
                results = await asyncio.wait_for(self.batch_executor(requests), timeout=self.config.timeout)
            except Exception as e:
                error = ProviderError(
                    f"Batch of {len(items)} {request_type} requests failed: {e or type(e).__name__}",
                    details={"type": request_type, "size": len(items)},
                )
                for _, future in items:
                    if not future.done():
                        future.set_exception(error)
                return
            outcomes = list(results)
            if len(outcomes) != len(items):
                error = ProviderError(
                    f"Batch executor returned {len(outcomes)} results for {len(items)} requests",
                    details={"type": request_type, "size": len(items)},
                )
                outcomes = [error] * len(items)
            batch_cost = estimate_request_cost(request_type)
        else:
            outcomes = await asyncio.gather(
                *(self._execute_with_retry(r) for r in requests), return_exceptions=True
            )
            batch_cost = sum(o[1] for o in outcomes if not isinstance(o, BaseException))
            outcomes = [o if isinstance(o, BaseException) else o[0] for o in outcomes]

        member_cost = batch_cost / len(items)
        for (request, future), outcome in zip(items, outcomes):
            if future.done():
                continue
            if isinstance(outcome, BaseException):
                future.set_exception(outcome)
            else:
                future.set_result((outcome, member_cost))

    # =========================================================================
    # TELEMETRY
    # =========================================================================

    def _record(self, request_type: str, elapsed_ms: float, cost: float, success: bool, cached: bool = False):
        stats = self._stats.setdefault(request_type, _TypeStats())
        stats.count += 1
        stats.total_ms += elapsed_ms
        stats.total_cost += cost
        if cached:
            stats.cache_hits += 1
        if not success:
            stats.errors += 1

    def get_stats(self) -> dict:
        per_type = {}
        for request_type, s in self._stats.items():
            per_type[request_type] = {
                "count": s.count,
                "avg_time_ms": s.total_ms / s.count if s.count else 0.0,
                "error_rate": s.errors / s.count if s.count else 0.0,
                "success_rate": (s.count - s.errors) / s.count if s.count else 0.0,
                "avg_cost": s.total_cost / s.count if s.count else 0.0,
                "total_cost": s.total_cost,
                "cache_hits": s.cache_hits,
            }
        return {
            "requests": per_type,
            "cache": self.cache.stats(),
            "batches": {
                "processed": self.batches_processed,
                "avg_batch_size": self.batched_requests / self.batches_processed if self.batches_processed else 0.0,
                "queued": sum(len(q) for q in self._queues.values()),
            },
            "pending_requests": len(self._pending),
        }

    def get_recommendations(self) -> list[str]:
        stats = self.get_stats()
        recommendations = []
        requests = stats["requests"]

        slow = [t for t, s in requests.items() if s["avg_time_ms"] > 10_000]
        if slow:
            recommendations.append(f"{len(slow)} AI services are responding slowly - consider optimization")
        failing = [t for t, s in requests.items() if s["error_rate"] > 0.1]
        if failing:
            recommendations.append(f"{len(failing)} AI services have high error rates - investigate and fix")
        expensive = [t for t, s in requests.items() if s["avg_cost"] > 0.10]
        if expensive:
            recommendations.append(f"{len(expensive)} AI services are costly - consider optimization or caching")
        if stats["cache"]["hits"] + stats["cache"]["misses"] and stats["cache"]["hit_rate"] < 0.3:
            recommendations.append("AI service cache hit rate is low - consider adjusting cache strategy")
        batches = stats["batches"]
        if batches["processed"] and batches["avg_batch_size"] < self.config.max_batch_size / 2:
            recommendations.append("Batch processing efficiency is low - consider adjusting batch size or timeout")
        return recommendations

    def clear_cache(self) -> None:
        self.cache.clear()

    async def close(self) -> None:
        """Flush queued batches and wait for in-flight batch work."""
        for request_type in list(self._queues):
            self._flush(request_type)
        if self._batch_tasks:
            await asyncio.gather(*self._batch_tasks, return_exceptions=True)


# =============================================================================
# HTTP OPTIMIZER
# =============================================================================

@dataclass
class APIOptimizerConfig:
    cache_enabled: bool = True
    cache_ttl: float = 300.0
    cache_max_size: int = 1000
    compression_threshold: int = 1024
    rate_limit_enabled: bool = True
    rate_limit_window: float = 60.0
    rate_limit_max: int = 100

    @classmethod
    def from_settings(cls, s: Settings) -> "APIOptimizerConfig":
        return cls(
            cache_enabled=s.api_cache_enabled,
            cache_ttl=s.api_cache_ttl,
            cache_max_size=s.api_cache_max_size,
            compression_threshold=s.compression_threshold,
            rate_limit_enabled=s.rate_limit_enabled,
            rate_limit_window=s.rate_limit_window,
            rate_limit_max=s.rate_limit_max,
        )


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds
    retry_after: Optional[int] = None

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitExceeded(QueryGenerationError):
    code = "RATE_LIMIT_EXCEEDED"
    error_type = "rate_limit_error"

    def __init__(self, result: RateLimitResult):
        super().__init__(
            f"Rate limit exceeded. Try again in {result.retry_after} seconds.",
            details={"limit": result.limit, "retryAfter": result.retry_after},
        )
        self.result = result


@dataclass
class _Window:
    count: int
    started_at: float


def client_identifier(headers, fallback: str = None) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the fallback."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return fallback or "unknown"


class APIOptimizer:
    """Response cache, fixed-window rate limiter and request stats for the HTTP API."""

    def __init__(self, config: APIOptimizerConfig = None, clock: Callable[[], float] = time.time):
        self.config = config or APIOptimizerConfig.from_settings(default_settings)
        self.clock = clock
        self.response_cache = CacheContext(
            max_size=self.config.cache_max_size,
            default_ttl=self.config.cache_ttl,
            clock=clock,
            name="api-responses",
        )
        # Entries expire with their window
        self.rate_limits = CacheContext(
            max_size=100_000,
            default_ttl=self.config.rate_limit_window,
            clock=clock,
            name="rate-limits",
        )
        self._endpoints: dict[str, _TypeStats] = {}

    # -------------------------------------------------------------------------
    # Rate limiting
    # -------------------------------------------------------------------------

    def check_rate_limit(self, client_id: str) -> RateLimitResult:
        """Count one request against the client's current window."""
        limit = self.config.rate_limit_max
        now = self.clock()
        window = self.rate_limits.get(client_id)
        if window is None:
            window = _Window(count=0, started_at=now)
            self.rate_limits.set(client_id, window)

        reset_at = window.started_at + self.config.rate_limit_window
        if window.count >= limit:
            return RateLimitResult(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=int(math.ceil(reset_at)),
                retry_after=max(1, int(math.ceil(reset_at - now))),
            )

        window.count += 1
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=limit - window.count,
            reset_at=int(math.ceil(reset_at)),
        )

    # -------------------------------------------------------------------------
    # Response cache
    # -------------------------------------------------------------------------

    @staticmethod
    def cache_key(method: str, path: str, params: dict = None) -> str:
        query = "&".join(f"{k}={v}" for k, v in sorted((params or {}).items()))
        return f"{method.upper()}:{path}?{query}"

    def should_cache(self, method: str, headers) -> bool:
        """Only GET responses of unauthenticated requests are cached."""
        return (
            self.config.cache_enabled
            and method.upper() == "GET"
            and not headers.get("authorization")
        )

    def get_cached_response(self, key: str) -> Optional[Any]:
        return self.response_cache.get(key)

    def cache_response(self, key: str, body: Any, ttl: float = None) -> None:
        self.response_cache.set(key, body, ttl)

    def invalidate(self, prefix: str = None) -> int:
        """Drop cached responses whose key starts with prefix (all when None)."""
        if prefix is None:
            count = len(self.response_cache)
            self.response_cache.clear()
            return count
        keys = [k for k in self.response_cache.keys() if str(k).startswith(prefix)]
        for key in keys:
            self.response_cache.evict(key)
        return len(keys)

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    def record_request(self, endpoint: str, duration_ms: float, status_code: int, cached: bool = False) -> None:
        stats = self._endpoints.setdefault(endpoint, _TypeStats())
        stats.count += 1
        stats.total_ms += duration_ms
        if cached:
            stats.cache_hits += 1
        if status_code >= 400:
            stats.errors += 1

    def get_stats(self) -> dict:
        endpoints = {
            endpoint: {
                "count": s.count,
                "avg_time_ms": s.total_ms / s.count if s.count else 0.0,
                "error_rate": s.errors / s.count if s.count else 0.0,
                "cache_hits": s.cache_hits,
            }
            for endpoint, s in self._endpoints.items()
        }
        return {
            "endpoints": endpoints,
            "cache": self.response_cache.stats(),
            "rate_limited_clients": len(self.rate_limits),
        }

    def get_recommendations(self) -> list[str]:
        stats = self.get_stats()
        recommendations = []
        slow = [e for e, s in stats["endpoints"].items() if s["avg_time_ms"] > 2000]
        if slow:
            recommendations.append(f"{len(slow)} endpoints are responding slowly: {', '.join(sorted(slow))}")
        failing = [e for e, s in stats["endpoints"].items() if s["error_rate"] > 0.05]
        if failing:
            recommendations.append(f"{len(failing)} endpoints have elevated error rates")
        cache = stats["cache"]
        if cache["hits"] + cache["misses"] and cache["hit_rate"] < 0.3:
            recommendations.append("API cache hit rate is low - consider longer TTLs for read endpoints")
        return recommendations

    @property
    def caches(self) -> list[CacheContext]:
        return [self.response_cache, self.rate_limits]
