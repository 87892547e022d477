"""
Per-endpoint-class request scheduling with bounded retry.

Each endpoint class (``links``, ``profiles``, ``creator_page``, ``discovery``)
has one policy, shared by every job that calls it:

  fixed_delay          one call at a time, starts at least ``interval_seconds``
                       apart, callers served in submission order (FIFO gate)
  staggered_parallel   up to ``max_in_flight`` calls at once, each start at
                       least ``stagger_seconds`` after the previous start
  unbounded            no spacing; ``max_in_flight`` caps local concurrency

``schedule()`` runs one unit of work under the policy. Transient failures are
retried with exponential backoff, each retry passing through the policy
again; exhausted retries and permanent failures come back as a
``WorkResult`` instead of being raised. ``CredentialError`` is the one
exception that propagates: it ends the caller's cycle.

Clock and sleep are injectable so the timing guarantees are testable without
real waiting.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar

from creative_sync.exceptions import CredentialError, PermanentItemError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float, Optional[threading.Event]], bool]


def interruptible_sleep(seconds: float, stop: Optional[threading.Event] = None) -> bool:
    """Sleep ``seconds``; return ``False`` if ``stop`` was set first."""
    if stop is None:
        time.sleep(seconds)
        return True
    return not stop.wait(seconds)


# ── Results ───────────────────────────────────────────────────────────────────


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WorkResult:
    """Outcome of one scheduled unit of work.

    Attributes:
        ok: ``True`` if the unit returned normally.
        value: The unit's return value when ``ok``.
        error: The last exception raised, if any.
        error_kind: Why the unit did not succeed.
        attempts: How many times the unit was started.
    """

    ok: bool
    value: Any = None
    error: Optional[BaseException] = None
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0

    @property
    def cancelled(self) -> bool:
        return self.error_kind is ErrorKind.CANCELLED


def _cancelled(attempts: int = 0) -> WorkResult:
    return WorkResult(ok=False, error_kind=ErrorKind.CANCELLED, attempts=attempts)


# ── Policy primitives ─────────────────────────────────────────────────────────


class _FifoGate:
    """Admits callers one at a time, in arrival order, ``interval`` apart.

    ``enter()`` blocks until it is the caller's turn and at least ``interval``
    has passed since the previous admission; the turn is held until
    ``leave()``. A caller that gives up (``stop`` set) forfeits its ticket
    without blocking the queue.
    """

    def __init__(self, interval: float, clock: Clock, sleep: Sleeper) -> None:
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._cond = threading.Condition()
        self._tickets = itertools.count()
        self._serving = 0
        self._abandoned: set[int] = set()
        self._next_start: Optional[float] = None

    def enter(self, stop: Optional[threading.Event]) -> bool:
        with self._cond:
            ticket = next(self._tickets)
            while ticket != self._serving:
                if stop is not None and stop.is_set():
                    self._abandoned.add(ticket)
                    return False
                self._cond.wait(timeout=0.5)

        if self._next_start is not None:
            delay = self._next_start - self._clock()
            if delay > 0 and not self._sleep(delay, stop):
                self.leave()
                return False
        self._next_start = self._clock() + self._interval
        return True

    def leave(self) -> None:
        with self._cond:
            self._serving += 1
            while self._serving in self._abandoned:
                self._abandoned.discard(self._serving)
                self._serving += 1
            self._cond.notify_all()


class _Policy:
    """One endpoint class's throughput policy."""

    def __init__(self, name: str, config: Any, clock: Clock, sleep: Sleeper) -> None:
        self.name = name
        self.kind = config.policy
        self.max_in_flight = 1 if self.kind == "fixed_delay" else config.max_in_flight
        self._slots = threading.BoundedSemaphore(self.max_in_flight)
        if self.kind == "fixed_delay":
            self._gate: Optional[_FifoGate] = _FifoGate(config.interval_seconds, clock, sleep)
        elif self.kind == "staggered_parallel" and config.stagger_seconds > 0:
            self._gate = _FifoGate(config.stagger_seconds, clock, sleep)
        else:
            self._gate = None

    def acquire(self, stop: Optional[threading.Event]) -> bool:
        """Wait for admission; ``False`` if ``stop`` was set while waiting."""
        if self.kind == "fixed_delay":
            assert self._gate is not None
            return self._gate.enter(stop)

        while not self._slots.acquire(timeout=0.5):
            if stop is not None and stop.is_set():
                return False
        if self._gate is not None:
            if not self._gate.enter(stop):
                self._slots.release()
                return False
            # Only the start is spaced; the call itself runs concurrently.
            self._gate.leave()
        return True

    def release(self) -> None:
        if self.kind == "fixed_delay":
            assert self._gate is not None
            self._gate.leave()
        else:
            self._slots.release()


# ── Scheduler ─────────────────────────────────────────────────────────────────


class RateScheduler:
    """Runs work under per-endpoint-class policies with bounded retry.

    Args:
        policies: Endpoint class name → ``RatePolicyConfig``.
        max_retries: Retries after the first attempt for transient failures.
        backoff_base_seconds: First retry delay; doubles each retry.
        backoff_max_seconds: Cap on any single retry delay.
        clock: Monotonic seconds source.
        sleep: ``sleep(seconds, stop) -> bool``; ``False`` means stopped.
    """

    def __init__(
        self,
        policies: Mapping[str, Any],
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 30.0,
        clock: Clock = time.monotonic,
        sleep: Sleeper = interruptible_sleep,
    ) -> None:
        self._policies = {
            name: _Policy(name, policy, clock, sleep) for name, policy in policies.items()
        }
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "RateScheduler":
        """Build from an ``AppConfig`` (``rate_limits`` + ``retry`` sections)."""
        return cls(
            config.rate_limits,
            max_retries=config.retry.max_retries,
            backoff_base_seconds=config.retry.backoff_base_seconds,
            backoff_max_seconds=config.retry.backoff_max_seconds,
            **kwargs,
        )

    @property
    def endpoint_classes(self) -> list[str]:
        return sorted(self._policies)

    def _policy(self, endpoint_class: str) -> _Policy:
        try:
            return self._policies[endpoint_class]
        except KeyError:
            raise ValueError(
                f"Unknown endpoint class '{endpoint_class}'. "
                f"Configured: {self.endpoint_classes}"
            ) from None

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.backoff_base_seconds * (2 ** (attempt - 1))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.backoff_max_seconds)

    def schedule(
        self,
        endpoint_class: str,
        unit: Callable[[], T],
        stop: Optional[threading.Event] = None,
    ) -> WorkResult:
        """Run ``unit`` under the endpoint class's policy.

        Raises:
            CredentialError: Propagated from ``unit`` unchanged.
            ValueError: If ``endpoint_class`` is not configured.
        """
        policy = self._policy(endpoint_class)
        attempts = 0
        while True:
            if stop is not None and stop.is_set():
                return _cancelled(attempts)
            if not policy.acquire(stop):
                return _cancelled(attempts)

            attempts += 1
            try:
                value = unit()
            except CredentialError:
                raise
            except TransientError as exc:
                error: TransientError = exc
            except PermanentItemError as exc:
                return WorkResult(
                    ok=False, error=exc, error_kind=ErrorKind.PERMANENT, attempts=attempts
                )
            except Exception as exc:
                logger.warning(
                    "[%s] Unexpected %s treated as permanent: %s",
                    endpoint_class, type(exc).__name__, exc, exc_info=True,
                )
                return WorkResult(
                    ok=False, error=exc, error_kind=ErrorKind.PERMANENT, attempts=attempts
                )
            else:
                return WorkResult(ok=True, value=value, attempts=attempts)
            finally:
                policy.release()

            if attempts > self.max_retries:
                logger.warning(
                    "[%s] Giving up after %d attempts: %s", endpoint_class, attempts, error
                )
                return WorkResult(
                    ok=False, error=error, error_kind=ErrorKind.TRANSIENT, attempts=attempts
                )

            delay = self.backoff_delay(attempts, error.retry_after)
            logger.info(
                "[%s] Transient failure (attempt %d/%d), retrying in %.1fs: %s",
                endpoint_class, attempts, self.max_retries + 1, delay, error,
            )
            if not self._sleep(delay, stop):
                return WorkResult(
                    ok=False, error=error, error_kind=ErrorKind.CANCELLED, attempts=attempts
                )

    def map(
        self,
        endpoint_class: str,
        fn: Callable[[Any], T],
        items: Iterable[Any],
        stop: Optional[threading.Event] = None,
    ) -> list[WorkResult]:
        """Run ``fn(item)`` for every item; one result per item, in input order.

        Fixed-delay classes run sequentially in the calling thread; parallel
        classes fan out over a thread pool sized to ``max_in_flight``. Items not
        started before ``stop`` is set come back cancelled.

        Raises:
            CredentialError: The first one raised by any item; unstarted items
                are abandoned.
        """
        items = list(items)
        if not items:
            return []
        policy = self._policy(endpoint_class)

        if policy.max_in_flight == 1:
            return [self.schedule(endpoint_class, partial(fn, item), stop) for item in items]

        pool = ThreadPoolExecutor(
            max_workers=min(policy.max_in_flight, len(items)),
            thread_name_prefix=f"{endpoint_class}-worker",
        )
        try:
            futures = [
                pool.submit(self.schedule, endpoint_class, partial(fn, item), stop)
                for item in items
            ]
            return [future.result() for future in futures]
        except CredentialError:
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            pool.shutdown(wait=True)
