# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Resilience utilities (retries, circuit breaker) for outbound calls."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stepunity.shared.config.settings import ResilienceConfig
from stepunity.shared.logging import logger

T = TypeVar("T")


class CircuitOpenError(RuntimeError):
    pass


@dataclass
class CircuitBreaker:
    """Simple in-memory circuit breaker."""

    name: str
    failure_threshold: int
    reset_timeout: float
    clock: Callable[[], float] = time.monotonic
    _failures: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def allow(self) -> bool:
        with self._lock:
            if self._opened_at is None:
                return True
            if self.clock() - self._opened_at >= self.reset_timeout:
                logger.info(f"breaker[{self.name}]: half-open state")
                self._opened_at = None
                self._failures = 0
                return True
            logger.warning(f"breaker[{self.name}]: open state refusing call")
            return False

    def on_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._failures >= self.failure_threshold and self._opened_at is None:
                self._opened_at = self.clock()
                logger.error(f"breaker[{self.name}]: opening circuit after failures")


def breaker_from_config(name: str, config: ResilienceConfig) -> CircuitBreaker:
    return CircuitBreaker(
        name=name,
        failure_threshold=config.circuit_fail_threshold,
        reset_timeout=config.circuit_reset_timeout,
    )


def resilient_call(  # noqa: UP047
    func: Callable[..., T],
    *args: Any,
    config: ResilienceConfig,
    breaker: CircuitBreaker | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """Execute ``func`` with bounded retries and an optional circuit breaker.

    Timeouts are the callee's concern: SMTP and httpx clients are built
    with their own bounded timeouts.
    """

    if breaker is not None and not breaker.allow():
        msg = f"Circuit breaker '{breaker.name}' is open"
        raise CircuitOpenError(msg)

    retry = Retrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_exponential(multiplier=config.backoff_base, max=config.backoff_cap),
        retry=retry_if_exception_type(retry_on),
        reraise=True,
    )

    try:
        for attempt in retry:
            with attempt:
                logger.debug(
                    f"resilience: attempt={attempt.retry_state.attempt_number} "
                    f"func={getattr(func, '__name__', 'call')}"
                )
                result = func(*args, **kwargs)
    except RetryError as exc:
        if breaker is not None:
            breaker.on_failure()
        last_exc = exc.last_attempt.exception()
        if last_exc is None:
            raise RuntimeError("resilience: retry failed without exception") from exc
        raise last_exc from exc
    except Exception:
        if breaker is not None:
            breaker.on_failure()
        raise

    if breaker is not None:
        breaker.on_success()
    return result


__all__ = ["CircuitBreaker", "CircuitOpenError", "breaker_from_config", "resilient_call"]
