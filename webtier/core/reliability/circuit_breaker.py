"""
Circuit breaker — fail launches fast while a provisioner keeps failing.

A provisioner that cannot start members (no addresses left, port taken,
backend down) would otherwise be hit by every replacement on every
tick. After ``failure_threshold`` failed launches in a row the breaker
opens and launches are rejected without calling the provisioner. Once
``recovery_timeout`` has passed, exactly one trial launch is let
through: its outcome closes or re-opens the breaker.

Terminations are never gated (see ProvisionerRegistry).
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from typing import Any

from webtier.core.engine.clock import Clock, MonotonicClock

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Launch gate for one provisioner. Safe to share between threads."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Clock | None = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock or MonotonicClock()

        self.failure_count = 0
        self.total_rejections = 0
        self._opened_at: float | None = None
        self._trial_running = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state()

    def allow_request(self) -> bool:
        """Whether a launch may go to the provisioner now."""
        with self._lock:
            state = self._state()
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN and not self._trial_running:
                self._trial_running = True
                logger.info("Circuit breaker '%s': trial launch after %.0fs", self.name, self.recovery_timeout)
                return True
            self.total_rejections += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            was_open = self._opened_at is not None
            self.failure_count = 0
            self._opened_at = None
            self._trial_running = False
        if was_open:
            logger.info("Circuit breaker '%s' closed", self.name)

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            trial_failed = self._trial_running
            self._trial_running = False
            if trial_failed or (self._opened_at is None and self.failure_count >= self.failure_threshold):
                self._opened_at = self.clock.now()
                opened = True
            else:
                opened = False
        if opened:
            logger.warning(
                "Circuit breaker '%s' open after %d failed launches; retrying in %.0fs",
                self.name,
                self.failure_count,
                self.recovery_timeout,
            )

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self._state().value,
                "failure_count": self.failure_count,
                "total_rejections": self.total_rejections,
                "failure_threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            }

    def _state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.CLOSED
        if self._trial_running or self.clock.now() - self._opened_at >= self.recovery_timeout:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN


class CircuitBreakerRegistry:
    """Breakers by provisioner name, created on first use."""

    def __init__(
        self,
        default_threshold: int = 5,
        default_timeout: float = 30.0,
        clock: Clock | None = None,
    ):
        self.default_threshold = default_threshold
        self.default_timeout = default_timeout
        self.clock = clock or MonotonicClock()
        self.breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self.breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold=self.default_threshold,
                    recovery_timeout=self.default_timeout,
                    clock=self.clock,
                )
                self.breakers[name] = breaker
            return breaker

    def get_status(self) -> dict[str, dict[str, Any]]:
        return {name: cb.to_dict() for name, cb in list(self.breakers.items())}
