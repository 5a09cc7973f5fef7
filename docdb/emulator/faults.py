"""Fault injection for the emulator.

Injects throttling (429) and server (5xx) failures so that client retry and
backoff behaviour can be exercised. Failures are either scheduled explicitly
(the next N matching requests fail) or drawn from a configured pattern.
"""

import logging
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)

SUPPORTED_ERROR_CODES = (429, 500, 502, 503, 504)


class FailurePattern(str, Enum):
    """Failure injection patterns."""

    RANDOM = "random"  # Random failures based on rate
    SEQUENTIAL = "sequential"  # Every Nth request fails


@dataclass
class FaultConfig:
    """Pattern-based failure injection settings."""

    enabled: bool = False
    failure_rate: float = 0.0  # 0.0 to 1.0
    error_codes: List[int] = field(default_factory=lambda: [503])
    retry_after_ms: int = 10
    pattern: FailurePattern = FailurePattern.RANDOM

    def __post_init__(self):
        """Validate configuration."""
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0.0 and 1.0")
        if self.retry_after_ms < 0:
            raise ValueError("retry_after_ms must be non-negative")
        if not self.error_codes:
            self.error_codes = [503]
        for code in self.error_codes:
            _check_code(code)


@dataclass
class ScheduledFault:
    """One explicitly scheduled failure."""

    error_code: int
    retry_after_ms: Optional[int] = None
    method: Optional[str] = None
    path_prefix: Optional[str] = None

    def matches(self, method: str, path: str) -> bool:
        if self.method and self.method.upper() != method.upper():
            return False
        if self.path_prefix is not None and not path.startswith(self.path_prefix.strip("/")):
            return False
        return True


@dataclass
class FailureInjectionResult:
    """Result of a failure injection check."""

    should_fail: bool
    error_code: int = 200
    retry_after_ms: Optional[int] = None
    reason: str = ""


class FaultInjector:
    """Decides, per request, whether the emulator fails it."""

    def __init__(self, config: Optional[FaultConfig] = None):
        self.config = config or FaultConfig()
        self._scheduled: Deque[ScheduledFault] = deque()
        self._request_counter = 0
        self._random = random.Random()
        self.injected_count = 0

    def set_seed(self, seed: int) -> None:
        """Set random seed for deterministic failure injection."""
        self._random.seed(seed)
        logger.debug(f"Set fault injector seed to {seed}")

    def configure(self, config: FaultConfig) -> None:
        self.config = config
        logger.info(
            f"Fault injection {'enabled' if config.enabled else 'disabled'} "
            f"(pattern={config.pattern.value}, failure_rate={config.failure_rate})"
        )

    def schedule(
        self,
        error_code: int,
        count: int = 1,
        retry_after_ms: Optional[int] = None,
        method: Optional[str] = None,
        path_prefix: Optional[str] = None,
    ) -> None:
        """
        Fail the next ``count`` requests matching ``method``/``path_prefix``.

        Args:
            error_code: 429 or a 5xx status code
            count: Number of requests to fail
            retry_after_ms: Value of ``x-ms-retry-after-ms`` on the failure
            method: Only fail requests with this HTTP method
            path_prefix: Only fail requests whose path starts with this prefix
        """
        _check_code(error_code)
        for _ in range(count):
            self._scheduled.append(ScheduledFault(error_code, retry_after_ms, method, path_prefix))
        logger.debug(f"Scheduled {count} x {error_code} failures")

    def reset(self) -> None:
        self._scheduled.clear()
        self._request_counter = 0
        self.injected_count = 0
        self.config = FaultConfig()

    def check_failure(self, method: str, path: str) -> FailureInjectionResult:
        """Check whether this request should fail."""
        for fault in list(self._scheduled):
            if fault.matches(method, path):
                self._scheduled.remove(fault)
                return self._inject(fault.error_code, fault.retry_after_ms, "scheduled")

        config = self.config
        if not config.enabled:
            return FailureInjectionResult(should_fail=False, reason="injection_disabled")

        self._request_counter += 1
        if config.pattern == FailurePattern.SEQUENTIAL:
            if config.failure_rate == 0:
                should_fail = False
            else:
                interval = max(1, int(1.0 / config.failure_rate))
                should_fail = self._request_counter % interval == 0
        else:
            should_fail = self._random.random() < config.failure_rate

        if not should_fail:
            return FailureInjectionResult(should_fail=False, reason="no_failure_injected")

        error_code = self._random.choice(config.error_codes)
        return self._inject(error_code, config.retry_after_ms, f"pattern_{config.pattern.value}")

    def _inject(self, error_code: int, retry_after_ms: Optional[int], reason: str) -> FailureInjectionResult:
        self.injected_count += 1
        if retry_after_ms is None and error_code == 429:
            retry_after_ms = self.config.retry_after_ms
        logger.debug(f"Injecting failure: {error_code} ({reason})")
        return FailureInjectionResult(
            should_fail=True,
            error_code=error_code,
            retry_after_ms=retry_after_ms,
            reason=reason,
        )


def _check_code(code: int) -> None:
    if code not in SUPPORTED_ERROR_CODES:
        raise ValueError(
            f"error_code {code} not supported. Use 429, 500, 502, 503, or 504"
        )
