"""Circuit Breaker Pattern - Stop hammering failing webhook endpoints.

Counts failures per key inside a trailing time window and blocks calls to
that key for a cooldown once the threshold is reached. After the cooldown a
probe call is let through; its outcome decides whether the circuit closes
again or reopens.
"""

from enum import Enum
from typing import Optional, Callable, Any, Awaitable, TypeVar
from dataclasses import dataclass
import logging
import math
import time

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation, requests pass through
    OPEN = "open"            # Failing, requests are blocked
    HALF_OPEN = "half_open"  # Probe allowed to test recovery


class CircuitOpenError(Exception):
    """Raised by ``with_breaker`` when the circuit rejects a call."""

    kind = "circuit_open"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(reason)


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""

    failure_threshold: int = 5          # Failures in window before opening
    failure_window_seconds: float = 60.0
    reset_timeout_seconds: float = 30.0  # Cooldown before a probe


@dataclass
class ExecutionDecision:
    """Answer to "may I call this downstream right now?"."""

    allowed: bool
    reason: Optional[str] = None


@dataclass
class CircuitBreakerStatus:
    """Point-in-time snapshot of one breaker."""

    key: str
    state: CircuitState
    failure_count: int
    failure_threshold: int
    opened_at: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "opened_at": self.opened_at,
            "last_error": self.last_error,
        }


class CircuitBreaker:
    """Failure-counting state machine for a single key.

    Not lock-protected: while half-open every concurrent caller is admitted
    as a probe.

    Example:
        >>> breaker = CircuitBreaker("hooks.example.com")
        >>> if breaker.can_execute().allowed:
        ...     ok = await deliver()
        ...     breaker.record_success() if ok else breaker.record_failure()
    """

    def __init__(
        self,
        key: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            key: Identifier for this circuit (webhook id, host, ...).
            config: Configuration options.
            clock: Returns the current time in seconds.
        """
        self.key = key
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitState.CLOSED
        self.failure_timestamps: list[float] = []
        self.opened_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self._clock = clock

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN

    def _prune(self, now: float) -> None:
        """Drop failures that fell out of the trailing window."""
        cutoff = now - self.config.failure_window_seconds
        self.failure_timestamps = [t for t in self.failure_timestamps if t > cutoff]

    def _transition_to(self, new_state: CircuitState, now: float) -> None:
        old_state = self.state
        self.state = new_state

        if new_state == CircuitState.OPEN:
            self.opened_at = now
        elif new_state == CircuitState.CLOSED:
            self.opened_at = None
            self.failure_timestamps = []

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(f"Circuit '{self.key}': {old_state.value} -> {new_state.value}")

    def can_execute(self) -> ExecutionDecision:
        """Check whether a call should be attempted now. Never raises."""
        now = self._clock()
        self._prune(now)

        if self.state == CircuitState.CLOSED:
            return ExecutionDecision(allowed=True)

        if self.state == CircuitState.OPEN:
            elapsed = now - self.opened_at
            if elapsed >= self.config.reset_timeout_seconds:
                self._transition_to(CircuitState.HALF_OPEN, now)
                return ExecutionDecision(allowed=True)

            remaining_ms = (self.config.reset_timeout_seconds - elapsed) * 1000
            seconds = math.ceil(remaining_ms / 1000)
            return ExecutionDecision(
                allowed=False,
                reason=f"Circuit breaker is open. Retry in {seconds} seconds",
            )

        # Half-open: every caller is a probe
        return ExecutionDecision(allowed=True)

    def record_success(self) -> None:
        """Record a successful call. Only closes a half-open circuit."""
        if self.state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED, self._clock())

    def record_failure(self, error: Optional[Any] = None) -> None:
        """Record a failed call.

        Args:
            error: Optional exception or message describing the failure.
        """
        now = self._clock()
        if error is not None:
            self.last_error = str(error)

        if self.state == CircuitState.HALF_OPEN:
            # Failed probe restarts the cooldown
            self._transition_to(CircuitState.OPEN, now)
            return

        self._prune(now)
        self.failure_timestamps.append(now)

        if (
            self.state == CircuitState.CLOSED
            and len(self.failure_timestamps) >= self.config.failure_threshold
        ):
            self._transition_to(CircuitState.OPEN, now)

    def reset(self) -> None:
        """Manually reset the circuit to closed state."""
        self.state = CircuitState.CLOSED
        self.failure_timestamps = []
        self.opened_at = None
        self.last_error = None

    def status(self) -> CircuitBreakerStatus:
        """Snapshot of the current state."""
        self._prune(self._clock())
        return CircuitBreakerStatus(
            key=self.key,
            state=self.state,
            failure_count=len(self.failure_timestamps),
            failure_threshold=self.config.failure_threshold,
            opened_at=self.opened_at,
            last_error=self.last_error,
        )


class CircuitBreakerRegistry:
    """Keyed collection of circuit breakers, created lazily per key.

    Owned by whatever composes the dispatcher and passed in explicitly, so
    separate instances never share state.

    Example:
        >>> breakers = CircuitBreakerRegistry()
        >>> result = await breakers.with_breaker("hooks.example.com", deliver)
    """

    def __init__(
        self,
        default_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize registry.

        Args:
            default_config: Default config for new breakers.
            clock: Time source shared by every breaker.
        """
        self._breakers: dict[str, CircuitBreaker] = {}
        self._configs: dict[str, CircuitBreakerConfig] = {}
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock

    def configure(self, key: str, config: CircuitBreakerConfig) -> None:
        """Set a per-key configuration, applied to the existing breaker too."""
        self._configs[key] = config
        if key in self._breakers:
            self._breakers[key].config = config

    def get_or_create(self, key: str) -> CircuitBreaker:
        """Get existing or create new circuit breaker."""
        if key not in self._breakers:
            self._breakers[key] = CircuitBreaker(
                key,
                self._configs.get(key, self.default_config),
                clock=self._clock,
            )
        return self._breakers[key]

    def can_execute(self, key: str) -> ExecutionDecision:
        return self.get_or_create(key).can_execute()

    def record_success(self, key: str) -> None:
        self.get_or_create(key).record_success()

    def record_failure(self, key: str, error: Optional[Any] = None) -> None:
        self.get_or_create(key).record_failure(error)

    async def with_breaker(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under the breaker for ``key``.

        Raises:
            CircuitOpenError: If the circuit rejects the call; ``fn`` is not
                called.
        """
        decision = self.can_execute(key)
        if not decision.allowed:
            raise CircuitOpenError(key, decision.reason)

        try:
            result = await fn()
        except Exception as e:
            self.record_failure(key, e)
            raise

        self.record_success(key)
        return result

    def get_status(self, key: str) -> CircuitBreakerStatus:
        return self.get_or_create(key).status()

    def reset(self, key: str) -> None:
        if key in self._breakers:
            self._breakers[key].reset()

    def list_all_statuses(self) -> list[CircuitBreakerStatus]:
        """Get statuses for every breaker created so far."""
        return [breaker.status() for breaker in self._breakers.values()]

    def get_open_circuits(self) -> list[CircuitBreaker]:
        """Get all circuits currently in open state."""
        return [b for b in self._breakers.values() if b.is_open]

    def reset_all(self) -> None:
        """Reset all circuit breakers to closed state."""
        for breaker in self._breakers.values():
            breaker.reset()
