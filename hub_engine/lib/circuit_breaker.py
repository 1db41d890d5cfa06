"""
Circuit breakers for the hub's external collaborators.

One breaker per service name (recommendations, call_intelligence). After
`failure_threshold` consecutive failures the breaker opens and callers skip
straight to their rule-based default; once `reset_timeout` seconds pass, a
single probe call decides whether it closes again.

Usage:
    from hub_engine.lib.circuit_breaker import call_with_breaker

    result = await call_with_breaker("recommendations", generator.generate, context)
"""
import time
from typing import Any, Awaitable, Callable, Dict

from hub_engine.lib.errors import CircuitOpenError
from hub_engine.lib.logger import setup_logger

logger = setup_logger(__name__)


class CircuitBreaker:
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    _registry: Dict[str, "CircuitBreaker"] = {}

    def __init__(self, service: str, failure_threshold: int = 5, reset_timeout: int = 60):
        self.service = service
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.state = self.CLOSED
        self.consecutive_failures = 0
        self.opened_at = 0.0

    @classmethod
    def get(cls, service: str, **kwargs) -> "CircuitBreaker":
        """The service's breaker, created on first use."""
        breaker = cls._registry.get(service)
        if breaker is None:
            breaker = cls._registry[service] = cls(service, **kwargs)
        return breaker

    @classmethod
    def reset_all(cls):
        cls._registry.clear()

    @classmethod
    def all_status(cls) -> list:
        return [b.status() for b in cls._registry.values()]

    @property
    def seconds_until_probe(self) -> float:
        if self.state != self.OPEN:
            return 0.0
        return max(0.0, self.reset_timeout - (time.time() - self.opened_at))

    def allow(self) -> bool:
        """Whether a call may go out now; moves OPEN to HALF_OPEN once the timeout passes."""
        if self.state == self.OPEN:
            if self.seconds_until_probe > 0:
                return False
            self.state = self.HALF_OPEN
            logger.info("Probing '%s' after %ds open", self.service, self.reset_timeout)
        return True

    def succeeded(self):
        if self.state != self.CLOSED:
            logger.info("'%s' recovered, circuit closed", self.service)
        self.state = self.CLOSED
        self.consecutive_failures = 0

    def failed(self):
        self.consecutive_failures += 1
        probe_failed = self.state == self.HALF_OPEN
        if probe_failed or self.consecutive_failures >= self.failure_threshold:
            self.state = self.OPEN
            self.opened_at = time.time()
            logger.warning(
                "Circuit open for '%s' (%s); retry in %ds",
                self.service,
                "probe failed" if probe_failed else f"{self.consecutive_failures} failures in a row",
                self.reset_timeout,
            )

    def status(self) -> dict:
        return {
            "service": self.service,
            "state": self.state,
            "failures": self.consecutive_failures,
            "threshold": self.failure_threshold,
            "seconds_until_probe": round(self.seconds_until_probe, 1),
        }


async def call_with_breaker(
    service: str,
    func: Callable[..., Awaitable[Any]],
    *args,
    failure_threshold: int = 5,
    reset_timeout: int = 60,
    **kwargs,
) -> Any:
    """
    Await `func(*args, **kwargs)` through the service's breaker.

    Failures are counted and re-raised; the call site supplies its default.

    Raises:
        CircuitOpenError: the breaker is open and no probe is due yet.
    """
    breaker = CircuitBreaker.get(
        service, failure_threshold=failure_threshold, reset_timeout=reset_timeout,
    )
    if not breaker.allow():
        raise CircuitOpenError(service, breaker.consecutive_failures, breaker.seconds_until_probe)

    try:
        result = await func(*args, **kwargs)
    except Exception:
        breaker.failed()
        raise
    breaker.succeeded()
    return result
