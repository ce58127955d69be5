"""
Redis-backed circuit breakers for the LLM and search vendors.

One breaker per vendor (openai, anthropic, google, perplexity, tavily). State
is shared across worker processes through Redis so a vendor outage seen by one
scan short-circuits the others:

  closed    → calls pass through, failures are counted
  open      → calls raise CircuitOpenError until reset_timeout elapses
  half_open → one probe call; success closes, failure re-opens

Redis trouble never blocks a call: every state read fails open.
"""
import logging
import time
from functools import wraps

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN — service unavailable")


class CircuitBreaker:
    """
    Usage:
        cb = CircuitBreaker('anthropic', redis_client, failure_threshold=5, reset_timeout=60)
        message = cb.call(client.messages.create, model=..., messages=[...])

    ignore_exceptions lists error types that mean "the vendor answered but we
    did not like the answer" (e.g. schema mismatch) and must not trip the breaker.
    """

    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=5, reset_timeout=60,
                 ignore_exceptions=()):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.ignore_exceptions = tuple(ignore_exceptions)

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self):
        try:
            current = self.redis.get(self._key('state')) or CLOSED
            if current == OPEN and self._seconds_since_failure() > self.reset_timeout:
                self.redis.set(self._key('state'), HALF_OPEN)
                return HALF_OPEN
            return current
        except Exception:
            return CLOSED

    @property
    def failure_count(self):
        try:
            return int(self.redis.get(self._key('failures')) or 0)
        except Exception:
            return 0

    def _seconds_since_failure(self):
        last = self.redis.get(self._key('last_failure'))
        if not last:
            return float('inf')
        return time.time() - float(last)

    # ── Calls ─────────────────────────────────────────────────────────

    def call(self, func, *args, **kwargs):
        """Run func unless the circuit is open; record the outcome."""
        if self.state == OPEN:
            try:
                retry_after = max(0.0, self.reset_timeout - self._seconds_since_failure())
            except Exception:
                retry_after = None
            raise CircuitOpenError(self.name, retry_after=retry_after)

        try:
            result = func(*args, **kwargs)
        except self.ignore_exceptions:
            raise
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def protect(self, func):
        """Decorator form of call()."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        except Exception:
            logger.debug("Could not record success for '%s'", self.name)

    def _on_failure(self, error):
        try:
            failures = self.redis.incr(self._key('failures'))
            self.redis.set(self._key('last_failure'), str(time.time()))
            if failures >= self.failure_threshold:
                self.redis.set(self._key('state'), OPEN)
                logger.warning("Circuit '%s' OPENED after %d failures: %s", self.name, failures, error)
            else:
                logger.info("Circuit '%s' failure %d/%d: %s",
                            self.name, failures, self.failure_threshold, error)

            pipe = self.redis.pipeline()
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_failure', str(time.time()))
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            pipe.execute()
        except Exception:
            logger.debug("Could not record failure for '%s'", self.name)

    def reset(self):
        """Force the circuit closed (admin action)."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            logger.info("Circuit '%s' manually reset to CLOSED", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)

    def get_health(self):
        """Health snapshot for GET /health."""
        health = {
            'name': self.name,
            'state': 'unknown',
            'failure_count': 0,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': 0,
            'total_failure': 0,
            'last_error': '',
        }
        try:
            data = self.redis.hgetall(self._key('health'))
            health.update(
                state=self.state,
                failure_count=self.failure_count,
                total_success=int(data.get('success', 0)),
                total_failure=int(data.get('failure', 0)),
                last_error=data.get('last_error', ''),
            )
        except Exception:
            pass
        return health


# ── Registry ──────────────────────────────────────────────────────────────

_registry = {}

# name → (failure_threshold, reset_timeout)
BREAKER_SETTINGS = {
    'openai': (5, 60),
    'anthropic': (5, 60),
    'google': (5, 60),
    'perplexity': (5, 120),
    'tavily': (3, 120),
}


def get_breaker(name, redis_client=None, **kwargs):
    """Get or create a named circuit breaker (singleton per name)."""
    if name not in _registry:
        if redis_client is None:
            from app.extensions import redis_client as rc
            redis_client = rc
        threshold, timeout = BREAKER_SETTINGS.get(name, (5, 60))
        kwargs.setdefault('failure_threshold', threshold)
        kwargs.setdefault('reset_timeout', timeout)
        kwargs.setdefault('ignore_exceptions', _ignored_exceptions())
        _registry[name] = CircuitBreaker(name, redis_client, **kwargs)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    """Register a breaker for every vendor the scan pipeline calls."""
    for name, (threshold, timeout) in BREAKER_SETTINGS.items():
        _registry[name] = CircuitBreaker(
            name, redis_client,
            failure_threshold=threshold,
            reset_timeout=timeout,
            ignore_exceptions=_ignored_exceptions(),
        )
    return dict(_registry)


def _ignored_exceptions():
    from app.errors import StructuredOutputError
    return (StructuredOutputError,)
