"""
Fixed-window request rate limiting.

Counters are kept in Redis when ``RATE_LIMIT_REDIS_URL`` is configured, so
that limits hold across instances. Otherwise (or whenever Redis fails) they
are kept in process memory, which is only meaningful for a single instance.
"""

import math
import threading
import time
from functools import wraps
from os import environ
from typing import Any, Callable, Dict, List, NamedTuple, Optional

import redis
from flask import Response, jsonify, make_response, request

from .. import logging
from ..globals import get_application_config

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_MS = 5 * 60 * 1000
SWEEP_SIZE_THRESHOLD = 1000
SWEEP_MIN_INTERVAL_MS = 60 * 1000
STATS_MAX_IDLE_MS = 60 * 60 * 1000

KeyGenerator = Callable[[Any], str]


def now_ms() -> int:
    return int(time.time() * 1000)


class RateLimitResult(NamedTuple):
    allowed: bool
    remaining: int
    reset_time: int
    """Epoch milliseconds at which the current window ends."""
    total_requests: int


class MemoryStore:
    """Thread-safe in-process counters, with per-limiter stats."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, List[int]] = {}
        self._stats: Dict[str, Dict[str, int]] = {}
        self.last_sweep = now_ms()

    def __len__(self) -> int:
        return len(self._records)

    def incr(self, key: str, window_ms: int, now: int) -> List[int]:
        """Count a request, starting a new window if the last one is over."""
        with self._lock:
            record = self._records.get(key)
            if record is None or record[1] <= now:
                record = [0, now + window_ms]
            record[0] += 1
            self._records[key] = record
            return list(record)

    def count(self, name: str, allowed: bool, now: int) -> None:
        with self._lock:
            stats = self._stats.setdefault(
                name, {'allowed': 0, 'blocked': 0, 'last_reset': now}
            )
            stats['allowed' if allowed else 'blocked'] += 1
            stats['last_reset'] = now

    def stats(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {name: dict(stats) for name, stats in self._stats.items()}

    def maybe_sweep(self, now: int) -> None:
        """Sweep periodically, or sooner when the store gets large."""
        since = now - self.last_sweep
        if since >= SWEEP_INTERVAL_MS or (
                len(self) > SWEEP_SIZE_THRESHOLD
                and since > SWEEP_MIN_INTERVAL_MS):
            self.sweep(now)

    def sweep(self, now: Optional[int] = None) -> int:
        """Drop expired counters, and stats that have not been touched."""
        now = now_ms() if now is None else now
        with self._lock:
            expired = [key for key, (_, reset) in self._records.items()
                       if reset <= now]
            for key in expired:
                del self._records[key]
            idle = [name for name, stats in self._stats.items()
                    if stats['last_reset'] < now - STATS_MAX_IDLE_MS]
            for name in idle:
                del self._stats[name]
            self.last_sweep = now
        if expired:
            logger.debug('Swept %i expired rate limit records', len(expired))
        return len(expired)

    def memory_usage(self) -> Dict[str, int]:
        """Rough size of the store."""
        with self._lock:
            size, stats = len(self._records), len(self._stats)
        return {'store_size': size, 'stats_size': stats,
                'estimated_kb': round((size * 100 + stats * 50) / 1024),
                'last_sweep': self.last_sweep}

    def expiring(self, within_ms: int = SWEEP_INTERVAL_MS,
                 now: Optional[int] = None) -> List[Dict[str, Any]]:
        """Counters whose window ends soon, soonest first."""
        now = now_ms() if now is None else now
        with self._lock:
            soon = [{'key': key, 'expires_in': reset - now}
                    for key, (_, reset) in self._records.items()
                    if now < reset <= now + within_ms]
        return sorted(soon, key=lambda entry: entry['expires_in'])

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._stats.clear()

    def clear_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._records if k.startswith(prefix)]:
                del self._records[key]


_memory = MemoryStore()
_redis: Dict[str, redis.Redis] = {}


def get_redis() -> Optional[redis.Redis]:
    """Get a Redis client, if one is configured."""
    url = get_application_config().get('RATE_LIMIT_REDIS_URL')
    if not url:
        return None
    if url not in _redis:
        _redis[url] = redis.Redis.from_url(url, socket_timeout=1)
    return _redis[url]


def client_ip(req: Any) -> str:
    """Best guess at the address of the client behind any proxies."""
    forwarded = req.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip() or 'unknown-ip'
    return req.headers.get('X-Real-IP') \
        or req.headers.get('CF-Connecting-IP') or 'unknown-ip'


def user_agent(req: Any) -> str:
    return req.headers.get('User-Agent') or 'unknown'


class RateLimiter:
    """
    Allow at most ``max_requests`` per key in each fixed window.

    Parameters
    ----------
    name : str
        Identifies the limiter in keys, stats, and response headers.
    window_ms : int
    max_requests : int
    key_generator : callable
        Derives the counter key from a request. By default, requests are
        counted by client IP and user agent.
    store : :class:`MemoryStore`
        Counters used when Redis is not available.
    redis_client : :class:`redis.Redis`
        Overrides the client from ``RATE_LIMIT_REDIS_URL``.

    """

    def __init__(self, name: str, window_ms: int, max_requests: int,
                 key_generator: Optional[KeyGenerator] = None,
                 store: Optional[MemoryStore] = None,
                 redis_client: Optional[redis.Redis] = None) -> None:
        self.name = name
        self.window_ms = window_ms
        self.max_requests = max_requests
        self._key_generator = key_generator
        self.store = store if store is not None else _memory
        self._redis_client = redis_client

    def key(self, req: Any) -> str:
        if self._key_generator is not None:
            return self._key_generator(req)
        return f'{self.name}:{client_ip(req)}:{user_agent(req)}'

    def _redis(self) -> Optional[redis.Redis]:
        if self._redis_client is not None:
            return self._redis_client
        return get_redis()

    def _incr_redis(self, client: redis.Redis, key: str, now: int) -> tuple:
        redis_key = f'rl:{key}'
        count = int(client.incr(redis_key))
        if count == 1:
            client.pexpire(redis_key, self.window_ms)
        ttl = int(client.pttl(redis_key))
        reset = now + ttl if ttl > 0 else now + self.window_ms
        return count, reset

    def check(self, req: Any, now: Optional[int] = None) -> RateLimitResult:
        """Count a request, and determine whether it is allowed."""
        now = now_ms() if now is None else now
        key = self.key(req)
        self.store.maybe_sweep(now)

        client = self._redis()
        counted = None
        if client is not None:
            try:
                counted = self._incr_redis(client, key, now)
            except redis.exceptions.RedisError as e:
                logger.error('Redis rate limiting failed (%s); using memory',
                             e)
        if counted is None:
            counted = tuple(self.store.incr(key, self.window_ms, now))
        count, reset = counted

        allowed = count <= self.max_requests
        self.store.count(self.name, allowed, now)
        remaining = max(0, self.max_requests - count)
        if not allowed and _log_blocks():
            logger.warning('Rate limit %s blocked %s (reset %i)', self.name,
                           key, reset)
        return RateLimitResult(allowed, remaining, reset, count)

    def headers(self, result: RateLimitResult) -> Dict[str, str]:
        return {'X-RateLimit-Limit': str(self.max_requests),
                'X-RateLimit-Remaining': str(result.remaining),
                'X-RateLimit-Reset': str(math.ceil(result.reset_time / 1000)),
                'X-RateLimit-Name': self.name}

    def clear(self) -> None:
        """Forget the in-memory counters for this limiter."""
        self.store.clear_prefix(f'{self.name}:')


def _log_blocks() -> bool:
    return bool(int(get_application_config().get('RATE_LIMIT_LOG_ENABLED',
                                                  0)))


def _enabled() -> bool:
    return bool(int(get_application_config().get('RATE_LIMIT_ENABLED', 1)))


def limit(limiter: RateLimiter) -> Callable:
    """Apply ``limiter`` to a Flask view."""
    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def inner(*args: Any, **kwargs: Any) -> Response:
            if not _enabled():
                return view(*args, **kwargs)
            result = limiter.check(request)
            headers = limiter.headers(result)
            if not result.allowed:
                retry_after = max(0, math.ceil(
                    (result.reset_time - now_ms()) / 1000
                ))
                response = jsonify(success=False,
                                   error='Rate limit exceeded',
                                   retryAfter=retry_after)
                response.status_code = 429
                headers['Retry-After'] = str(retry_after)
                _set_headers(response, headers)
                return response
            response = make_response(view(*args, **kwargs))
            _set_headers(response, headers)
            return response
        return inner
    return decorator


def _set_headers(response: Response, headers: Dict[str, str]) -> None:
    for name, value in headers.items():
        response.headers[name] = value


def _rpm(var: str, default: int) -> int:
    return int(environ.get(var, str(default)))


def webhook_key(req: Any) -> str:
    signature = req.headers.get('svix-signature') \
        or req.headers.get('x-kajabi-signature') or ''
    return f'webhook:{client_ip(req)}:{user_agent(req)}:{signature[:16]}'


MINUTE = 60 * 1000

webhook = RateLimiter('webhook', MINUTE,
                      _rpm('WEBHOOK_RATE_LIMIT_RPM', 120),
                      key_generator=webhook_key)
api = RateLimiter('api', MINUTE, _rpm('RATE_LIMIT_RPM', 60))
admin = RateLimiter('admin', MINUTE, _rpm('ADMIN_RATE_LIMIT_RPM', 40))
file_upload = RateLimiter('file_upload', MINUTE,
                          _rpm('FILE_UPLOAD_RATE_LIMIT_RPM', 10))
submission = RateLimiter('submission', MINUTE,
                         _rpm('SUBMISSION_RATE_LIMIT_RPM', 20))
auth = RateLimiter('auth', 15 * MINUTE, _rpm('AUTH_RATE_LIMIT_PER_15MIN', 10))
public_api = RateLimiter('public_api', MINUTE,
                         _rpm('PUBLIC_API_RATE_LIMIT_RPM', 100))


def stats() -> Dict[str, Dict[str, int]]:
    """Allowed and blocked counts per limiter."""
    return _memory.stats()
