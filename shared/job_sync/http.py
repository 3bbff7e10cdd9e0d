from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from types import TracebackType
from typing import Callable, Deque, Dict, Mapping, Optional, Protocol

import httpx


class AbortSignal(Protocol):
    def is_set(self) -> bool: ...


class JobSyncHttpError(RuntimeError):
    pass


class FetchError(JobSyncHttpError):
    def __init__(self, url: str, status_code: Optional[int], message: str) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FetchAborted(JobSyncHttpError):
    def __init__(self, url: str) -> None:
        super().__init__(f"Fetch aborted: {url}")
        self.url = url


@dataclass(frozen=True)
class FetchPolicy:
    wait_s: float
    max_requests: int
    window_s: float
    max_retries: int = 3
    retry_delay_s: float = 1.0
    leading: bool = True
    trailing: bool = False


class Throttle:
    """Minimum spacing between dispatched requests; concurrent callers queue."""

    def __init__(
        self,
        *,
        wait_s: float,
        leading: bool = True,
        trailing: bool = False,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._wait_s = max(0.0, float(wait_s))
        self._leading = leading
        self._trailing = trailing
        self._now = now
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            if self._last is None:
                if not self._leading and self._wait_s > 0:
                    self._sleep(self._wait_s)
            else:
                delay = self._last + self._wait_s - self._now()
                if delay > 0:
                    self._sleep(delay)
            self._last = self._now()

    def release(self) -> None:
        # Trailing mode measures spacing from the end of the previous request.
        if self._trailing:
            with self._lock:
                self._last = self._now()


class SlidingWindowRateLimiter:
    def __init__(
        self,
        *,
        max_requests: int,
        window_s: float,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        poll_padding_s: float = 0.1,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self._max_requests = int(max_requests)
        self._window_s = float(window_s)
        self._now = now
        self._sleep = sleep
        self._padding_s = poll_padding_s
        self._timestamps: Deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        cutoff = now - self._window_s
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def check_limit(self) -> bool:
        with self._lock:
            now = self._now()
            self._evict(now)
            if len(self._timestamps) < self._max_requests:
                self._timestamps.append(now)
                return True
            return False

    try_acquire = check_limit

    def wait_for_slot(self, abort: Optional[AbortSignal] = None) -> None:
        while not self.check_limit():
            if abort is not None and abort.is_set():
                return
            with self._lock:
                oldest = self._timestamps[0] if self._timestamps else self._now()
                delay = self._window_s - (self._now() - oldest) + self._padding_s
            self._sleep(max(0.0, delay))

    def current_count(self) -> int:
        with self._lock:
            self._evict(self._now())
            return len(self._timestamps)

    def reset(self) -> None:
        with self._lock:
            self._timestamps.clear()


def parse_retry_after_s(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class ThrottledFetcher:
    """HTTP GET with spacing, a sliding-window quota and 429/transport retries.

    Only 429s and transport failures are retried. Every other response,
    including 4xx/5xx, is returned for the caller to interpret.
    """

    def __init__(
        self,
        policy: FetchPolicy,
        *,
        user_agent: str,
        timeout_s: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        now: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.policy = policy
        # an injected sleep owns time; otherwise backoff waits on the abort signal
        self._wall_clock = sleep is None
        sleep = sleep or time.sleep
        self._sleep = sleep
        self._max_retries = max(0, int(policy.max_retries))
        self.throttle = Throttle(
            wait_s=policy.wait_s,
            leading=policy.leading,
            trailing=policy.trailing,
            now=now,
            sleep=sleep,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=policy.max_requests,
            window_s=policy.window_s,
            now=now,
            sleep=sleep,
        )
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ThrottledFetcher":
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def _backoff(self, attempt: int) -> float:
        return self.policy.retry_delay_s * (2 ** attempt)

    def _pause(self, url: str, delay_s: float, abort: Optional[AbortSignal]) -> None:
        if abort is not None and abort.is_set():
            raise FetchAborted(url)
        wait = getattr(abort, "wait", None)
        if self._wall_clock and callable(wait):
            # returns as soon as the signal is raised
            wait(delay_s)
        else:
            self._sleep(delay_s)
        if abort is not None and abort.is_set():
            raise FetchAborted(url)

    def get(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, object]] = None,
        headers: Optional[Dict[str, str]] = None,
        abort: Optional[AbortSignal] = None,
    ) -> httpx.Response:
        last_exc: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            if abort is not None and abort.is_set():
                raise FetchAborted(url)

            self.rate_limiter.wait_for_slot(abort)
            if abort is not None and abort.is_set():
                raise FetchAborted(url)
            self.throttle.wait()
            try:
                resp = self._client.get(url, params=params, headers=headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_exc = e
                if attempt >= self._max_retries:
                    raise FetchError(url, None, f"HTTP transport error for {url}: {e}") from e
                self._pause(url, self._backoff(attempt), abort)
                continue
            finally:
                self.throttle.release()

            if resp.status_code == 429 and attempt < self._max_retries:
                retry_after = parse_retry_after_s(resp.headers.get("Retry-After"))
                self._pause(url, retry_after if retry_after is not None else self._backoff(attempt), abort)
                continue

            return resp

        raise FetchError(url, None, f"HTTP failed for {url}: {last_exc}")


def is_json_response(resp: httpx.Response) -> bool:
    return "json" in (resp.headers.get("Content-Type") or "").lower()
