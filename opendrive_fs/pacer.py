import logging
import threading
import time
from typing import Callable, Optional

from opendrive_fs.config.api_config import (
    ATTACK_CONSTANT,
    DECAY_CONSTANT,
    MAX_RETRIES,
    MAX_SLEEP,
    MIN_SLEEP,
    RETRY_ERROR_CODES,
)
from opendrive_fs.errors import ApiError, CallCancelledError, TransientNetworkError

logger = logging.getLogger(__name__)


def should_retry(exc: BaseException, retry_codes=RETRY_ERROR_CODES) -> bool:
    """Transport failures and the listed status codes are worth another go."""
    if isinstance(exc, TransientNetworkError):
        return True
    if isinstance(exc, ApiError):
        return exc.status_code in retry_codes
    return False


class Pacer:
    """
    Paces calls to the API and retries the ones that fail transiently.

    Every call start waits until the current sleep interval has passed since
    the previous call start. A retryable failure doubles the interval (up to
    max_sleep), a success decays it back toward min_sleep.

    The interval is the only state shared between calls. Distinct calls each
    run their own retry loop.
    """

    def __init__(self,
                 min_sleep: float = MIN_SLEEP,
                 max_sleep: float = MAX_SLEEP,
                 decay_constant: int = DECAY_CONSTANT,
                 attack_constant: int = ATTACK_CONSTANT,
                 max_retries: Optional[int] = MAX_RETRIES,
                 call_timeout: Optional[float] = None,
                 retry_codes=RETRY_ERROR_CODES,
                 cancel_event: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleeper: Callable[[float], None] = time.sleep):
        if min_sleep <= 0 or max_sleep < min_sleep:
            raise ValueError("need 0 < min_sleep <= max_sleep")
        self.min_sleep = min_sleep
        self.max_sleep = max_sleep
        self.decay_constant = decay_constant
        self.attack_constant = attack_constant
        self.max_retries = max_retries
        self.call_timeout = call_timeout
        self.retry_codes = frozenset(retry_codes)
        self.cancel_event = cancel_event

        self._clock = clock
        self._sleeper = sleeper
        self._lock = threading.Lock()
        self._sleep_time = min_sleep
        self._next_call_at = 0.0

    @property
    def sleep_time(self) -> float:
        with self._lock:
            return self._sleep_time

    def _begin_call(self) -> float:
        """Reserve the next call slot, returns how long to wait for it."""
        with self._lock:
            now = self._clock()
            start = max(now, self._next_call_at)
            self._next_call_at = start + self._sleep_time
            return start - now

    def _end_call(self, retry: bool):
        with self._lock:
            old = self._sleep_time
            if retry:
                if self.attack_constant == 0:
                    self._sleep_time = self.max_sleep
                else:
                    self._sleep_time = (old * 2 ** self.attack_constant) / (2 ** self.attack_constant - 1)
                self._sleep_time = min(self._sleep_time, self.max_sleep)
                if self._sleep_time != old:
                    logger.debug(f"Rate limited, increasing sleep to {self._sleep_time:.3f}s")
            else:
                self._sleep_time = (old * 2 ** self.decay_constant - old) / 2 ** self.decay_constant
                self._sleep_time = max(self._sleep_time, self.min_sleep)
                if self._sleep_time != old:
                    logger.debug(f"Reducing sleep to {self._sleep_time:.3f}s")

    def _check_cancelled(self, cancel: Optional[threading.Event], deadline: Optional[float]):
        for event in (cancel, self.cancel_event):
            if event is not None and event.is_set():
                raise CallCancelledError("call cancelled")
        if deadline is not None and self._clock() >= deadline:
            raise CallCancelledError("call deadline exceeded")

    def _wait(self, seconds: float, cancel: Optional[threading.Event], deadline: Optional[float]):
        if seconds <= 0:
            return
        if deadline is not None and self._clock() + seconds > deadline:
            raise CallCancelledError("call deadline exceeded while waiting to retry")
        event = cancel or self.cancel_event
        if event is not None and self._sleeper is time.sleep:
            if event.wait(seconds):
                raise CallCancelledError("call cancelled")
        else:
            self._sleeper(seconds)
        self._check_cancelled(cancel, deadline)

    def call(self, fn: Callable, *args,
             cancel: Optional[threading.Event] = None,
             timeout: Optional[float] = None,
             **kwargs):
        """
        Runs fn(*args, **kwargs) until it succeeds or fails for good.

        A failure that should_retry() accepts is retried up to max_retries
        times (None means no bound); the last error is raised when the
        attempts run out. Anything else propagates on the first failure.
        Raises CallCancelledError once the cancel event is set or the
        timeout (defaulting to call_timeout) expires.
        """
        timeout = self.call_timeout if timeout is None else timeout
        deadline = None if timeout is None else self._clock() + timeout
        attempt = 0
        while True:
            self._check_cancelled(cancel, deadline)
            self._wait(self._begin_call(), cancel, deadline)
            attempt += 1
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                retry = should_retry(e, self.retry_codes)
                self._end_call(retry)
                if not retry:
                    raise
                if self.max_retries is not None and attempt > self.max_retries:
                    logger.error(f"Giving up after {attempt} attempts: {e}")
                    raise
                logger.warning(f"Retrying after error (attempt {attempt}): {e}")
                continue
            self._end_call(False)
            return result
