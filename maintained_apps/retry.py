"""Bounded retry-with-backoff shared by the installer drivers and inspectors."""

from __future__ import annotations

import time
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)
from tenacity.wait import wait_base

T = TypeVar("T")


class _ScaledDelay(wait_base):
    """``delay`` before the second attempt, multiplied by ``backoff`` after each wait."""

    def __init__(self, delay: float, backoff: float) -> None:
        self.delay = delay
        self.backoff = backoff

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay * self.backoff ** (retry_state.attempt_number - 1)


def _last_outcome(retry_state: RetryCallState):
    # Re-raises the final exception, or hands back the final unaccepted result.
    return retry_state.outcome.result()


def retry_call(
    func: Callable[[], T],
    *,
    attempts: int,
    delay: float,
    backoff: float = 1.0,
    accept: Callable[[T], bool] = bool,
    retry_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, float], None]] = None,
) -> T:
    """Call *func* until *accept* says its result is usable.

    At most *attempts* calls are made. Exceptions listed in *retry_on* count as
    a failed attempt; the last one is re-raised if the final attempt also
    raises. Otherwise the last (unaccepted) result is returned and the caller
    decides what "no data" means.

    ``on_retry(next_attempt_number, wait_seconds)`` is called before each wait.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    def announce(retry_state: RetryCallState) -> None:
        if on_retry is not None:
            on_retry(retry_state.attempt_number + 1, retry_state.next_action.sleep)

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=_ScaledDelay(delay, backoff),
        retry=retry_if_result(lambda result: not accept(result)) | retry_if_exception_type(retry_on),
        sleep=sleep,
        before_sleep=announce,
        retry_error_callback=_last_outcome,
    )
    return retrying(func)
