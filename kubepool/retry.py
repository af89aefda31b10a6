"""Bounded retries for Instance Directory calls.

Contabo answers 423 while an instance is busy with another operation,
429 when a client is rate limited and 5xx on transient backend trouble.
The client declares which of those it waits out; anything else
propagates on the first failure.

Example:
    from kubepool.retry import TRANSIENT, on_status_code, retry

    @retry(on=TRANSIENT)
    async def list_instances():
        ...

    @retry(on=on_status_code(423), max_attempts=6, base_delay=5.0, backoff=False)
    async def stop_instance():
        ...
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_random,
)

type RetryPredicate = Callable[[BaseException], bool]

log = logger.bind(component="retry")


# =============================================================================
# Predicates
# =============================================================================


def on_status_code(*codes: int) -> RetryPredicate:
    """Match ProviderError, HttpError or anything else exposing ``status``."""

    def predicate(e: BaseException) -> bool:
        return getattr(e, "status", None) in codes

    return predicate


def on_server_error() -> RetryPredicate:
    """Match 5xx responses and connection failures (status 0)."""

    def predicate(e: BaseException) -> bool:
        status = getattr(e, "status", None)
        return isinstance(status, int) and (status == 0 or status >= 500)

    return predicate


def any_of(*predicates: RetryPredicate) -> RetryPredicate:
    def combined(e: BaseException) -> bool:
        return any(p(e) for p in predicates)

    return combined


TRANSIENT: RetryPredicate = any_of(on_status_code(429), on_server_error())
"""Rate limiting and backend failures, worth waiting out on any call."""


def _as_predicate(on: type[BaseException] | tuple[type[BaseException], ...] | RetryPredicate) -> RetryPredicate:
    match on:
        case type() | tuple():
            return lambda e: isinstance(e, on)
        case _:
            return on


# =============================================================================
# Decorator
# =============================================================================


def retry(
    on: type[BaseException] | tuple[type[BaseException], ...] | RetryPredicate = Exception,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff: bool = True,
    jitter: bool = True,
):
    """Retry an async call while ``on`` matches its failure.

    Args:
        on: Exception class, tuple of classes, or predicate over the raised
            exception.
        max_attempts: Attempts including the first one.
        base_delay: Delay before the first retry. Doubles per attempt when
            ``backoff`` is set, constant otherwise.
        max_delay: Cap for a single delay.
        backoff: Exponential (True) or fixed (False) spacing.
        jitter: Add up to 10% of ``base_delay`` of random delay.

    The last failure is re-raised unchanged once attempts run out.
    """
    should_retry = _as_predicate(on)
    wait = wait_exponential(multiplier=base_delay, max=max_delay) if backoff else wait_fixed(base_delay)
    if jitter:
        wait = wait + wait_random(0, base_delay * 0.1)

    def decorator[**P, T](func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            log.warning(
                "Retry {n}/{total} of {fn} after {err}: {msg}. Waiting {delay:.1f}s",
                n=state.attempt_number,
                total=max_attempts,
                fn=func.__name__,
                err=type(error).__name__,
                msg=error,
                delay=state.next_action.sleep if state.next_action else 0.0,
            )

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait,
                retry=retry_if_exception(should_retry),
                before_sleep=before_sleep,
                reraise=True,
            ):
                with attempt:
                    result = await func(*args, **kwargs)
            return result

        return wrapper

    return decorator
