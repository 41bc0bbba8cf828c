"""Retry and poll-until-ready primitives.

Every provider bridges its synchronous-looking API calls to asynchronous cloud
state transitions with these helpers.

Example:
    from sortie.retry import retry_conditional, is_transient, wait_until_ready

    # Retry a flaky listing on transient failures only
    servers = await retry_conditional(5, 2.0, is_transient, provider.list_servers)

    # Wait for an image to finish extracting
    async def extracted() -> bool:
        return (await client.get_image(image_id))["status"] == "available"

    await wait_until_ready(120.0, 5.0, extracted, description=f"image {image_id}")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from sortie.core.exceptions import TransientProviderError, WaitTimeoutError

type RetryPredicate = Callable[[BaseException], bool]

log = logger.bind(component="retry")


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    delay = state.next_action.sleep if state.next_action else 0.0
    log.warning(
        "Attempt {n} failed with {kind}: {error}. Waiting {delay:.1f}s...",
        n=state.attempt_number,
        kind=type(exc).__name__,
        error=exc,
        delay=delay,
    )


async def retry_conditional[T](
    attempts: int,
    delay: float,
    should_retry: RetryPredicate,
    fn: Callable[[], Awaitable[T]],
) -> T:
    """Call ``fn`` up to ``attempts`` times, sleeping ``delay`` between calls.

    Stops on the first success. The first time ``should_retry`` rejects an
    exception it is re-raised immediately without exhausting the attempts.
    When every attempt fails, the last exception is raised.

    Args:
        attempts: Maximum number of calls, including the first one.
        delay: Constant pause in seconds between calls. No pause follows the last call.
        should_retry: Predicate deciding whether an exception is worth another attempt.
        fn: Zero-argument coroutine function to call.

    Returns:
        Whatever ``fn`` returned on the successful call.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(delay),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            result = await fn()
    return result


async def retry[T](attempts: int, delay: float, fn: Callable[[], Awaitable[T]]) -> T:
    """Call ``fn`` until it succeeds or has been called ``attempts`` times."""
    return await retry_conditional(attempts, delay, lambda _: True, fn)


async def wait_until_ready(
    timeout: float,
    interval: float,
    check: Callable[[], Awaitable[bool]],
    *,
    description: str = "resource",
) -> None:
    """Poll ``check`` at a constant ``interval`` until it reports done.

    ``check`` runs before the first sleep, so a check that is already
    satisfied costs exactly one call and no sleep. Exceptions raised by
    ``check`` propagate unchanged.

    Raises:
        WaitTimeoutError: When ``timeout`` seconds elapse without ``check`` returning True.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        if await check():
            return

        if loop.time() >= deadline:
            raise WaitTimeoutError(description, timeout)

        await asyncio.sleep(interval)


async def wait_for_ready[T](
    poll_fn: Callable[[], Awaitable[T | None]],
    ready_check: Callable[[T], bool],
    *,
    terminal_check: Callable[[T], bool] | None = None,
    timeout: float = 300.0,
    interval: float = 5.0,
    description: str = "resource",
) -> T:
    """Wait until ``poll_fn`` returns something that passes ``ready_check``.

    Args:
        poll_fn: Polls for the resource state. ``None`` means not visible yet.
        ready_check: Returns True when the resource is ready.
        terminal_check: Returns True when the resource reached a failure state.
        timeout: Maximum time to wait in seconds.
        interval: Time between polls in seconds.
        description: Description for error messages.

    Returns:
        The ready resource.

    Raises:
        WaitTimeoutError: If the timeout is exceeded.
        RuntimeError: If the resource reaches a terminal state.
    """
    ready: list[T] = []

    async def check() -> bool:
        result = await poll_fn()
        if result is None:
            return False
        if ready_check(result):
            ready.append(result)
            return True
        if terminal_check is not None and terminal_check(result):
            raise RuntimeError(f"{description} reached terminal state: {result}")
        return False

    await wait_until_ready(timeout, interval, check, description=description)
    return ready[0]


# =============================================================================
# Common Predicates
# =============================================================================


def on_status_code(*codes: int) -> RetryPredicate:
    """Match exceptions exposing a ``status`` (or ``status_code``) attribute among ``codes``.

    Works with HttpError, aiohttp.ClientResponseError and the azure-core
    errors raised by pydo.
    """

    def predicate(e: BaseException) -> bool:
        status = getattr(e, "status", None)
        if status is None:
            status = getattr(e, "status_code", None)
        return status in codes

    return predicate


def on_exception_message(*patterns: str, case_sensitive: bool = False) -> RetryPredicate:
    """Match exceptions whose message contains any of ``patterns``."""

    def predicate(e: BaseException) -> bool:
        msg = str(e)
        if not case_sensitive:
            msg = msg.lower()
            return any(p.lower() in msg for p in patterns)
        return any(p in msg for p in patterns)

    return predicate


def any_of(*predicates: RetryPredicate) -> RetryPredicate:
    """Combine predicates with OR logic."""

    def combined(e: BaseException) -> bool:
        return any(p(e) for p in predicates)

    return combined


is_transient: RetryPredicate = any_of(
    lambda e: isinstance(e, (TransientProviderError, TimeoutError, ConnectionError)),
    on_status_code(0, 429, 500, 502, 503, 504),
)
"""Default policy: rate limits, server errors, timeouts and dropped connections."""


__all__ = [
    "RetryPredicate",
    "any_of",
    "is_transient",
    "on_exception_message",
    "on_status_code",
    "retry",
    "retry_conditional",
    "wait_for_ready",
    "wait_until_ready",
]
