"""Shared functionality across provider implementations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection
from datetime import UTC, datetime

from loguru import logger

from sortie.core.exceptions import ProviderError, ProvisioningError, TransientProviderError
from sortie.retry import is_transient, retry_conditional, wait_until_ready

IMAGE_READY_TIMEOUT = 120.0
IMAGE_POLL_INTERVAL = 5.0
READ_ATTEMPTS = 3
READ_RETRY_DELAY = 2.0


async def await_created(
    resource_id: str,
    *,
    describe: Callable[[], Awaitable[str]],
    delete: Callable[[], Awaitable[None]],
    ready: Collection[str],
    failed: Collection[str] = ("failed", "error", "deleted"),
    kind: str = "image",
    timeout: float = IMAGE_READY_TIMEOUT,
    interval: float = IMAGE_POLL_INTERVAL,
    log=None,
) -> str:
    """Poll a freshly submitted resource until its status is in ``ready``.

    ``describe`` returns the backend's current status string. On timeout,
    on a status in ``failed``, on any describe error and on cancellation the
    partial resource is deleted with ``delete`` before the error is raised,
    so no transitional resource is left for a later run to discover.

    Returns:
        The ready status.
    """
    log = log or logger.bind(component="provider")
    last: list[str] = []

    async def check() -> bool:
        status = await describe()
        if not last or last[-1] != status:
            log.debug("{kind} {id} is {status}", kind=kind, id=resource_id, status=status)
        last.append(status)
        if status in failed:
            raise ProvisioningError(f"{kind} {resource_id} entered status {status!r}", resource_id)
        return status in ready

    try:
        await wait_until_ready(timeout, interval, check, description=f"{kind} {resource_id}")
    except BaseException as e:
        log.warning("{kind} {id} never became ready, deleting it", kind=kind, id=resource_id)
        try:
            await asyncio.shield(delete())
        except Exception as cleanup:
            log.error("Deleting partial {kind} {id}: {error}", kind=kind, id=resource_id, error=cleanup)
        if isinstance(e, ProvisioningError) or not isinstance(e, Exception):
            raise
        raise ProvisioningError(f"{kind} {resource_id} did not become ready: {e}", resource_id) from e

    return last[-1]


def parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO-8601 API timestamp into an aware UTC datetime.

    Missing values map to the epoch so that garbage collection treats an
    undated resource as old rather than skipping it forever.
    """
    if not value:
        return datetime.fromtimestamp(0, tz=UTC)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def provider_error(message: str, cause: BaseException, resource_id: str | None = None) -> ProviderError:
    """Wrap an SDK or HTTP failure, marking retry-eligible ones as transient."""
    cls = TransientProviderError if is_transient(cause) else ProviderError
    return cls(f"{message}: {cause}", resource_id)


async def with_read_retry[T](fn: Callable[[], Awaitable[T]]) -> T:
    """Run an idempotent read, retrying transient failures only."""
    return await retry_conditional(READ_ATTEMPTS, READ_RETRY_DELAY, is_transient, fn)


__all__ = [
    "IMAGE_POLL_INTERVAL",
    "IMAGE_READY_TIMEOUT",
    "await_created",
    "parse_timestamp",
    "provider_error",
    "with_read_retry",
]
