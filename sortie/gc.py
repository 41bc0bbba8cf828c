"""Age-based garbage collection of leftover provider resources.

Runs independently of any Flight: the backend listing is the only input, so
resources leaked by a crashed process are reclaimed once they are older than
the grace period.

Example:
    report = await collect_garbage(provider, timedelta(hours=2))
    print(report.servers, report.images)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from loguru import logger

from sortie.core.exceptions import GarbageCollectionError
from sortie.providers.provider import FloatingIPCapable, Provider, SSHKeyCapable


@dataclass(slots=True)
class GCReport:
    """Identifiers deleted by one collection pass."""

    threshold: datetime
    servers: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    ssh_keys: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.servers) + len(self.images) + len(self.ssh_keys)


async def collect_garbage(
    provider: Provider,
    grace_period: timedelta,
    *,
    now: datetime | None = None,
    log=None,
) -> GCReport:
    """Delete servers, images and SSH keys created strictly before ``now - grace_period``.

    Deleted or deleting resources and public images are skipped. The first
    failed deletion aborts the pass; nothing is retried here.

    Raises:
        GarbageCollectionError: Naming the kind and id that could not be deleted.
    """
    log = (log or logger).bind(component="gc", provider=provider.name)
    threshold = (now or datetime.now(UTC)) - grace_period
    report = GCReport(threshold=threshold)

    for server in await provider.list_servers():
        if server.deleted or server.created_at >= threshold:
            continue
        try:
            await provider.delete_server(server.id)
        except Exception as e:
            raise GarbageCollectionError("server", server.id) from e
        log.info("Deleted server {id} created at {created}", id=server.id, created=server.created_at)
        report.servers.append(server.id)

    for image in await provider.list_images():
        if image.public or image.deleted or image.created_at >= threshold:
            continue
        try:
            await provider.delete_image(image.id)
        except Exception as e:
            raise GarbageCollectionError("image", image.id) from e
        log.info("Deleted image {id} created at {created}", id=image.id, created=image.created_at)
        report.images.append(image.id)

    if isinstance(provider, SSHKeyCapable):
        for key in await provider.list_ssh_keys():
            if key.created_at >= threshold:
                continue
            try:
                await provider.delete_ssh_key(key.id)
            except Exception as e:
                raise GarbageCollectionError("SSH key", key.id) from e
            log.info("Deleted SSH key {id} ({name})", id=key.id, name=key.name)
            report.ssh_keys.append(key.id)

    log.info(
        "Collected {servers} servers, {images} images and {keys} SSH keys older than {threshold}",
        servers=len(report.servers), images=len(report.images), keys=len(report.ssh_keys),
        threshold=threshold,
    )
    return report


async def remove_floating_ips(provider: FloatingIPCapable, *, log=None) -> list[str]:
    """Delete every floating IP not attached to a server.

    Floating IPs carry no creation time, so there is no grace period: only run
    this when no Flight of the account is active.
    """
    log = (log or logger).bind(component="gc")
    removed: list[str] = []
    for floating_ip in await provider.list_floating_ips():
        if floating_ip.attached:
            continue
        try:
            await provider.delete_floating_ip(floating_ip.id)
        except Exception as e:
            raise GarbageCollectionError("floating IP", floating_ip.id) from e
        log.info("Deleted floating IP {id} ({address})", id=floating_ip.id, address=floating_ip.address)
        removed.append(floating_ip.id)
    return removed


__all__ = ["GCReport", "collect_garbage", "remove_floating_ips"]
