"""Operation facade returning success/failure envelopes.

Every operation opens a session (SSH executor, provisioner and
administrator built from Settings), runs, and converts any KubepoolError
into ``Result(success=False, message=...)``. Pass ``admin=`` to reuse an
existing administrator instead.

Example:
    >>> from kubepool import api
    >>> result = await api.create_cluster(pod_cidr="10.244.0.0/16")
    >>> if result.success:
    ...     await api.add_node(result.data, roles=["worker"])
"""

from __future__ import annotations

import functools
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from loguru import logger

from kubepool.config import CNI, Settings, load_settings
from kubepool.core.exceptions import KubepoolError
from kubepool.infra.ssh import SSHExecutor
from kubepool.kubernetes import (
    AbstractKubernetesAdministrator,
    EtcdHealthStatus,
    InitClusterOptions,
    create_kubernetes_administrator,
)
from kubepool.provisioners import Node, NodeRole, create_node_provisioner

log = logger.bind(component="api")


@dataclass(frozen=True, slots=True)
class Result[T]:
    success: bool
    message: str
    data: T | None = None


@asynccontextmanager
async def session(settings: Settings | None = None) -> AsyncIterator[AbstractKubernetesAdministrator]:
    """Build an administrator from settings and close its provider on exit."""
    settings = settings or load_settings()
    executor = SSHExecutor(
        key_path=settings.ssh.key_path,
        user=settings.ssh.user,
        connect_timeout=settings.ssh.connect_timeout,
        command_timeout=settings.ssh.command_timeout,
        retry_delay=settings.checks.interval,
    )
    provisioner = create_node_provisioner(settings.provider, settings, executor)
    try:
        yield create_kubernetes_administrator(
            settings.kubernetes_version, provisioner, executor, settings=settings,
        )
    finally:
        await provisioner.close()


def operation[T](
    describe: Callable[[T], str],
) -> Callable[
    [Callable[..., Awaitable[T]]],
    Callable[..., Awaitable[Result[T]]],
]:
    """Run an administrator coroutine inside a session and wrap its outcome."""

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[Result[T]]]:
        @functools.wraps(fn)
        async def wrapper(
            *args: Any,
            admin: AbstractKubernetesAdministrator | None = None,
            settings: Settings | None = None,
            **kwargs: Any,
        ) -> Result[T]:
            try:
                if admin is not None:
                    data = await fn(admin, *args, **kwargs)
                else:
                    async with session(settings) as opened:
                        data = await fn(opened, *args, **kwargs)
            except KubepoolError as e:
                log.error("{op} failed: {err}", op=fn.__name__, err=e)
                return Result(success=False, message=str(e))
            return Result(success=True, message=describe(data), data=data)

        return wrapper

    return decorator


# =============================================================================
# Cluster operations
# =============================================================================


@operation(lambda cluster_id: f"Cluster {cluster_id} created")
async def create_cluster(
    admin: AbstractKubernetesAdministrator,
    *,
    cluster_id: str | None = None,
    pod_cidr: str = "10.244.0.0/16",
    service_cidr: str = "10.96.0.0/12",
    cni: CNI | None = None,
) -> str:
    return await admin.init_cluster(
        InitClusterOptions(
            cluster_id=cluster_id, pod_cidr=pod_cidr, service_cidr=service_cidr, cni=cni,
        )
    )


@operation(lambda node: f"Node {node.id} ({node.public_ip}) joined as {'+'.join(node.roles)}")
async def add_node(
    admin: AbstractKubernetesAdministrator,
    cluster_id: str,
    roles: Sequence[NodeRole] = ("worker",),
) -> Node:
    return await admin.add_node(cluster_id, roles)


@operation(lambda _: "Node removed")
async def remove_node(
    admin: AbstractKubernetesAdministrator,
    cluster_id: str,
    node_id: str,
    *,
    handoff: bool = False,
) -> None:
    await admin.remove_node(cluster_id, node_id, handoff=handoff)


@operation(
    lambda failures: "Cluster deleted"
    + (f" ({len(failures)} cleanup failures, see logs)" if failures else "")
)
async def delete_cluster(admin: AbstractKubernetesAdministrator, cluster_id: str) -> list[Exception]:
    return await admin.delete_cluster(cluster_id)


@operation(lambda upgraded: f"Cluster upgraded to Kubernetes {upgraded.version}")
async def upgrade_cluster(
    admin: AbstractKubernetesAdministrator,
    cluster_id: str,
    target_version: str | None = None,
) -> AbstractKubernetesAdministrator:
    return await admin.upgrade_cluster(cluster_id, target_version)


@operation(lambda nodes: f"{len(nodes)} node(s)")
async def list_nodes(
    admin: AbstractKubernetesAdministrator,
    cluster_id: str,
    role: NodeRole | None = None,
) -> list[Node]:
    return [node async for node in admin.list_nodes(cluster_id, role)]


@operation(lambda _: "Kubeconfig retrieved")
async def get_kubeconfig(admin: AbstractKubernetesAdministrator, cluster_id: str) -> str:
    return await admin.get_kubeconfig(cluster_id)


# =============================================================================
# etcd
# =============================================================================


@operation(lambda path: f"etcd backed up to {path}")
async def backup_etcd(
    admin: AbstractKubernetesAdministrator,
    cluster_id: str,
    backup_path: str | None = None,
) -> str:
    return await admin.backup_etcd(cluster_id, backup_path)


@operation(lambda _: "etcd restored")
async def restore_etcd(
    admin: AbstractKubernetesAdministrator,
    cluster_id: str,
    backup_path: str,
) -> None:
    await admin.restore_etcd(cluster_id, backup_path)


@operation(
    lambda status: f"etcd {'healthy' if status.healthy else 'unhealthy'}: "
    f"{status.healthy_endpoints}/{status.total_endpoints} endpoints, {status.members} members"
    + (", alarms raised" if status.has_alarms else "")
)
async def check_etcd_health(admin: AbstractKubernetesAdministrator, cluster_id: str) -> EtcdHealthStatus:
    return await admin.check_etcd_health(cluster_id)
