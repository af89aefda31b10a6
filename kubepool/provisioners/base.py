"""Node provisioner protocol and shared provisioning logic.

A provisioner turns an anonymous pooled instance into a verified Node
bound to a cluster, and hands it back to the pool afterwards. Cluster
membership lives entirely in the provider's instance metadata; nothing
is stored locally.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

from loguru import logger

from kubepool.config import CheckSettings
from kubepool.core.exceptions import (
    CheckKind,
    KubepoolError,
    NodeVerificationError,
    ProvisioningError,
)
from kubepool.infra.ssh import RemoteExecutor
from kubepool.provisioners.labels import NodeRole
from kubepool.provisioners.pagination import Paginated

type ProvisioningMode = Literal["auto", "manual"]


@dataclass(frozen=True, slots=True)
class Node:
    """Cluster-scoped handle for a claimed instance.

    Derived from the provider on every read, never stored.

    Attributes:
        cluster_id: Owning cluster.
        id: Stable instance id rendered as a string.
        name: Instance hostname, also the Kubernetes node name.
        public_ip: Public IPv4 address.
        private_ip: Address inside the cluster's private network, if any.
        roles: Roles recorded when the node was provisioned.
        endpoint: The node serves the cluster API endpoint.
    """

    cluster_id: str
    id: str
    name: str
    public_ip: str
    private_ip: str | None = None
    roles: tuple[NodeRole, ...] = ()
    endpoint: bool = False

    @property
    def is_control_plane(self) -> bool:
        return "control-plane" in self.roles


@runtime_checkable
class NodeProvisioner(Protocol):
    """Claims, verifies and releases pooled instances."""

    async def provision_node(
        self,
        cluster_id: str,
        *,
        ssh_public_key: str,
        region: str | None = None,
        roles: Sequence[NodeRole] = ("worker",),
        endpoint: bool = False,
        peer_node_ids: Sequence[str] | None = None,
        mode: ProvisioningMode | None = None,
    ) -> Node: ...

    async def deprovision_node(self, cluster_id: str, node_id: str) -> None: ...

    def list_nodes(
        self, cluster_id: str, *, page_size: int | None = None, with_errors: bool = False,
    ) -> Paginated[object, Node]: ...

    async def get_node(self, cluster_id: str, node_id: str) -> Node: ...

    async def cleanup_cluster(self, cluster_id: str) -> None: ...


def ping_command(ip: str, timeout: float) -> str:
    """Poll an address with ICMP until it answers or ``timeout`` expires."""
    return f"timeout {timeout:.0f}s /bin/sh -c 'while ! ping -c 1 -W 2 {ip}; do sleep 1; done'"


SSH_ECHO = "echo 'Hello World!'"


class AbstractNodeProvisioner(ABC):
    """Provisioning loop shared by every provider.

    Subclasses claim and release instances; this class verifies the
    claimed node and retries the whole claim with a different candidate
    when verification fails.
    """

    def __init__(self, executor: RemoteExecutor, checks: CheckSettings) -> None:
        self.executor = executor
        self.checks = checks
        self._log = logger.bind(component="provisioner")

    # =========================================================================
    # Provider hooks
    # =========================================================================

    @abstractmethod
    async def _acquire(
        self,
        cluster_id: str,
        *,
        ssh_public_key: str,
        region: str | None,
        roles: tuple[NodeRole, ...],
        endpoint: bool,
        mode: ProvisioningMode | None,
        exclude: set[str],
    ) -> Node:
        """Claim, install and register one instance. Never returns an id in ``exclude``."""

    @abstractmethod
    async def _reject(self, node: Node, error: NodeVerificationError) -> None:
        """Record a failed check on the instance and take it out of the cluster."""

    @abstractmethod
    async def _abandon(self, cluster_id: str, node_id: str) -> None:
        """Hand back an instance whose provisioning failed before verification. Never raises."""

    @abstractmethod
    async def _finalize(self, node: Node) -> None:
        """Last step after a node passed verification."""

    @abstractmethod
    async def deprovision_node(self, cluster_id: str, node_id: str) -> None: ...

    @abstractmethod
    def list_nodes(
        self, cluster_id: str, *, page_size: int | None = None, with_errors: bool = False,
    ) -> Paginated[object, Node]: ...

    @abstractmethod
    async def get_node(self, cluster_id: str, node_id: str) -> Node: ...

    async def close(self) -> None:
        """Release provider connections."""

    async def cleanup_cluster(self, cluster_id: str) -> None:
        """Remove per-cluster provider resources once the last node is gone."""

    # =========================================================================
    # Provisioning
    # =========================================================================

    async def provision_node(
        self,
        cluster_id: str,
        *,
        ssh_public_key: str,
        region: str | None = None,
        roles: Sequence[NodeRole] = ("worker",),
        endpoint: bool = False,
        peer_node_ids: Sequence[str] | None = None,
        mode: ProvisioningMode | None = None,
    ) -> Node:
        """Provision a verified node for a cluster.

        The claim is retried with a different candidate each time
        verification fails, up to ``checks.max_provision_attempts``.
        NoCapacityError is never retried. Any other failure before
        verification hands the claimed instance back and propagates.

        Raises:
            NoCapacityError: No instance can be claimed or created.
            ProvisioningError: Every attempt failed verification.
        """
        log = self._log.bind(cluster_id=cluster_id)
        tried: set[str] = set()
        attempts = self.checks.max_provision_attempts
        last_error: NodeVerificationError | None = None

        for attempt in range(1, attempts + 1):
            node = await self._acquire(
                cluster_id,
                ssh_public_key=ssh_public_key,
                region=region,
                roles=tuple(roles),
                endpoint=endpoint,
                mode=mode,
                exclude=tried,
            )
            tried.add(node.id)
            try:
                peers = await self._enrich(await self._peers(cluster_id, node, peer_node_ids))
            except KubepoolError:
                await self._abandon(cluster_id, node.id)
                raise

            try:
                await self.check_node_provisioning(node, peers)
            except NodeVerificationError as e:
                last_error = e
                log.warning(
                    "Node {node_id} failed {check} (attempt {n}/{total}): {cause}",
                    node_id=node.id, check=e.check, n=attempt, total=attempts, cause=e.cause,
                )
                await self._reject(node, e)
                continue

            await self._finalize(node)
            log.info("Provisioned node {node_id} ({ip})", node_id=node.id, ip=node.public_ip)
            return node

        raise ProvisioningError(
            f"Node provisioning for cluster {cluster_id} failed after {attempts} attempts"
        ) from last_error

    async def _peers(
        self, cluster_id: str, node: Node, peer_node_ids: Sequence[str] | None,
    ) -> list[Node]:
        if peer_node_ids is None:
            return [
                peer for peer in await self.list_nodes(cluster_id).collect() if peer.id != node.id
            ]
        return [await self.get_node(cluster_id, peer_id) for peer_id in peer_node_ids if peer_id != node.id]

    async def _enrich(self, nodes: list[Node]) -> list[Node]:
        """Fill in details the listing does not carry. Default: none."""
        return nodes

    # =========================================================================
    # Verification
    # =========================================================================

    async def check_node_provisioning(self, node: Node, peers: Sequence[Node]) -> None:
        """Run the post-provisioning checks in order, failing on the first one.

        Checks: the node answers ping from the control host, accepts an
        SSH command, and reaches every peer's public address (and private
        address when both sides have one).

        Raises:
            NodeVerificationError: Carries the check kind, node, peer,
                command and underlying cause.
        """
        timeout = self.checks.timeout
        retries = self.checks.retries

        ping = ping_command(node.public_ip, timeout * (retries + 1))
        await self._check("ping_node", node, ping, self.executor.local(ping, timeout=timeout * (retries + 2)))

        await self._check(
            "ssh_node", node, SSH_ECHO,
            self.executor.ssh(node.public_ip, SSH_ECHO, timeout=timeout, retries=retries),
        )

        for peer in peers:
            command = ping_command(peer.public_ip, timeout)
            await self._check(
                "ssh_ping_peer_public", node, command,
                self.executor.ssh(node.public_ip, command, timeout=timeout + 10, retries=retries),
                peer,
            )
            if node.private_ip and peer.private_ip:
                command = ping_command(peer.private_ip, timeout)
                await self._check(
                    "ssh_ping_peer_private", node, command,
                    self.executor.ssh(node.public_ip, command, timeout=timeout + 10, retries=retries),
                    peer,
                )

    async def _check(
        self,
        kind: CheckKind,
        node: Node,
        command: str,
        run: Awaitable[object],
        peer: Node | None = None,
    ) -> None:
        self._log.debug("Check {kind} on {node_id}", kind=kind, node_id=node.id)
        try:
            await run
        except KubepoolError as e:
            raise NodeVerificationError(kind, node, command, e, peer) from e
