"""Contabo node provisioner.

Instances are a shared pool. Ownership is recorded in the instance
display name (see ``labels``), mirrored into a ``cluster=<id>`` tag, and
released by clearing the name and stopping the instance.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import replace

from kubepool.config import CheckSettings
from kubepool.core.exceptions import (
    KubepoolError,
    NoCapacityError,
    NodeNotFoundError,
    NodeVerificationError,
    ProviderError,
)
from kubepool.infra.ssh import RemoteExecutor
from kubepool.providers.contabo.client import ContaboClient
from kubepool.providers.contabo.config import Contabo
from kubepool.providers.contabo.types import (
    ContaboInstance,
    ContaboPrivateNetwork,
    TagResourceType,
    private_ip_of,
    public_ip,
)
from kubepool.provisioners.base import AbstractNodeProvisioner, Node, ProvisioningMode
from kubepool.provisioners.labels import (
    NodeLabel,
    NodeRole,
    cluster_marker,
    decode_display_name,
    encode_display_name,
)
from kubepool.provisioners.pagination import Paginated, paginate

_CLAIMABLE_STATES = frozenset({"running", "stopped"})


class ContaboNodeProvisioner(AbstractNodeProvisioner):
    """Claims pooled Contabo instances for Kubernetes clusters.

    Example:
        >>> client = ContaboClient(Contabo(product_id="V78"))
        >>> provisioner = ContaboNodeProvisioner(client, SSHExecutor("~/.ssh/kubepool"))
        >>> node = await provisioner.provision_node("c0ffee", ssh_public_key=key)
    """

    def __init__(
        self,
        client: ContaboClient,
        executor: RemoteExecutor,
        checks: CheckSettings | None = None,
    ) -> None:
        super().__init__(executor, checks or CheckSettings())
        self.client = client
        self.config: Contabo = client.config
        self._log = self._log.bind(provider="contabo")

    async def close(self) -> None:
        await self.client.close()

    async def _list_page(self, page: int, size: int) -> list[ContaboInstance]:
        return await self.client.list_instances(page=page, size=size)

    @staticmethod
    def _instance_id(cluster_id: str, node_id: str) -> int:
        try:
            return int(node_id)
        except ValueError:
            raise NodeNotFoundError(cluster_id, node_id) from None

    @staticmethod
    def _to_node(
        cluster_id: str,
        instance: ContaboInstance,
        label: NodeLabel,
        private_ip: str | None = None,
    ) -> Node:
        return Node(
            cluster_id=cluster_id,
            id=str(instance["instanceId"]),
            name=instance["name"],
            public_ip=public_ip(instance),
            private_ip=private_ip,
            roles=label.roles,
            endpoint=label.endpoint,
        )

    # =========================================================================
    # Claim
    # =========================================================================

    async def _eligible(self, instance: ContaboInstance) -> bool:
        """Whether a listed instance may be claimed.

        Cancelled and errored instances are relabelled so later scans skip
        them without inspecting them again.
        """
        if not decode_display_name(instance["displayName"]).unclaimed:
            return False
        if instance["productId"] != self.config.product_id:
            return False
        if instance.get("cancelDate"):
            await self._relabel(instance["instanceId"], NodeLabel(status="cancelled"))
            return False
        if instance.get("errorMessage"):
            await self._relabel(instance["instanceId"], NodeLabel(error=instance["errorMessage"]))
            return False
        return instance["status"] in _CLAIMABLE_STATES

    async def _relabel(self, instance_id: int, label: NodeLabel) -> None:
        try:
            await self.client.set_display_name(instance_id, encode_display_name(label))
        except ProviderError as e:
            self._log.warning("Could not relabel instance {iid}: {err}", iid=instance_id, err=e)

    async def claim_instance(self, label: NodeLabel, exclude: set[str]) -> ContaboInstance | None:
        """Claim the first eligible pooled instance for ``label``.

        Optimistic concurrency over the display name: confirm the
        candidate is still unclaimed, write the label, wait
        ``claim_settle_delay``, then read it back. Any other value, or a
        rejected write, means another claimant won; the scan moves on.

        Returns:
            The claimed instance, or None when the pool has no candidate.
        """
        desired = encode_display_name(label)
        log = self._log.bind(cluster_id=label.cluster_id)

        async for instance in paginate(self._list_page, self.config.page_size):
            instance_id = instance["instanceId"]
            if str(instance_id) in exclude or not await self._eligible(instance):
                continue

            try:
                current = await self.client.get_instance(instance_id)
                if not decode_display_name(current["displayName"]).unclaimed:
                    log.debug("Instance {iid} taken before claim", iid=instance_id)
                    continue
                await self.client.set_display_name(instance_id, desired)
                await asyncio.sleep(self.config.claim_settle_delay)
                current = await self.client.get_instance(instance_id)
            except ProviderError as e:
                log.info("Claim collision on instance {iid}: {err}", iid=instance_id, err=e)
                continue

            if current["displayName"] != desired:
                log.info(
                    "Claim collision on instance {iid}: found {actual!r}",
                    iid=instance_id, actual=current["displayName"],
                )
                continue

            log.info("Claimed instance {iid}", iid=instance_id)
            return current

        return None

    # =========================================================================
    # Provisioning hooks
    # =========================================================================

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
        marker = cluster_marker(cluster_id)
        key_id = await self.ensure_ssh_key(marker, ssh_public_key)
        label = NodeLabel(
            cluster_id=cluster_id,
            claim=secrets.token_hex(4),
            roles=roles,
            endpoint=endpoint,
        )

        instance = await self.claim_instance(label, exclude)
        if instance is None:
            if (mode or self.config.provisioning) != "auto":
                raise NoCapacityError(
                    "Automatic provisioning disabled and no available instance found. "
                    f"Provision instances with productId {self.config.product_id} in Contabo first."
                )
            self._log.info("Pool empty, ordering a new {product} instance", product=self.config.product_id)
            instance = await self.client.create_instance(
                product_id=self.config.product_id,
                image_id=self.config.image_id,
                ssh_keys=[key_id],
                display_name=encode_display_name(label),
                region=region,
            )

        instance_id = instance["instanceId"]
        try:
            instance = await self._install(instance, key_id)

            private_ip = None
            if self.config.private_networking:
                network_id = await self.ensure_private_network(marker, region)
                network = await self.client.get_private_network(network_id)
                if private_ip_of(network, instance_id) is None:
                    await self.client.assign_private_network(network_id, instance_id)
                    network = await self.client.get_private_network(network_id)
                private_ip = private_ip_of(network, instance_id)

            if self.config.use_tags:
                await self.assign_tag(marker, "instance", str(instance_id))
        except KubepoolError:
            await self._abandon(cluster_id, str(instance_id))
            raise

        return self._to_node(cluster_id, instance, label, private_ip)

    async def _install(self, instance: ContaboInstance, key_id: int) -> ContaboInstance:
        instance_id = instance["instanceId"]
        if instance["imageId"] != self.config.image_id or key_id not in instance["sshKeys"]:
            return await self.client.reinstall_instance(
                instance_id, image_id=self.config.image_id, ssh_keys=[key_id],
            )
        if instance["status"] != "running":
            await self.client.start_instance(instance_id)
            return await self.client.wait_for_status(instance_id, "running")
        return instance

    async def _reject(self, node: Node, error: NodeVerificationError) -> None:
        label = NodeLabel(
            cluster_id=node.cluster_id,
            peer=error.peer.public_ip if error.peer else None,
            error=error.check,
        )
        await self._relabel(int(node.id), label)
        await self._abandon(node.cluster_id, node.id)

    async def _abandon(self, cluster_id: str, node_id: str) -> None:
        try:
            await self._release(cluster_id, int(node_id))
        except KubepoolError as e:
            self._log.bind(cluster_id=cluster_id).error(
                "Could not return instance {iid} to the pool: {err}", iid=node_id, err=e,
            )

    async def _finalize(self, node: Node) -> None:
        try:
            await self.executor.ssh(node.public_ip, "killall apt-get || true")
        except KubepoolError as e:
            self._log.warning("Could not stop apt-get on {node_id}: {err}", node_id=node.id, err=e)

    async def _enrich(self, nodes: list[Node]) -> list[Node]:
        if not self.config.private_networking or not nodes:
            return nodes
        network = await self.find_private_network(cluster_marker(nodes[0].cluster_id))
        if network is None:
            return nodes
        return [
            replace(node, private_ip=private_ip_of(network, int(node.id)) or node.private_ip)
            for node in nodes
        ]

    # =========================================================================
    # Release
    # =========================================================================

    async def _release(self, cluster_id: str, instance_id: int) -> None:
        """Detach an instance from a cluster and clear its name.

        Tag, network and stop steps are best-effort; a failed rename raises.
        """
        log = self._log.bind(cluster_id=cluster_id, instance_id=instance_id)
        marker = cluster_marker(cluster_id)

        if self.config.use_tags:
            try:
                await self.unassign_tag(marker, "instance", str(instance_id))
            except ProviderError as e:
                log.warning("Could not unassign tag {tag}: {err}", tag=marker, err=e)

        if self.config.private_networking:
            try:
                network = await self.find_private_network(marker)
                if network is not None and private_ip_of(network, instance_id) is not None:
                    await self.client.unassign_private_network(network["privateNetworkId"], instance_id)
            except ProviderError as e:
                log.warning("Could not leave private network {net}: {err}", net=marker, err=e)

        await self.client.set_display_name(instance_id, "")

        try:
            await self.client.stop_instance(instance_id)
        except ProviderError as e:
            log.warning("Could not stop instance: {err}", err=e)

    async def deprovision_node(self, cluster_id: str, node_id: str) -> None:
        """Return a node's instance to the pool.

        Safe to call repeatedly: an instance that no longer carries the
        cluster marker is left alone.
        """
        log = self._log.bind(cluster_id=cluster_id, node_id=node_id)
        try:
            instance_id = self._instance_id(cluster_id, node_id)
            instance = await self.client.get_instance(instance_id)
        except NodeNotFoundError:
            log.info("Node {node_id} is not an instance id, nothing to release", node_id=node_id)
            return
        except ProviderError as e:
            if e.status != 404:
                raise
            log.info("Instance {node_id} no longer exists", node_id=node_id)
            return

        if decode_display_name(instance["displayName"]).cluster_id != cluster_id:
            log.info("Node {node_id} already released", node_id=node_id)
            return

        await self._release(cluster_id, instance_id)
        log.info("Released node {node_id}", node_id=node_id)

    async def cleanup_cluster(self, cluster_id: str) -> None:
        """Delete the cluster's SSH key secret and private network. Best-effort."""
        log = self._log.bind(cluster_id=cluster_id)
        marker = cluster_marker(cluster_id)

        try:
            for secret in await self.client.list_secrets(type="ssh", name=marker):
                if secret["name"] == marker:
                    await self.client.delete_secret(secret["secretId"])
                    log.info("Deleted SSH key {name}", name=marker)
        except ProviderError as e:
            log.warning("Could not delete SSH key {name}: {err}", name=marker, err=e)

        try:
            network = await self.find_private_network(marker)
            if network is not None:
                await self.client.delete_private_network(network["privateNetworkId"])
                log.info("Deleted private network {name}", name=marker)
        except ProviderError as e:
            log.warning("Could not delete private network {name}: {err}", name=marker, err=e)

    # =========================================================================
    # Lookup
    # =========================================================================

    def list_nodes(
        self, cluster_id: str, *, page_size: int | None = None, with_errors: bool = False,
    ) -> Paginated[ContaboInstance, Node]:
        """Lazy listing of the cluster's nodes, scanned from the pool."""

        def to_node(instance: ContaboInstance) -> Node | None:
            label = decode_display_name(instance["displayName"])
            if label.cluster_id != cluster_id:
                return None
            if label.error is not None and not with_errors:
                return None
            return self._to_node(cluster_id, instance, label)

        return Paginated(self._list_page, page_size or self.config.page_size, to_node)

    async def get_node(self, cluster_id: str, node_id: str) -> Node:
        instance_id = self._instance_id(cluster_id, node_id)
        try:
            instance = await self.client.get_instance(instance_id)
        except ProviderError as e:
            if e.status == 404:
                raise NodeNotFoundError(cluster_id, node_id) from e
            raise
        label = decode_display_name(instance["displayName"])
        if not label.belongs_to(cluster_id):
            raise NodeNotFoundError(cluster_id, node_id)
        [node] = await self._enrich([self._to_node(cluster_id, instance, label)])
        return node

    # =========================================================================
    # Tags, keys and networks
    # =========================================================================

    async def find_tag(self, name: str) -> int | None:
        async for tag in paginate(
            lambda page, size: self.client.list_tags(page=page, size=size, name=name),
            self.config.page_size,
        ):
            if tag["name"] == name:
                return tag["tagId"]
        return None

    async def ensure_tag(self, name: str) -> int:
        tag_id = await self.find_tag(name)
        if tag_id is None:
            tag_id = await self.client.create_tag(name=name)
        return tag_id

    async def _assigned(self, tag_id: int, resource_type: TagResourceType, resource_id: str) -> tuple[bool, int]:
        """Whether the resource holds the tag, and how many resources do."""
        found = False
        total = 0
        async for assignment in paginate(
            lambda page, size: self.client.list_tag_assignments(tag_id, page=page, size=size),
            self.config.page_size,
        ):
            total += 1
            if assignment["resourceId"] == resource_id and assignment["resourceType"] == resource_type:
                found = True
        return found, total

    async def assign_tag(self, name: str, resource_type: TagResourceType, resource_id: str) -> int:
        """Assign a tag, creating it if needed. Re-assigning is a no-op."""
        tag_id = await self.ensure_tag(name)
        found, _ = await self._assigned(tag_id, resource_type, resource_id)
        if not found:
            await self.client.create_tag_assignment(tag_id, resource_type, resource_id)
        return tag_id

    async def unassign_tag(self, name: str, resource_type: TagResourceType, resource_id: str) -> None:
        """Remove a tag assignment; delete the tag once nothing holds it."""
        tag_id = await self.find_tag(name)
        if tag_id is None:
            return
        found, total = await self._assigned(tag_id, resource_type, resource_id)
        if found:
            await self.client.delete_tag_assignment(tag_id, resource_type, resource_id)
            total -= 1
        if total == 0:
            await self.client.delete_tag(tag_id)

    async def ensure_ssh_key(self, name: str, value: str) -> int:
        for secret in await self.client.list_secrets(type="ssh", name=name):
            if secret["name"] == name:
                return secret["secretId"]
        return await self.client.create_secret(name=name, value=value, type="ssh")

    async def find_private_network(self, name: str) -> ContaboPrivateNetwork | None:
        networks = await self.client.list_private_networks(name=name)
        return next((n for n in networks if n["name"] == name), None)

    async def ensure_private_network(self, name: str, region: str | None = None) -> int:
        network = await self.find_private_network(name)
        if network is not None:
            return network["privateNetworkId"]
        return await self.client.create_private_network(name=name, region=region)
