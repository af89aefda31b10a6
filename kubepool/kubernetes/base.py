"""Kubernetes administrator: cluster lifecycle over SSH.

The administrator drives kubeadm, kubectl and etcdctl on nodes supplied
by a NodeProvisioner. It keeps no state of its own: the cluster is
whatever set of instances currently carries its label.

State machine (cluster level)::

    (none) --init_cluster--> BOOTSTRAPPED --add_node--> BOOTSTRAPPED
    BOOTSTRAPPED --remove_node--> BOOTSTRAPPED  (one control plane must remain)
    BOOTSTRAPPED --upgrade_cluster--> BOOTSTRAPPED  (new version)
    BOOTSTRAPPED --delete_cluster--> (none)
"""

from __future__ import annotations

import asyncio
import posixpath
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import ClassVar, Protocol, runtime_checkable

from loguru import logger

from kubepool.config import CNI, Settings
from kubepool.core.exceptions import (
    ClusterStateError,
    EtcdBackupError,
    EtcdRestoreError,
    KubepoolError,
    RemoteCommandError,
    UpgradeError,
    WaitTimeoutError,
)
from kubepool.infra.shell import squash
from kubepool.infra.ssh import RemoteExecutor
from kubepool.kubernetes import ops
from kubepool.kubernetes.etcd import (
    EtcdHealthStatus,
    EtcdOptions,
    alarm_list_command,
    default_backup_path,
    etcdctl,
    health_command,
    member_list_command,
    parse_health,
    parse_snapshot_status,
)
from kubepool.provisioners.base import Node, NodeProvisioner
from kubepool.provisioners.labels import NodeRole
from kubepool.wait import wait_for_ready

KUBEADM_CONFIG = "/etc/kubernetes/kubeadm-config.yaml"
API_PORT = 6443

CNI_MANIFESTS: dict[str, str] = {
    "calico": "https://raw.githubusercontent.com/projectcalico/calico/v3.29.1/manifests/calico.yaml",
    "flannel": "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml",
}


@dataclass(frozen=True, slots=True)
class InitClusterOptions:
    """Options for bootstrapping a new cluster.

    Attributes:
        cluster_id: Id to use; generated when None.
        pod_cidr: Pod network CIDR.
        service_cidr: Service network CIDR.
        cni: Pod network add-on; defaults to the configured one.
        etcd: Local etcd settings.
    """

    cluster_id: str | None = None
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    cni: CNI | None = None
    etcd: EtcdOptions = field(default_factory=EtcdOptions)


@runtime_checkable
class KubernetesAdministrator(Protocol):
    version: ClassVar[str]

    async def init_cluster(self, options: InitClusterOptions | None = None) -> str: ...
    async def add_node(self, cluster_id: str, roles: Sequence[NodeRole] = ("worker",)) -> Node: ...
    async def remove_node(self, cluster_id: str, node_id: str, *, handoff: bool = False) -> None: ...
    async def delete_cluster(self, cluster_id: str) -> list[Exception]: ...
    def list_nodes(self, cluster_id: str, role: NodeRole | None = None) -> AsyncIterator[Node]: ...
    async def get_kubeconfig(self, cluster_id: str) -> str: ...
    async def check_etcd_health(self, cluster_id: str) -> EtcdHealthStatus: ...
    async def backup_etcd(self, cluster_id: str, backup_path: str | None = None) -> str: ...
    async def restore_etcd(self, cluster_id: str, backup_path: str) -> None: ...
    async def upgrade_cluster(
        self, cluster_id: str, target_version: str | None = None,
    ) -> KubernetesAdministrator: ...


def generate_cluster_id() -> str:
    return str(uuid.uuid4())


def _stamp() -> str:
    return datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")


class AbstractKubernetesAdministrator(ABC):
    """Version-independent cluster operations.

    Subclasses supply the version tag, dependency installation and the
    etcd restart procedure; everything else is shared.
    """

    version: ClassVar[str]
    kubernetes_version: ClassVar[str]

    def __init__(
        self,
        provisioner: NodeProvisioner,
        executor: RemoteExecutor,
        *,
        settings: Settings | None = None,
        ssh_public_key: str | None = None,
    ) -> None:
        self.provisioner = provisioner
        self.executor = executor
        self.settings = settings or Settings()
        self._ssh_public_key = ssh_public_key
        self._log = logger.bind(component="kubernetes", version=self.version)

    # =========================================================================
    # Version hooks
    # =========================================================================

    @abstractmethod
    async def install_dependencies(self, node: Node) -> None:
        """Install container runtime, kubeadm, kubelet and kubectl on a node."""

    @abstractmethod
    def restart_etcd_command(self) -> str:
        """Shell command that restarts the local etcd member."""

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def ssh_public_key(self) -> str:
        if self._ssh_public_key is None:
            self._ssh_public_key = self.settings.ssh.public_key()
        return self._ssh_public_key

    async def _ssh(
        self,
        node: Node,
        command: str,
        *,
        input: str | None = None,
        timeout: float | None = None,
        retries: int = 0,
    ) -> str:
        stdout, _ = await self.executor.ssh(
            node.public_ip, squash(command), input=input, timeout=timeout, retries=retries,
        )
        return stdout.strip()

    async def _run(self, node: Node, *steps: ops.Op) -> None:
        await self.executor.ssh(node.public_ip, "bash -s", input=ops.script(*steps))

    async def reset_node(self, node: Node) -> None:
        """Clear Kubernetes state from a node."""
        await self._run(node, ops.reset_kubernetes())

    async def _control_planes(self, cluster_id: str) -> list[Node]:
        """Control-plane nodes, the API endpoint first."""
        nodes = [node async for node in self.list_nodes(cluster_id, "control-plane")]
        return sorted(nodes, key=lambda n: not n.endpoint)

    async def _coordinator(self, cluster_id: str, *, exclude: str | None = None) -> Node | None:
        for node in await self._control_planes(cluster_id):
            if node.id != exclude:
                return node
        return None

    async def _require_control_planes(self, cluster_id: str) -> list[Node]:
        nodes = await self._control_planes(cluster_id)
        if not nodes:
            raise ClusterStateError(f"No control-plane node found in cluster {cluster_id}")
        return nodes

    def render_kubeadm_config(self, node: Node, options: InitClusterOptions) -> str:
        """Render kubeadm InitConfiguration and ClusterConfiguration (v1beta4)."""
        extra_args = "\n".join(
            f"      - name: {name}\n        value: \"{value}\""
            for name, value in options.etcd.extra_args().items()
        )
        return f"""apiVersion: kubeadm.k8s.io/v1beta4
kind: InitConfiguration
nodeRegistration:
  name: "{node.name}"
  criSocket: unix:///var/run/containerd/containerd.sock
---
apiVersion: kubeadm.k8s.io/v1beta4
kind: ClusterConfiguration
kubernetesVersion: "{self.kubernetes_version}"
controlPlaneEndpoint: "{node.public_ip}:{API_PORT}"
networking:
  podSubnet: "{options.pod_cidr}"
  serviceSubnet: "{options.service_cidr}"
etcd:
  local:
    dataDir: "{options.etcd.data_dir}"
    extraArgs:
{extra_args}
certificatesDir: /etc/kubernetes/pki
"""

    # =========================================================================
    # Cluster lifecycle
    # =========================================================================

    async def init_cluster(self, options: InitClusterOptions | None = None) -> str:
        """Bootstrap a new single-node cluster and return its id.

        The provisioned node becomes the cluster's API endpoint. A failure
        after provisioning leaves the node partially bootstrapped; clean
        up with ``delete_cluster``.

        Raises:
            ClusterStateError: ``options.cluster_id`` names a cluster that
                still has nodes.
        """
        options = options or InitClusterOptions()
        if options.cluster_id and await self.provisioner.list_nodes(options.cluster_id).first() is not None:
            raise ClusterStateError(f"Cluster {options.cluster_id} already exists")
        cluster_id = options.cluster_id or generate_cluster_id()
        cni = options.cni or self.settings.cni
        log = self._log.bind(cluster_id=cluster_id)

        log.info("Initializing cluster {cluster_id} (Kubernetes {v})", cluster_id=cluster_id, v=self.version)
        node = await self.provisioner.provision_node(
            cluster_id,
            ssh_public_key=self.ssh_public_key,
            roles=("control-plane",),
            endpoint=True,
        )

        await self.reset_node(node)
        await self.install_dependencies(node)

        await self._ssh(
            node,
            f"mkdir -p {posixpath.dirname(KUBEADM_CONFIG)} && cat > {KUBEADM_CONFIG}",
            input=self.render_kubeadm_config(node, options),
        )
        log.info("Running kubeadm init on {node_id}", node_id=node.id)
        await self._ssh(node, f"kubeadm init --config={KUBEADM_CONFIG} --upload-certs")
        await self._run(node, ops.install_kubeconfig())
        await self._ssh(node, ops.kubectl(f"apply -f {CNI_MANIFESTS[cni]}"))

        log.info("Cluster {cluster_id} ready, endpoint {ip}:{port}", cluster_id=cluster_id, ip=node.public_ip, port=API_PORT)
        return cluster_id

    async def add_node(self, cluster_id: str, roles: Sequence[NodeRole] = ("worker",)) -> Node:
        """Provision a node and join it to the cluster.

        Not idempotent: every call adds one more node.
        """
        if not roles:
            raise ClusterStateError("A node needs at least one role")
        log = self._log.bind(cluster_id=cluster_id)

        coordinator = await self._coordinator(cluster_id)
        if coordinator is None:
            raise ClusterStateError(f"No control-plane node found in cluster {cluster_id}")

        peers = await self.provisioner.list_nodes(cluster_id).collect()
        node = await self.provisioner.provision_node(
            cluster_id,
            ssh_public_key=self.ssh_public_key,
            roles=tuple(roles),
            peer_node_ids=[peer.id for peer in peers],
        )

        await self.reset_node(node)
        await self.install_dependencies(node)

        if "control-plane" in roles:
            upload = await self._ssh(coordinator, "kubeadm init phase upload-certs --upload-certs")
            tokens = upload.split()
            if not tokens:
                raise ClusterStateError(
                    f"kubeadm upload-certs printed no certificate key on {coordinator.id}"
                )
            certificate_key = tokens[-1]
            join = await self._ssh(
                coordinator,
                f"kubeadm token create --print-join-command --certificate-key {certificate_key}",
            )
            if "--control-plane" not in join:
                join = f"{join} --control-plane --certificate-key {certificate_key}"
        else:
            join = await self._ssh(coordinator, "kubeadm token create --print-join-command")

        log.info("Joining node {node_id} as {roles}", node_id=node.id, roles="+".join(roles))
        await self._ssh(node, join)

        for role in roles:
            await self._ssh(
                coordinator,
                ops.kubectl(f"label node {node.name} node-role.kubernetes.io/{role}={role} --overwrite"),
            )
        return node

    async def remove_node(self, cluster_id: str, node_id: str, *, handoff: bool = False) -> None:
        """Drain a node, remove it from the cluster and release its instance.

        Every guard runs before anything is changed.

        Args:
            cluster_id: Cluster the node belongs to.
            node_id: Node to remove.
            handoff: Confirm the API endpoint has been moved elsewhere;
                required to remove the endpoint node.

        Raises:
            NodeNotFoundError: The node is not part of the cluster.
            ClusterStateError: The node is the only control plane, or the
                endpoint without ``handoff``.
        """
        log = self._log.bind(cluster_id=cluster_id, node_id=node_id)
        node = await self.provisioner.get_node(cluster_id, node_id)

        coordinator = await self._coordinator(cluster_id, exclude=node.id)
        if coordinator is None:
            raise ClusterStateError(
                "Cannot remove the only control-plane node, delete the cluster instead"
            )
        if node.endpoint and not handoff:
            raise ClusterStateError(
                f"Node {node.id} is the API endpoint of cluster {cluster_id}; "
                "move the endpoint and pass handoff=True to remove it"
            )
        if node.endpoint:
            log.warning("Removing API endpoint node {node_id} after hand-off", node_id=node.id)

        await self._ssh(
            coordinator,
            ops.kubectl(f"drain {node.name} --ignore-daemonsets --delete-emptydir-data --force"),
        )
        await self._ssh(coordinator, ops.kubectl(f"delete node {node.name}"))

        try:
            await self.reset_node(node)
        except KubepoolError as e:
            log.warning("Could not reset node {node_id}: {err}", node_id=node.id, err=e)

        await self.provisioner.deprovision_node(cluster_id, node.id)
        log.info("Removed node {node_id}", node_id=node.id)

    async def delete_cluster(self, cluster_id: str) -> list[Exception]:
        """Reset and release every node of the cluster.

        Nodes are torn down concurrently. Failures are logged and
        returned, never raised: the cluster is gone once no node carries
        its label. The cluster's SSH key and private network are removed
        once every node was released.
        """
        log = self._log.bind(cluster_id=cluster_id)
        nodes = await self.provisioner.list_nodes(cluster_id, with_errors=True).collect()
        failures: list[Exception] = []

        async def teardown(node: Node) -> None:
            try:
                await self.reset_node(node)
            except KubepoolError as e:
                failures.append(e)
                log.warning("Could not reset node {node_id}: {err}", node_id=node.id, err=e)
            await self.provisioner.deprovision_node(cluster_id, node.id)

        results = await asyncio.gather(*(teardown(n) for n in nodes), return_exceptions=True)
        for node, result in zip(nodes, results, strict=True):
            if isinstance(result, Exception):
                failures.append(result)
                log.error("Could not release node {node_id}: {err}", node_id=node.id, err=result)

        if not any(isinstance(result, Exception) for result in results):
            await self.provisioner.cleanup_cluster(cluster_id)

        log.info(
            "Deleted cluster {cluster_id} ({n} nodes, {f} failures)",
            cluster_id=cluster_id, n=len(nodes), f=len(failures),
        )
        return failures

    async def list_nodes(self, cluster_id: str, role: NodeRole | None = None) -> AsyncIterator[Node]:
        """Nodes of the cluster, optionally only those holding ``role``."""
        async for node in self.provisioner.list_nodes(cluster_id):
            if role is None or role in node.roles:
                yield node

    async def get_kubeconfig(self, cluster_id: str) -> str:
        [endpoint, *_] = await self._require_control_planes(cluster_id)
        return await self._ssh(endpoint, f"cat {ops.ADMIN_KUBECONFIG}")

    # =========================================================================
    # etcd maintenance
    # =========================================================================

    async def _diagnostic(self, node: Node, command: str) -> str:
        """Combined output of a read-only etcdctl command.

        A non-zero exit still carries the diagnostic output (etcdctl exits
        1 when an endpoint is unhealthy). Connection failures propagate.
        """
        try:
            stdout, stderr = await self.executor.ssh(node.public_ip, command)
        except RemoteCommandError as e:
            if e.exit_status is None:
                raise
            stdout, stderr = e.stdout, e.stderr
        lines = f"{stdout}\n{stderr}".splitlines()
        return "\n".join(line for line in lines if not line.lstrip().startswith("{"))

    async def check_etcd_health(self, cluster_id: str) -> EtcdHealthStatus:
        """Query endpoint health, member list and alarms from the first reachable control plane."""
        for node in await self._require_control_planes(cluster_id):
            try:
                health = await self._diagnostic(node, health_command())
                members = await self._diagnostic(node, member_list_command())
                alarms = await self._diagnostic(node, alarm_list_command())
            except RemoteCommandError as e:
                self._log.warning("Control plane {node_id} unreachable: {err}", node_id=node.id, err=e)
                continue
            return parse_health(health, members, alarms)
        raise ClusterStateError(f"No reachable control-plane node in cluster {cluster_id}")

    async def backup_etcd(self, cluster_id: str, backup_path: str | None = None) -> str:
        """Snapshot etcd on a control-plane node and verify the snapshot.

        Returns:
            Path of the snapshot on the node.

        Raises:
            EtcdBackupError: The snapshot could not be taken or did not
                pass verification.
        """
        [node, *_] = await self._require_control_planes(cluster_id)
        path = backup_path or default_backup_path()

        try:
            await self._ssh(
                node, f"mkdir -p {posixpath.dirname(path)} && {etcdctl(f'snapshot save {path}')}",
            )
            status = await self._ssh(node, f"ETCDCTL_API=3 etcdctl snapshot status {path} -w json")
        except RemoteCommandError as e:
            raise EtcdBackupError(f"Snapshot {path} on node {node.id} failed: {e}") from e

        snapshot = parse_snapshot_status(status, path)
        self._log.info(
            "Backed up etcd to {path} on {node_id} ({keys} keys, {size} bytes)",
            path=path, node_id=node.id, keys=snapshot.total_keys, size=snapshot.total_size,
        )
        return path

    async def restore_etcd(
        self,
        cluster_id: str,
        backup_path: str,
        *,
        data_dir: str = "/var/lib/etcd",
        health_timeout: float = 300.0,
    ) -> None:
        """Restore etcd from a snapshot on the endpoint control plane.

        kubelet and etcd are stopped on every control plane, the snapshot
        is restored into a fresh directory on one node and swapped into
        place (the old data is kept as ``<data_dir>.bak-<timestamp>``),
        and kubelet is started everywhere. Other members are not re-seeded,
        so the restore only counts once etcd reports healthy again.

        Raises:
            EtcdRestoreError: A step failed or etcd did not become healthy
                within ``health_timeout`` seconds.
        """
        log = self._log.bind(cluster_id=cluster_id)
        nodes = await self._require_control_planes(cluster_id)
        target = nodes[0]
        stamp = _stamp()
        restored = f"{data_dir}.restore-{stamp}"

        stop = (
            "systemctl stop kubelet && "
            "(crictl ps -q --name '^etcd$' | xargs -r crictl stop) || true"
        )
        results = await asyncio.gather(*(self._ssh(n, stop) for n in nodes), return_exceptions=True)
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            raise EtcdRestoreError(f"Could not stop control planes: {errors[0]}") from errors[0]

        peer_url = f"https://{target.public_ip}:2380"
        try:
            await self._ssh(
                target,
                f"ETCDCTL_API=3 etcdctl snapshot restore {backup_path} \\\n"
                f"  --data-dir={restored} \\\n"
                f"  --name={target.name} \\\n"
                f"  --initial-cluster={target.name}={peer_url} \\\n"
                f"  --initial-advertise-peer-urls={peer_url}",
            )
            await self._ssh(
                target,
                f"if [ -d {data_dir} ]; then mv {data_dir} {data_dir}.bak-{stamp}; fi && mv {restored} {data_dir}",
            )
        except RemoteCommandError as e:
            raise EtcdRestoreError(f"Restore of {backup_path} on {target.id} failed: {e}") from e
        finally:
            await asyncio.gather(
                *(self._ssh(n, "systemctl start kubelet") for n in nodes), return_exceptions=True,
            )

        log.info("Restored {path} on {node_id}, waiting for etcd", path=backup_path, node_id=target.id)

        async def poll() -> EtcdHealthStatus | None:
            try:
                return await self.check_etcd_health(cluster_id)
            except ClusterStateError:
                return None

        try:
            await wait_for_ready(
                poll,
                lambda status: status.healthy,
                timeout=health_timeout,
                interval=10.0,
                description=f"etcd of cluster {cluster_id}",
            )
        except WaitTimeoutError as e:
            raise EtcdRestoreError(
                f"etcd of cluster {cluster_id} not healthy {health_timeout:.0f}s after restore"
            ) from e

    async def upgrade_cluster(
        self, cluster_id: str, target_version: str | None = None,
    ) -> AbstractKubernetesAdministrator:
        """Back up etcd, then restart and re-check etcd on each control plane in turn.

        Returns:
            The administrator for the target version.

        Raises:
            UnsupportedVersionError: No administrator exists for ``target_version``.
            UpgradeError: etcd is not fully healthy afterwards.
        """
        from kubepool.kubernetes.registry import administrator_class

        target = administrator_class(target_version or self.version)
        log = self._log.bind(cluster_id=cluster_id)
        nodes = await self._require_control_planes(cluster_id)

        backup = await self.backup_etcd(cluster_id)
        log.info("Backed up etcd to {path} before upgrade", path=backup)

        for node in nodes:
            current = await self._ssh(node, "ETCDCTL_API=3 etcdctl version | awk '/etcdctl version/ {print $3}'")
            log.info("Restarting etcd {v} on {node_id}", v=current or "unknown", node_id=node.id)
            await self._ssh(node, self.restart_etcd_command())
            await self._ssh(node, etcdctl("endpoint health"), retries=self.settings.checks.retries)

        health = await self.check_etcd_health(cluster_id)
        if not health.healthy:
            raise UpgradeError(
                f"etcd not healthy after upgrade: {health.healthy_endpoints}/"
                f"{health.total_endpoints} endpoints healthy"
            )
        log.info("Upgrade of cluster {cluster_id} to {v} complete", cluster_id=cluster_id, v=target.version)

        if target is type(self):
            return self
        return target(
            self.provisioner,
            self.executor,
            settings=self.settings,
            ssh_public_key=self._ssh_public_key,
        )
