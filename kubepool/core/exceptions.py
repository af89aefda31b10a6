"""Custom exception hierarchy for kubepool.

All kubepool-specific exceptions inherit from KubepoolError, enabling
callers to catch every failure of a cluster operation with a single
except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from kubepool.provisioners.base import Node

type CheckKind = Literal[
    "ping_node",
    "ssh_node",
    "ssh_ping_peer_public",
    "ssh_ping_peer_private",
]


class KubepoolError(Exception):
    """Base exception for all kubepool errors."""


class ConfigurationError(KubepoolError):
    """Raised for invalid configuration or missing required settings."""


class UnsupportedVersionError(ConfigurationError):
    """Raised when no administrator is registered for a Kubernetes version."""

    def __init__(self, version: str, available: tuple[str, ...] = ()) -> None:
        self.version = version
        self.available = available
        hint = f" Available: {', '.join(available)}" if available else ""
        super().__init__(f"Unsupported Kubernetes version: {version}.{hint}")


# =============================================================================
# Instance Directory
# =============================================================================


class ProviderError(KubepoolError):
    """Error returned by the cloud provider API."""

    def __init__(self, status: int, body: str, *, operation: str = "") -> None:
        self.status = status
        self.body = body
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}API error {status}: {body}")


class InstanceLockedError(ProviderError):
    """The instance is busy with another operation (HTTP 423)."""


class WaitTimeoutError(KubepoolError):
    """A polled resource did not become ready in time."""

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timeout waiting for {description} after {timeout:.1f}s")


class TerminalStateError(KubepoolError):
    """A polled resource reached a state it will not leave on its own."""

    def __init__(self, description: str, state: object) -> None:
        self.description = description
        self.state = state
        super().__init__(f"{description} reached terminal state: {state}")


# =============================================================================
# Provisioning
# =============================================================================


class ProvisioningError(KubepoolError):
    """Raised when node provisioning fails."""


class NoCapacityError(ProvisioningError):
    """No unclaimed instance is available and automatic provisioning is disabled."""


class NodeVerificationError(ProvisioningError):
    """A post-provisioning check failed for a node."""

    def __init__(
        self,
        check: CheckKind,
        node: Node,
        command: str,
        cause: BaseException,
        peer: Node | None = None,
    ) -> None:
        self.check = check
        self.node = node
        self.peer = peer
        self.command = command
        self.cause = cause
        target = f" (peer {peer.public_ip})" if peer else ""
        super().__init__(
            f"Node {node.id} ({node.public_ip}) failed check {check}{target}: {cause}"
        )


# =============================================================================
# Remote execution
# =============================================================================


class RemoteCommandError(KubepoolError):
    """A command exited with a non-zero status."""

    def __init__(
        self,
        host: str | None,
        command: str,
        exit_status: int | None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.host = host
        self.command = command
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr
        where = host or "localhost"
        preview = command if len(command) <= 80 else command[:80] + "..."
        super().__init__(
            f"Command failed on {where} ({exit_status}): {preview}: {stderr.strip()}"
        )


class CommandTimeoutError(RemoteCommandError):
    """A command did not finish within its timeout."""

    def __init__(self, host: str | None, command: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(host, command, None, stderr=f"timed out after {timeout:.0f}s")


# =============================================================================
# Cluster
# =============================================================================


class ClusterStateError(KubepoolError):
    """The requested operation is not valid in the cluster's current state."""


class NodeNotFoundError(ClusterStateError):
    """The node does not exist or does not belong to the cluster."""

    def __init__(self, cluster_id: str, node_id: str) -> None:
        self.cluster_id = cluster_id
        self.node_id = node_id
        super().__init__(f"Node {node_id} not found in cluster {cluster_id}")


class EtcdError(KubepoolError):
    """Base class for etcd maintenance failures."""


class EtcdBackupError(EtcdError):
    """Snapshot creation or verification failed."""


class EtcdRestoreError(EtcdError):
    """Snapshot restore did not bring etcd back to a healthy state."""


class UpgradeError(EtcdError):
    """The cluster was not fully healthy after an upgrade."""
