"""kubepool - Kubernetes clusters on pooled Contabo instances.

Example:

    from kubepool import api

    created = await api.create_cluster(pod_cidr="10.244.0.0/16")
    await api.add_node(created.data, roles=["worker"])
    health = await api.check_etcd_health(created.data)
"""

# Operation facade
from kubepool import api

# Configuration
from kubepool.config import Settings, load_settings

# Errors
from kubepool.core.exceptions import KubepoolError

# Kubernetes administration
from kubepool.kubernetes import (
    AbstractKubernetesAdministrator,
    EtcdHealthStatus,
    InitClusterOptions,
    create_kubernetes_administrator,
)

# Logging
from kubepool.observability.logging import LogConfig

# Providers
from kubepool.providers import Contabo

# Node provisioning
from kubepool.provisioners import Node, NodeLabel, create_node_provisioner

__version__ = "0.1.0"

__all__ = [
    "api",
    # Configuration
    "Settings",
    "LogConfig",
    "load_settings",
    # Errors
    "KubepoolError",
    # Kubernetes
    "AbstractKubernetesAdministrator",
    "EtcdHealthStatus",
    "InitClusterOptions",
    "create_kubernetes_administrator",
    # Provisioning
    "Contabo",
    "Node",
    "NodeLabel",
    "create_node_provisioner",
    # Version
    "__version__",
]
