"""Kubernetes cluster administration over SSH."""

from kubepool.kubernetes.base import (
    AbstractKubernetesAdministrator,
    InitClusterOptions,
    KubernetesAdministrator,
)
from kubepool.kubernetes.etcd import EtcdHealthStatus, EtcdOptions, SnapshotStatus
from kubepool.kubernetes.registry import administrator_class, create_kubernetes_administrator
from kubepool.kubernetes.v1_32 import KubernetesAdministratorV1_32

__all__ = [
    "AbstractKubernetesAdministrator",
    "EtcdHealthStatus",
    "EtcdOptions",
    "InitClusterOptions",
    "KubernetesAdministrator",
    "KubernetesAdministratorV1_32",
    "SnapshotStatus",
    "administrator_class",
    "create_kubernetes_administrator",
]
