"""Administrator strategy table keyed by Kubernetes minor version."""

from __future__ import annotations

from kubepool.config import Settings
from kubepool.core.exceptions import UnsupportedVersionError
from kubepool.infra.ssh import RemoteExecutor
from kubepool.kubernetes.base import AbstractKubernetesAdministrator
from kubepool.kubernetes.v1_32 import KubernetesAdministratorV1_32
from kubepool.provisioners.base import NodeProvisioner

ADMINISTRATORS: dict[str, type[AbstractKubernetesAdministrator]] = {
    KubernetesAdministratorV1_32.version: KubernetesAdministratorV1_32,
}


def administrator_class(version: str) -> type[AbstractKubernetesAdministrator]:
    """Resolve the administrator for a minor version ("1.32" or "v1.32").

    Raises:
        UnsupportedVersionError: No administrator is registered for it.
    """
    cls = ADMINISTRATORS.get(version.removeprefix("v"))
    if cls is None:
        raise UnsupportedVersionError(version, tuple(ADMINISTRATORS))
    return cls


def create_kubernetes_administrator(
    version: str,
    provisioner: NodeProvisioner,
    executor: RemoteExecutor,
    *,
    settings: Settings | None = None,
    ssh_public_key: str | None = None,
) -> AbstractKubernetesAdministrator:
    return administrator_class(version)(
        provisioner, executor, settings=settings, ssh_public_key=ssh_public_key,
    )
