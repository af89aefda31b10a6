"""Provisioner strategy table keyed by provider name."""

from __future__ import annotations

from collections.abc import Callable

from kubepool.config import Settings
from kubepool.core.exceptions import ConfigurationError
from kubepool.infra.ssh import RemoteExecutor
from kubepool.provisioners.base import AbstractNodeProvisioner


def _contabo(settings: Settings, executor: RemoteExecutor) -> AbstractNodeProvisioner:
    from kubepool.providers.contabo.client import ContaboClient
    from kubepool.provisioners.contabo import ContaboNodeProvisioner

    return ContaboNodeProvisioner(ContaboClient(settings.contabo), executor, settings.checks)


PROVISIONERS: dict[str, Callable[[Settings, RemoteExecutor], AbstractNodeProvisioner]] = {
    "contabo": _contabo,
}


def create_node_provisioner(
    provider: str, settings: Settings, executor: RemoteExecutor,
) -> AbstractNodeProvisioner:
    """Build the node provisioner registered for ``provider``.

    Raises:
        ConfigurationError: No provisioner is registered under that name.
    """
    factory = PROVISIONERS.get(provider)
    if factory is None:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. Valid: {', '.join(PROVISIONERS)}"
        )
    return factory(settings, executor)
