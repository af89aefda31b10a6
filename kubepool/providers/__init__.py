"""Cloud providers for kubepool."""

from kubepool.providers.contabo import Contabo

__all__ = ["Contabo"]
