"""Infrastructure layer: HTTP client, SSH executor, local shell."""

from kubepool.infra.http import BearerAuth, HttpClient, HttpError, OAuth2PasswordAuth
from kubepool.infra.shell import run_local, squash
from kubepool.infra.ssh import RemoteExecutor, SSHExecutor

__all__ = [
    "BearerAuth",
    "HttpClient",
    "HttpError",
    "OAuth2PasswordAuth",
    "RemoteExecutor",
    "SSHExecutor",
    "run_local",
    "squash",
]
