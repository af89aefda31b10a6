"""Declarative shell operations for node setup.

Each operation is a function returning an Op (string or callable);
``script()`` composes them into one bash script run over SSH.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

# =============================================================================
# Core Types
# =============================================================================

type Op = str | Callable[[], str] | list[Op]
"""Operation type: either a literal string or a function returning a string."""

HEADER: Final = """#!/bin/bash
set -euo pipefail
export DEBIAN_FRONTEND=noninteractive
"""

KUBERNETES_STATE: Final = (
    "/etc/kubernetes",
    "/var/lib/kubelet",
    "/var/lib/etcd",
    "/etc/cni/net.d",
    "$HOME/.kube/config",
)

ADMIN_KUBECONFIG: Final = "/etc/kubernetes/admin.conf"


def resolve(op: Op) -> str:
    """Resolve an operation to its string representation."""
    match op:
        case str(op):
            return op
        case list(op):
            return "\n".join(resolve(o) for o in op)
        case None:
            return ""
        case _:
            return op()


def script(*ops: Op | None) -> str:
    """Compose operations into a complete bash script."""
    return HEADER + "\n".join(resolve(op) for op in ops if op is not None) + "\n"


# =============================================================================
# Package Operations
# =============================================================================


def apt(*packages: str, update: bool = True) -> Op:
    """Install APT packages.

    Waits for dpkg lock to be released (fresh instances run unattended-upgrades).

    Example:
        >>> apt("curl", "gpg")()
        'while fuser /var/lib/dpkg/lock-frontend >/dev/null 2>&1; do sleep 5; done\\napt-get update -qq\\napt-get install -y -qq curl gpg'
    """
    if not packages:
        return lambda: "# No APT packages to install"

    def generate() -> str:
        lines = ["while fuser /var/lib/dpkg/lock-frontend >/dev/null 2>&1; do sleep 5; done"]
        if update:
            lines.append("apt-get update -qq")
        lines.append(f"apt-get install -y -qq {' '.join(packages)}")
        return "\n".join(lines)

    return generate


def apt_repo(name: str, key_url: str, source: str) -> Op:
    """Add a signed APT repository.

    ``source`` is the ``deb`` line without the ``signed-by`` option.
    """
    keyring = f"/etc/apt/keyrings/{name}.gpg"

    def generate() -> str:
        return "\n".join([
            "install -m 0755 -d /etc/apt/keyrings",
            f"rm -f {keyring}",
            f"curl -fsSL {key_url} | gpg --dearmor --batch --no-tty -o {keyring}",
            f"chmod a+r {keyring}",
            f"echo 'deb [signed-by={keyring}] {source}' > /etc/apt/sources.list.d/{name}.list",
        ])

    return generate


def hold(*packages: str) -> Op:
    return lambda: f"apt-mark hold {' '.join(packages)}"


# =============================================================================
# File Operations
# =============================================================================


def file(path: str, content: str, mode: str | None = None) -> Op:
    """Write content to a file using heredoc.

    Example:
        >>> file("/etc/modules-load.d/k8s.conf", "overlay")()
        "cat > /etc/modules-load.d/k8s.conf << 'EOF'\\noverlay\\nEOF"
    """

    def generate() -> str:
        lines = [f"cat > {path} << 'EOF'", content, "EOF"]
        if mode:
            lines.append(f"chmod {mode} {path}")
        return "\n".join(lines)

    return generate


# =============================================================================
# System Operations
# =============================================================================


def kernel_modules(*modules: str) -> Op:
    """Load kernel modules now and on every boot."""
    return [
        file("/etc/modules-load.d/k8s.conf", "\n".join(modules)),
        *(f"modprobe {m}" for m in modules),
    ]


def sysctl(settings: dict[str, str | int]) -> Op:
    """Persist sysctl settings and apply them."""
    content = "\n".join(f"{k} = {v}" for k, v in settings.items())
    return [file("/etc/sysctl.d/k8s.conf", content), "sysctl --system >/dev/null"]


def systemd(*units: str, action: str = "enable --now") -> Op:
    return [f"systemctl {action} {unit}" for unit in units]


# =============================================================================
# Kubernetes Operations
# =============================================================================


def reset_kubernetes() -> Op:
    """Clear kubeadm state. Tolerates a node that has nothing to reset."""
    return [
        "kubeadm reset -f >/dev/null 2>&1 || true",
        f"rm -rf {' '.join(KUBERNETES_STATE)}",
    ]


def install_kubeconfig() -> Op:
    return [
        "mkdir -p $HOME/.kube",
        f"cp -f {ADMIN_KUBECONFIG} $HOME/.kube/config",
        "chown $(id -u):$(id -g) $HOME/.kube/config",
    ]


def kubectl(args: str) -> str:
    return f"kubectl --kubeconfig={ADMIN_KUBECONFIG} {args}"
