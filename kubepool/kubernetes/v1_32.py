"""Kubernetes 1.32 administrator.

See https://kubernetes.io/docs/setup/production-environment/tools/kubeadm/install-kubeadm/
"""

from __future__ import annotations

from typing import ClassVar

from kubepool.kubernetes import ops
from kubepool.kubernetes.base import AbstractKubernetesAdministrator
from kubepool.provisioners.base import Node

KUBERNETES_PACKAGES = ("kubelet", "kubeadm", "kubectl")


def containerd() -> ops.Op:
    """containerd from the Docker apt repository, using the systemd cgroup driver."""
    return [
        ops.apt_repo(
            "docker",
            "https://download.docker.com/linux/ubuntu/gpg",
            "https://download.docker.com/linux/ubuntu $(. /etc/os-release && echo $VERSION_CODENAME) stable",
        ),
        ops.apt("containerd.io"),
        "mkdir -p /etc/containerd",
        "containerd config default > /etc/containerd/config.toml",
        "sed -i 's/SystemdCgroup = false/SystemdCgroup = true/' /etc/containerd/config.toml",
        "systemctl restart containerd",
        *ops.systemd("containerd", action="enable"),
    ]


class KubernetesAdministratorV1_32(AbstractKubernetesAdministrator):
    version: ClassVar[str] = "1.32"
    kubernetes_version: ClassVar[str] = "v1.32.0"

    def install_script(self) -> str:
        repo = f"https://pkgs.k8s.io/core:/stable:/v{self.version}/deb/"
        return ops.script(
            ops.apt("apt-transport-https", "ca-certificates", "curl", "gpg", "etcd-client"),
            "if ! command -v containerd >/dev/null; then",
            containerd(),
            "fi",
            ops.apt_repo("kubernetes", f"{repo}Release.key", f"{repo} /"),
            ops.apt(*KUBERNETES_PACKAGES),
            ops.hold(*KUBERNETES_PACKAGES),
            ops.kernel_modules("overlay", "br_netfilter"),
            ops.sysctl({
                "net.bridge.bridge-nf-call-iptables": 1,
                "net.bridge.bridge-nf-call-ip6tables": 1,
                "net.ipv4.ip_forward": 1,
            }),
            ops.systemd("kubelet", action="enable"),
        )

    async def install_dependencies(self, node: Node) -> None:
        self._log.info("Installing Kubernetes {v} on {node_id}", v=self.version, node_id=node.id)
        await self.executor.ssh(node.public_ip, "bash -s", input=self.install_script())

    def restart_etcd_command(self) -> str:
        # etcd is a kubeadm static pod; kubelet recreates the container once it is stopped.
        return "crictl ps -q --name '^etcd$' | xargs -r crictl stop"
