from __future__ import annotations

import pytest

from kubepool.config import CheckSettings, Settings
from kubepool.kubernetes.v1_32 import KubernetesAdministratorV1_32
from kubepool.provisioners.contabo import ContaboNodeProvisioner
from tests.fakes import TEST_CONFIG, FakeContaboClient, FakeExecutor, make_instance

SSH_PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIKubepoolTestKey test@kubepool"

FAST_CHECKS = CheckSettings(timeout=1.0, retries=0, interval=0.0, max_provision_attempts=3)

KUBECONFIG = """apiVersion: v1
kind: Config
clusters:
- cluster:
    server: https://198.51.100.1:6443
  name: kubernetes
"""

CERT_KEY = "4f1c9a0b7d2e6c8a1b3d5f7e9a0c2e4f6a8b0d2c4e6f8a0b2d4c6e8f0a2b4c6d"

JOIN = "kubeadm join 198.51.100.1:6443 --token abcdef.0123456789abcdef --discovery-token-ca-cert-hash sha256:9f86d081"

SNAPSHOT_STATUS = '{"hash":3758452183,"revision":2981,"totalKey":1042,"totalSize":4526080}'

MEMBER_TABLE = """+------------------+---------+---------+----------------------------+----------------------------+------------+
|        ID        | STATUS  |  NAME   |         PEER ADDRS         |        CLIENT ADDRS        | IS LEARNER |
+------------------+---------+---------+----------------------------+----------------------------+------------+
| 8e9e05c52164694d | started | vmi1001 | https://198.51.100.1:2380  | https://198.51.100.1:2379  |      false |
+------------------+---------+---------+----------------------------+----------------------------+------------+"""


def healthy_lines(*ips: str) -> str:
    return "\n".join(
        f"https://{ip}:2379 is healthy: successfully committed proposal: took = 9.18ms" for ip in ips
    )


@pytest.fixture
def pool() -> FakeContaboClient:
    return FakeContaboClient(*(make_instance(1000 + n) for n in range(1, 6)))


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def provisioner(pool: FakeContaboClient, executor: FakeExecutor) -> ContaboNodeProvisioner:
    return ContaboNodeProvisioner(pool, executor, FAST_CHECKS)  # type: ignore[arg-type]


@pytest.fixture
def cluster_executor() -> FakeExecutor:
    """Executor answering kubeadm and etcdctl like a healthy one-member cluster."""
    ex = FakeExecutor()
    ex.on(r"kubeadm init phase upload-certs", f"[upload-certs] Using certificate key:\n{CERT_KEY}\n")
    ex.on(r"--print-join-command$", JOIN)
    ex.on(r"--print-join-command --certificate-key", f"{JOIN} --control-plane --certificate-key {CERT_KEY}")
    ex.on(r"cat /etc/kubernetes/admin\.conf", KUBECONFIG)
    ex.on(r"endpoint health", healthy_lines("198.51.100.1"))
    ex.on(r"member list", MEMBER_TABLE)
    ex.on(r"alarm list", "")
    ex.on(r"snapshot status", SNAPSHOT_STATUS)
    ex.on(r"etcdctl version", "3.5.16")
    return ex


@pytest.fixture
def admin(pool: FakeContaboClient, cluster_executor: FakeExecutor) -> KubernetesAdministratorV1_32:
    provisioner = ContaboNodeProvisioner(pool, cluster_executor, FAST_CHECKS)  # type: ignore[arg-type]
    return KubernetesAdministratorV1_32(
        provisioner,
        cluster_executor,
        settings=Settings(contabo=TEST_CONFIG, checks=FAST_CHECKS),
        ssh_public_key=SSH_PUBLIC_KEY,
    )
