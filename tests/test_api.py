from __future__ import annotations

import pytest

from kubepool import api
from kubepool.config import Settings
from kubepool.kubernetes.v1_32 import KubernetesAdministratorV1_32
from kubepool.observability.logging import LogConfig
from kubepool.provisioners.contabo import ContaboNodeProvisioner
from kubepool.provisioners.registry import PROVISIONERS
from tests.conftest import FAST_CHECKS
from tests.fakes import TEST_CONFIG, FakeContaboClient

pytestmark = [pytest.mark.unit]

SETTINGS = Settings(contabo=TEST_CONFIG, checks=FAST_CHECKS, logging=LogConfig(console=False, file=""))


class TestOperations:
    @pytest.mark.asyncio
    async def test_success_envelope(self, admin: KubernetesAdministratorV1_32):
        result = await api.create_cluster(cluster_id="c1", admin=admin)

        assert result.success
        assert result.data == "c1"
        assert result.message == "Cluster c1 created"

    @pytest.mark.asyncio
    async def test_failure_envelope(self, admin: KubernetesAdministratorV1_32):
        result = await api.add_node("missing", ["worker"], admin=admin)

        assert not result.success
        assert result.data is None
        assert result.message == "No control-plane node found in cluster missing"

    @pytest.mark.asyncio
    async def test_missing_certificate_key_is_a_failure(self, admin: KubernetesAdministratorV1_32):
        await api.create_cluster(cluster_id="c1", admin=admin)
        admin.executor.on(r"kubeadm init phase upload-certs", "")  # type: ignore[attr-defined]

        result = await api.add_node("c1", ["control-plane"], admin=admin)

        assert not result.success
        assert "no certificate key" in result.message

    @pytest.mark.asyncio
    async def test_existing_cluster_id_is_a_failure(self, admin: KubernetesAdministratorV1_32):
        await api.create_cluster(cluster_id="c1", admin=admin)

        result = await api.create_cluster(cluster_id="c1", admin=admin)

        assert not result.success
        assert result.message == "Cluster c1 already exists"

    @pytest.mark.asyncio
    async def test_node_lifecycle(self, admin: KubernetesAdministratorV1_32):
        await api.create_cluster(cluster_id="c1", admin=admin)
        added = await api.add_node("c1", ["worker"], admin=admin)
        assert added.success
        assert added.message.endswith("joined as worker")

        listed = await api.list_nodes("c1", admin=admin)
        assert listed.message == "2 node(s)"

        removed = await api.remove_node("c1", added.data.id, admin=admin)
        assert removed.success

        refused = await api.remove_node("c1", "1001", handoff=True, admin=admin)
        assert not refused.success
        assert "only control-plane node" in refused.message

    @pytest.mark.asyncio
    async def test_etcd_operations(self, admin: KubernetesAdministratorV1_32):
        await api.create_cluster(cluster_id="c1", admin=admin)

        health = await api.check_etcd_health("c1", admin=admin)
        assert health.message == "etcd healthy: 1/1 endpoints, 1 members"

        backup = await api.backup_etcd("c1", "/root/s.db", admin=admin)
        assert backup.message == "etcd backed up to /root/s.db"

        upgraded = await api.upgrade_cluster("c1", "1.99", admin=admin)
        assert not upgraded.success
        assert "Unsupported Kubernetes version: 1.99" in upgraded.message

    @pytest.mark.asyncio
    async def test_delete_reports_failures(self, admin: KubernetesAdministratorV1_32):
        await api.create_cluster(cluster_id="c1", admin=admin)
        admin.executor.fail("^bash -s$")  # type: ignore[attr-defined]

        result = await api.delete_cluster("c1", admin=admin)

        assert result.success
        assert result.message == "Cluster deleted (1 cleanup failures, see logs)"


class TestSession:
    @pytest.mark.asyncio
    async def test_builds_and_closes_provisioner(self, monkeypatch: pytest.MonkeyPatch):
        pool = FakeContaboClient()
        monkeypatch.setitem(
            PROVISIONERS,
            "contabo",
            lambda settings, executor: ContaboNodeProvisioner(pool, executor, settings.checks),  # type: ignore[arg-type]
        )

        result = await api.list_nodes("c1", settings=SETTINGS)

        assert result.success
        assert result.data == []
        assert pool.closed

    @pytest.mark.asyncio
    async def test_check_interval_spaces_ssh_retries(self, monkeypatch: pytest.MonkeyPatch):
        executors = []

        def build(settings, executor):
            executors.append(executor)
            return ContaboNodeProvisioner(FakeContaboClient(), executor, settings.checks)  # type: ignore[arg-type]

        monkeypatch.setitem(PROVISIONERS, "contabo", build)

        await api.list_nodes("c1", settings=SETTINGS)

        assert executors[0].retry_delay == FAST_CHECKS.interval

    @pytest.mark.asyncio
    async def test_configuration_errors_become_results(self, monkeypatch: pytest.MonkeyPatch):
        for var in ("CNTB_CLIENT_ID", "CNTB_CLIENT_SECRET", "CNTB_USER", "CNTB_PASSWORD"):
            monkeypatch.delenv(var, raising=False)

        result = await api.list_nodes("c1", settings=SETTINGS)

        assert not result.success
        assert "Contabo credentials missing" in result.message
