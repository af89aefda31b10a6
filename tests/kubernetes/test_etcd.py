from __future__ import annotations

from datetime import UTC, datetime

import pytest

from kubepool.core.exceptions import EtcdBackupError
from kubepool.kubernetes.etcd import (
    EtcdOptions,
    default_backup_path,
    etcdctl,
    parse_health,
    parse_snapshot_status,
)
from tests.conftest import MEMBER_TABLE, SNAPSHOT_STATUS, healthy_lines

pytestmark = [pytest.mark.unit]

UNHEALTHY = (
    "https://198.51.100.3:2379 is unhealthy: failed to commit proposal: context deadline exceeded"
)
ERROR_TRAILER = "Error: unhealthy cluster"


class TestParseHealth:
    def test_all_endpoints_healthy(self):
        status = parse_health(healthy_lines("198.51.100.1"), MEMBER_TABLE, "")
        assert status.healthy
        assert (status.healthy_endpoints, status.total_endpoints) == (1, 1)
        assert status.members == 1
        assert not status.has_alarms

    def test_one_unhealthy_endpoint(self):
        health = healthy_lines("198.51.100.1", "198.51.100.2") + "\n" + UNHEALTHY
        status = parse_health(health, MEMBER_TABLE, "")
        assert not status.healthy
        assert status.healthy_endpoints == 2
        assert status.total_endpoints == 3

    def test_error_trailer_is_not_an_endpoint(self):
        health = healthy_lines("198.51.100.1") + "\n" + UNHEALTHY + "\n" + ERROR_TRAILER
        status = parse_health(health, MEMBER_TABLE, "")
        assert not status.healthy
        assert (status.healthy_endpoints, status.total_endpoints) == (1, 2)

    def test_unrecognized_output_is_unhealthy(self):
        status = parse_health("context deadline exceeded", MEMBER_TABLE, "")
        assert not status.healthy
        assert status.total_endpoints == 0

    def test_empty_output_is_unhealthy(self):
        status = parse_health("", "", "")
        assert not status.healthy
        assert status.total_endpoints == 0
        assert status.members == 0

    def test_blank_lines_ignored(self):
        status = parse_health("\n" + healthy_lines("198.51.100.1") + "\n\n", MEMBER_TABLE, "")
        assert status.total_endpoints == 1
        assert status.healthy

    def test_alarms(self):
        assert parse_health("", "", "memberID:8e9e05c52164694d alarm:NOSPACE").has_alarms
        assert not parse_health("", "", "memberID:0 alarm:NONE").has_alarms

    def test_raw_outputs_kept(self):
        status = parse_health("h", "m", "a")
        assert status.raw_outputs == {"health": "h", "members": "m", "alarms": "a"}


class TestParseSnapshotStatus:
    def test_valid(self):
        status = parse_snapshot_status(SNAPSHOT_STATUS, "/var/backups/etcd/s.db")
        assert status.total_keys == 1042
        assert status.total_size == 4526080
        assert status.revision == 2981

    @pytest.mark.parametrize(
        "output",
        [
            "",
            "Error: snapshot file has wrong size",
            '{"hash": 1, "revision": 2}',
        ],
    )
    def test_unparseable(self, output: str):
        with pytest.raises(EtcdBackupError, match="failed verification"):
            parse_snapshot_status(output, "/tmp/s.db")

    def test_empty_snapshot(self):
        with pytest.raises(EtcdBackupError, match="is empty"):
            parse_snapshot_status('{"hash":0,"revision":0,"totalKey":0,"totalSize":0}', "/tmp/s.db")


def test_etcdctl_uses_kubeadm_certificates():
    cmd = etcdctl("endpoint health")
    assert cmd.startswith("ETCDCTL_API=3 etcdctl --endpoints=https://127.0.0.1:2379 ")
    assert "--cacert=/etc/kubernetes/pki/etcd/ca.crt" in cmd
    assert "--cert=/etc/kubernetes/pki/etcd/server.crt" in cmd
    assert "--key=/etc/kubernetes/pki/etcd/server.key" in cmd
    assert cmd.endswith(" endpoint health")


def test_default_backup_path():
    now = datetime(2026, 10, 19, 8, 30, 5, tzinfo=UTC)
    assert default_backup_path(now) == "/var/backups/etcd/etcd-snapshot-20261019T083005Z.db"


def test_etcd_extra_args():
    args = EtcdOptions().extra_args()
    assert args["quota-backend-bytes"] == str(8 * 1024**3)
    assert args["auto-compaction-retention"] == "1"
