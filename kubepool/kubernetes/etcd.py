"""etcd commands and output parsing.

etcdctl runs on a control-plane node against the local kubeadm-managed
member, authenticated with the kubeadm etcd certificates. Parsing is
line based and never raises on odd output: unparseable means unhealthy.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kubepool.core.exceptions import EtcdBackupError

ETCD_PKI = "/etc/kubernetes/pki/etcd"
BACKUP_DIR = "/var/backups/etcd"
NO_ALARMS = "memberID:0 alarm:NONE"

_ENDPOINT_HEALTH = re.compile(r"^\s*(\S+) is (healthy|unhealthy)\b")


@dataclass(frozen=True, slots=True)
class EtcdOptions:
    """Local etcd settings rendered into the kubeadm ClusterConfiguration.

    Attributes:
        data_dir: etcd data directory on control-plane nodes.
        compaction_retention: Auto-compaction retention in hours.
        quota_backend_bytes: Backend quota (8 GiB, the recommended maximum).
        max_request_bytes: Maximum client request size.
        metrics: etcd metrics level.
    """

    data_dir: str = "/var/lib/etcd"
    compaction_retention: int = 1
    quota_backend_bytes: int = 8 * 1024**3
    max_request_bytes: int = 1572864
    metrics: str = "basic"

    def extra_args(self) -> dict[str, str]:
        return {
            "auto-compaction-retention": str(self.compaction_retention),
            "quota-backend-bytes": str(self.quota_backend_bytes),
            "max-request-bytes": str(self.max_request_bytes),
            "metrics": self.metrics,
        }


@dataclass(frozen=True, slots=True)
class EtcdHealthStatus:
    healthy: bool
    healthy_endpoints: int
    total_endpoints: int
    members: int
    has_alarms: bool
    raw_outputs: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SnapshotStatus:
    hash: int
    revision: int
    total_keys: int
    total_size: int


def etcdctl(args: str, *, endpoints: str = "https://127.0.0.1:2379") -> str:
    """Build an authenticated etcdctl command line."""
    return (
        f"ETCDCTL_API=3 etcdctl --endpoints={endpoints} "
        f"--cacert={ETCD_PKI}/ca.crt "
        f"--cert={ETCD_PKI}/server.crt "
        f"--key={ETCD_PKI}/server.key "
        f"{args}"
    )


def health_command() -> str:
    return etcdctl("endpoint health --cluster")


def member_list_command() -> str:
    return etcdctl("member list -w table")


def alarm_list_command() -> str:
    return etcdctl("alarm list")


def default_backup_path(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%SZ")
    return f"{BACKUP_DIR}/etcd-snapshot-{stamp}.db"


def _lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if line.strip()]


def parse_health(health: str, members: str, alarms: str) -> EtcdHealthStatus:
    """Build a health record from the three diagnostic outputs.

    Each ``<url> is healthy|unhealthy`` line of ``endpoint health`` is one
    endpoint; other lines (the "Error: unhealthy cluster" trailer, warnings)
    are ignored. The cluster is healthy only when there is at least one
    endpoint and all of them report healthy. Members are the ``started``
    rows of the member table. Any alarm output other than the empty-alarm
    marker counts as an alarm.
    """
    verdicts = [m.group(2) for m in map(_ENDPOINT_HEALTH.match, _lines(health)) if m]
    healthy_count = verdicts.count("healthy")
    member_count = sum("started" in line for line in _lines(members))
    alarm_text = alarms.strip()

    return EtcdHealthStatus(
        healthy=bool(verdicts) and healthy_count == len(verdicts),
        healthy_endpoints=healthy_count,
        total_endpoints=len(verdicts),
        members=member_count,
        has_alarms=bool(alarm_text) and NO_ALARMS not in alarm_text,
        raw_outputs={"health": health, "members": members, "alarms": alarms},
    )


def parse_snapshot_status(output: str, path: str) -> SnapshotStatus:
    """Parse ``etcdctl snapshot status -w json`` output.

    Raises:
        EtcdBackupError: The output is not a snapshot status or the
            snapshot is empty.
    """
    try:
        data = json.loads(output)
        status = SnapshotStatus(
            hash=int(data["hash"]),
            revision=int(data["revision"]),
            total_keys=int(data["totalKey"]),
            total_size=int(data["totalSize"]),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise EtcdBackupError(f"Snapshot {path} failed verification: {output.strip()!r}") from e

    if status.total_size <= 0:
        raise EtcdBackupError(f"Snapshot {path} is empty")
    return status
