"""kubepool command line.

    kubepool create [--pod-cidr CIDR] [--service-cidr CIDR] [--cni calico|flannel]
    kubepool add-node CLUSTER [--role ROLE ...]
    kubepool remove-node CLUSTER NODE [--handoff]
    kubepool delete CLUSTER
    kubepool nodes CLUSTER [--role ROLE]
    kubepool kubeconfig CLUSTER
    kubepool upgrade CLUSTER [--version VERSION]
    kubepool etcd health|backup|restore CLUSTER [...]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from kubepool import api
from kubepool.config import load_settings
from kubepool.core.exceptions import ConfigurationError
from kubepool.kubernetes.etcd import EtcdHealthStatus
from kubepool.observability.logging import setup_logging, teardown_logging
from kubepool.provisioners.base import Node
from kubepool.provisioners.labels import NODE_ROLES

console = Console()
err_console = Console(stderr=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kubepool", description="Kubernetes clusters on pooled Contabo instances")
    parser.add_argument("--project-dir", type=Path, default=None, help="Directory holding kubepool.toml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Bootstrap a new cluster")
    create.add_argument("--cluster-id", default=None)
    create.add_argument("--pod-cidr", default="10.244.0.0/16")
    create.add_argument("--service-cidr", default="10.96.0.0/12")
    create.add_argument("--cni", choices=["calico", "flannel"], default=None)

    add = sub.add_parser("add-node", help="Provision a node and join it")
    add.add_argument("cluster_id")
    add.add_argument("--role", dest="roles", action="append", choices=NODE_ROLES)

    remove = sub.add_parser("remove-node", help="Drain, remove and release a node")
    remove.add_argument("cluster_id")
    remove.add_argument("node_id")
    remove.add_argument("--handoff", action="store_true", help="Allow removing the API endpoint node")

    delete = sub.add_parser("delete", help="Reset and release every node")
    delete.add_argument("cluster_id")

    nodes = sub.add_parser("nodes", help="List cluster nodes")
    nodes.add_argument("cluster_id")
    nodes.add_argument("--role", choices=NODE_ROLES, default=None)

    kubeconfig = sub.add_parser("kubeconfig", help="Print the admin kubeconfig")
    kubeconfig.add_argument("cluster_id")

    upgrade = sub.add_parser("upgrade", help="Back up and roll etcd on every control plane")
    upgrade.add_argument("cluster_id")
    upgrade.add_argument("--version", dest="target_version", default=None)

    etcd = sub.add_parser("etcd", help="etcd maintenance")
    etcd_sub = etcd.add_subparsers(dest="etcd_command", required=True)
    health = etcd_sub.add_parser("health", help="Check etcd health")
    health.add_argument("cluster_id")
    backup = etcd_sub.add_parser("backup", help="Snapshot etcd")
    backup.add_argument("cluster_id")
    backup.add_argument("--path", dest="backup_path", default=None)
    restore = etcd_sub.add_parser("restore", help="Restore etcd from a snapshot")
    restore.add_argument("cluster_id")
    restore.add_argument("backup_path")

    return parser


async def dispatch(args: argparse.Namespace, **session: Any) -> api.Result[Any]:
    match args.command:
        case "create":
            return await api.create_cluster(
                cluster_id=args.cluster_id,
                pod_cidr=args.pod_cidr,
                service_cidr=args.service_cidr,
                cni=args.cni,
                **session,
            )
        case "add-node":
            return await api.add_node(args.cluster_id, args.roles or ["worker"], **session)
        case "remove-node":
            return await api.remove_node(args.cluster_id, args.node_id, handoff=args.handoff, **session)
        case "delete":
            return await api.delete_cluster(args.cluster_id, **session)
        case "nodes":
            return await api.list_nodes(args.cluster_id, args.role, **session)
        case "kubeconfig":
            return await api.get_kubeconfig(args.cluster_id, **session)
        case "upgrade":
            return await api.upgrade_cluster(args.cluster_id, args.target_version, **session)
        case "etcd":
            match args.etcd_command:
                case "health":
                    return await api.check_etcd_health(args.cluster_id, **session)
                case "backup":
                    return await api.backup_etcd(args.cluster_id, args.backup_path, **session)
                case "restore":
                    return await api.restore_etcd(args.cluster_id, args.backup_path, **session)
    raise ValueError(f"Unknown command: {args.command}")


def render(result: api.Result[Any]) -> None:
    if not result.success:
        err_console.print(f"[red]✗[/red] {result.message}")
        return

    match result.data:
        case [Node(), *_] as nodes:
            table = Table(show_edge=False, box=None, padding=(0, 2))
            for column in ("ID", "NAME", "PUBLIC IP", "PRIVATE IP", "ROLES", "ENDPOINT"):
                table.add_column(column, style="bright_black" if column == "ID" else None)
            for node in nodes:
                table.add_row(
                    node.id,
                    node.name,
                    node.public_ip,
                    node.private_ip or "-",
                    ",".join(node.roles) or "-",
                    "yes" if node.endpoint else "",
                )
            console.print(table)
        case EtcdHealthStatus(raw_outputs=raw):
            for section in ("health", "members", "alarms"):
                console.rule(section, style="bright_black")
                console.print(raw.get(section, "").strip() or "(no output)", highlight=False)
        case str() as text if text.lstrip().startswith("apiVersion"):
            console.print(text, highlight=False, markup=False)
            return

    console.print(f"[green]✓[/green] {result.message}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(project_dir=args.project_dir)
    except ConfigurationError as e:
        err_console.print(f"[red]✗[/red] {e}")
        return 2

    log_config = settings.logging
    if args.verbose:
        log_config = replace(log_config, level="DEBUG")
    handler_ids = setup_logging(log_config)
    try:
        result = asyncio.run(dispatch(args, settings=settings))
    finally:
        teardown_logging(handler_ids)

    render(result)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
