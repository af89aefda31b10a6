"""Display-name label codec.

Contabo has no lock or compare-and-swap primitive, so an instance's
``displayName`` is the only channel for recording who owns it. The label
is versioned and made of space-separated ``key=value`` fields:

    ""                                                   unclaimed
    "kp1 cluster=c0ffee claim=5f1d roles=control-plane endpoint=1"
    "kp1 status=cancelled"
    "kp1 peer=203.0.113.9 error=ssh_ping_peer_public"

``error`` is always the last field and may contain spaces. Unversioned
names written by older tooling (``"<instanceId> cluster=<id>"``,
``"<instanceId> error=<message>"``) decode the same way.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

type NodeRole = Literal["control-plane", "etcd", "worker"]

VERSION = "kp1"
MAX_DISPLAY_NAME = 255
NODE_ROLES: tuple[NodeRole, ...] = ("control-plane", "etcd", "worker")

_ERROR = re.compile(r"(?:^|\s)error=(.*)$", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class NodeLabel:
    """Decoded display name.

    Attributes:
        cluster_id: Owning cluster, None when not claimed by any cluster.
        claim: Token written by the claimant; read back to detect lost races.
        roles: Kubernetes roles the node was provisioned for.
        endpoint: The node serves the cluster API endpoint.
        status: Out-of-pool marker such as ``cancelled``. ``foreign`` marks
            a name kubepool did not write.
        peer: Peer address involved in a failed check.
        error: Failure reason recorded for operators.
    """

    cluster_id: str | None = None
    claim: str | None = None
    roles: tuple[NodeRole, ...] = ()
    endpoint: bool = False
    status: str | None = None
    peer: str | None = None
    error: str | None = None

    @property
    def unclaimed(self) -> bool:
        return (
            self.cluster_id is None
            and self.status is None
            and self.error is None
        )

    def belongs_to(self, cluster_id: str) -> bool:
        return self.cluster_id == cluster_id and self.error is None


def _clean(value: str) -> str:
    return _WHITESPACE.sub("_", value.strip())


def encode_display_name(label: NodeLabel) -> str:
    """Render a label as a display name. The unclaimed label encodes to ``""``."""
    if label.unclaimed and not label.peer:
        return ""

    parts = [VERSION]
    if label.cluster_id is not None:
        parts.append(f"cluster={_clean(label.cluster_id)}")
    if label.claim is not None:
        parts.append(f"claim={_clean(label.claim)}")
    if label.roles:
        parts.append(f"roles={'+'.join(label.roles)}")
    if label.endpoint:
        parts.append("endpoint=1")
    if label.status is not None:
        parts.append(f"status={_clean(label.status)}")
    if label.peer is not None:
        parts.append(f"peer={_clean(label.peer)}")

    name = " ".join(parts)
    if label.error is not None:
        reason = " ".join(label.error.split())
        room = MAX_DISPLAY_NAME - len(name) - len(" error=")
        name = f"{name} error={reason[:max(room, 0)]}"
    return name[:MAX_DISPLAY_NAME]


def decode_display_name(display_name: str) -> NodeLabel:
    """Parse a display name into a label. Never raises."""
    text = display_name.strip()
    if not text:
        return NodeLabel()

    error: str | None = None
    match = _ERROR.search(text)
    if match:
        error = match.group(1).strip()
        text = text[: match.start()]

    fields: dict[str, str] = {}
    for token in text.split():
        key, sep, value = token.partition("=")
        if sep:
            fields[key] = value

    if not fields and error is None:
        return NodeLabel(status="foreign")

    roles = tuple(
        role for role in fields.get("roles", "").split("+") if role in NODE_ROLES
    )
    return NodeLabel(
        cluster_id=fields.get("cluster") or None,
        claim=fields.get("claim") or None,
        roles=roles,  # type: ignore[arg-type]
        endpoint=fields.get("endpoint") == "1",
        status=fields.get("status") or None,
        peer=fields.get("peer") or None,
        error=error,
    )


def cluster_marker(cluster_id: str) -> str:
    """Name shared by the cluster's tag, SSH key secret and private network."""
    return f"cluster={cluster_id}"
