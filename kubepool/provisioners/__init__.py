"""Node provisioners: claim, verify and release pooled instances."""

from kubepool.provisioners.base import AbstractNodeProvisioner, Node, NodeProvisioner
from kubepool.provisioners.labels import (
    NodeLabel,
    NodeRole,
    decode_display_name,
    encode_display_name,
)
from kubepool.provisioners.pagination import Paginated, paginate
from kubepool.provisioners.registry import create_node_provisioner

__all__ = [
    "AbstractNodeProvisioner",
    "Node",
    "NodeLabel",
    "NodeProvisioner",
    "NodeRole",
    "Paginated",
    "create_node_provisioner",
    "decode_display_name",
    "encode_display_name",
    "paginate",
]
