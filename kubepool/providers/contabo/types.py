"""Contabo API response types.

TypedDicts for API responses - no conversion needed.
"""

from __future__ import annotations

from typing import Literal, NotRequired, TypedDict

type InstanceStatus = Literal[
    "provisioning",
    "uninstalled",
    "running",
    "stopped",
    "error",
    "installing",
    "unknown",
    "manual_provisioning",
    "product_not_available",
    "verification_required",
    "rescue",
    "pending_payment",
    "other",
    "reset_password",
]

type TagResourceType = Literal["instance", "image", "object-storage"]

type SecretType = Literal["ssh", "password"]


class IpV4(TypedDict):
    ip: str
    gateway: str
    netmaskCidr: int


class IpConfig(TypedDict):
    v4: IpV4
    v6: NotRequired[IpV4]


class AddOn(TypedDict):
    id: int
    quantity: int


class ContaboInstance(TypedDict):
    """Compute instance as returned by /v1/compute/instances."""

    instanceId: int
    name: str
    displayName: str
    status: InstanceStatus
    productId: str
    imageId: str
    region: str
    dataCenter: str
    ipConfig: IpConfig
    sshKeys: list[int]
    addOns: list[AddOn]
    cancelDate: str
    errorMessage: NotRequired[str | None]
    defaultUser: NotRequired[str]


class ContaboSecret(TypedDict):
    secretId: int
    name: str
    type: SecretType
    value: NotRequired[str]


class PrivateNetworkInstance(TypedDict):
    instanceId: int
    displayName: str
    name: str
    privateIpConfig: dict[str, list[IpV4]]
    status: str


class ContaboPrivateNetwork(TypedDict):
    privateNetworkId: int
    name: str
    region: str
    dataCenter: str
    cidr: str
    instances: list[PrivateNetworkInstance]


class ContaboTag(TypedDict):
    tagId: int
    name: str
    color: NotRequired[str]


class ContaboTagAssignment(TypedDict):
    tagId: int
    tagName: str
    resourceType: TagResourceType
    resourceId: str
    resourceName: NotRequired[str]


def public_ip(instance: ContaboInstance) -> str:
    return instance["ipConfig"]["v4"]["ip"]


def private_ip_of(network: ContaboPrivateNetwork, instance_id: int) -> str | None:
    """Private IPv4 address of an instance inside a private network, if attached."""
    for member in network["instances"]:
        if member["instanceId"] == instance_id:
            addresses = member["privateIpConfig"].get("v4", [])
            return addresses[0]["ip"] if addresses else None
    return None
