"""Async HTTP client for the Contabo API.

Covers the Instance Directory surface the provisioner needs: instances,
SSH key secrets, private networks and tags. Every list call is paginated
(1-based ``page``, ``size``); callers that need a full scan drive the
pages to exhaustion.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from kubepool.core.exceptions import InstanceLockedError, ProviderError
from kubepool.infra.http import HttpClient, HttpError, OAuth2PasswordAuth
from kubepool.retry import TRANSIENT, retry
from kubepool.wait import wait_for_ready

from .config import Contabo
from .types import (
    ContaboInstance,
    ContaboPrivateNetwork,
    ContaboSecret,
    ContaboTag,
    ContaboTagAssignment,
    InstanceStatus,
    SecretType,
    TagResourceType,
)

_FAILED_STATES: frozenset[InstanceStatus] = frozenset({
    "error",
    "product_not_available",
    "verification_required",
    "pending_payment",
})


class ContaboClient:
    """Async HTTP client for the Contabo API."""

    def __init__(self, config: Contabo, http: HttpClient | None = None) -> None:
        self.config = config
        if http is None:
            token_url, client_id, client_secret, username, password = config.credentials()
            http = HttpClient(
                config.api_url,
                OAuth2PasswordAuth(token_url, client_id, client_secret, username, password),
                timeout=config.request_timeout,
            )
        self._http = http
        self._log = logger.bind(provider="contabo", component="client")

    async def __aenter__(self) -> ContaboClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.close()

    @retry(on=TRANSIENT, max_attempts=5, base_delay=1.0)
    async def _do_request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            return await self._http.request(method, path, json=json, params=params)
        except HttpError as e:
            if e.status == 423:
                raise InstanceLockedError(e.status, e.body, operation=f"{method} {path}") from e
            raise ProviderError(e.status, e.body, operation=f"{method} {path}") from e

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> list[Any]:
        self._log.debug("{method} {path}", method=method, path=path)
        result = await self._do_request(method, path, json, params)
        if not result:
            return []
        return result.get("data", [])

    async def _locked_retry(self, method: str, path: str, json: dict[str, Any] | None = None) -> list[Any]:
        """Issue a call that Contabo rejects with 423 while the instance is busy."""

        @retry(
            on=InstanceLockedError,
            max_attempts=self.config.lock_retry_attempts,
            base_delay=self.config.lock_retry_delay,
            backoff=False,
            jitter=False,
        )
        async def do() -> list[Any]:
            return await self._request(method, path, json)

        return await do()

    @staticmethod
    def _page_params(page: int, size: int, **filters: Any) -> dict[str, Any]:
        params = {"page": page, "size": size}
        params.update({k: v for k, v in filters.items() if v is not None})
        return params

    # =========================================================================
    # Instances
    # =========================================================================

    async def list_instances(
        self, *, page: int = 1, size: int = 50, name: str | None = None,
    ) -> list[ContaboInstance]:
        return await self._request(
            "GET", "/v1/compute/instances", params=self._page_params(page, size, name=name),
        )

    async def get_instance(self, instance_id: int) -> ContaboInstance:
        data = await self._request("GET", f"/v1/compute/instances/{instance_id}")
        if not data:
            raise ProviderError(404, f"instance {instance_id} not found", operation="get_instance")
        return data[0]

    async def set_display_name(self, instance_id: int, display_name: str) -> None:
        await self._locked_retry(
            "PATCH", f"/v1/compute/instances/{instance_id}", {"displayName": display_name},
        )

    async def create_instance(
        self,
        *,
        product_id: str,
        image_id: str,
        ssh_keys: list[int],
        display_name: str,
        region: str | None = None,
    ) -> ContaboInstance:
        """Order a new instance and wait until it is running."""
        data = await self._request(
            "POST",
            "/v1/compute/instances",
            {
                "productId": product_id,
                "imageId": image_id,
                "region": region or self.config.region,
                "sshKeys": ssh_keys,
                "defaultUser": "root",
                "displayName": display_name,
                "period": 1,
            },
        )
        instance_id = int(data[0]["instanceId"])
        self._log.info("Ordered instance {iid} ({product})", iid=instance_id, product=product_id)
        return await self.wait_for_status(instance_id, "running")

    async def reinstall_instance(
        self, instance_id: int, *, image_id: str, ssh_keys: list[int],
    ) -> ContaboInstance:
        """Reinstall an instance with a fresh image and keys, then wait until running."""
        await self._locked_retry(
            "PUT",
            f"/v1/compute/instances/{instance_id}",
            {"imageId": image_id, "sshKeys": ssh_keys, "defaultUser": "root"},
        )
        self._log.info("Reinstalling instance {iid}", iid=instance_id)

        async def poll() -> ContaboInstance | None:
            instance = await self.get_instance(instance_id)
            if instance["status"] == "stopped":
                await self.start_instance(instance_id)
                return None
            return instance

        return await wait_for_ready(
            poll,
            lambda i: i["status"] == "running",
            is_terminal=lambda i: i["status"] in _FAILED_STATES,
            timeout=self.config.instance_timeout,
            interval=self.config.poll_interval,
            description=f"instance {instance_id} reinstall",
        )

    async def start_instance(self, instance_id: int) -> None:
        await self._locked_retry("POST", f"/v1/compute/instances/{instance_id}/actions/start")

    async def stop_instance(self, instance_id: int) -> None:
        await self._locked_retry("POST", f"/v1/compute/instances/{instance_id}/actions/stop")

    async def restart_instance(self, instance_id: int) -> ContaboInstance:
        await self._locked_retry("POST", f"/v1/compute/instances/{instance_id}/actions/restart")
        return await self.wait_for_status(instance_id, "running")

    async def wait_for_status(self, instance_id: int, status: InstanceStatus) -> ContaboInstance:
        return await wait_for_ready(
            lambda: self.get_instance(instance_id),
            lambda i: i["status"] == status,
            is_terminal=lambda i: i["status"] in _FAILED_STATES,
            timeout=self.config.instance_timeout,
            interval=self.config.poll_interval,
            description=f"instance {instance_id} {status}",
        )

    # =========================================================================
    # Secrets (SSH keys)
    # =========================================================================

    async def list_secrets(
        self,
        *,
        page: int = 1,
        size: int = 50,
        type: SecretType | None = None,
        name: str | None = None,
    ) -> list[ContaboSecret]:
        return await self._request(
            "GET", "/v1/secrets", params=self._page_params(page, size, type=type, name=name),
        )

    async def get_secret(self, secret_id: int) -> ContaboSecret:
        data = await self._request("GET", f"/v1/secrets/{secret_id}")
        if not data:
            raise ProviderError(404, f"secret {secret_id} not found", operation="get_secret")
        return data[0]

    async def create_secret(self, *, name: str, value: str, type: SecretType = "ssh") -> int:
        data = await self._request("POST", "/v1/secrets", {"name": name, "value": value, "type": type})
        return int(data[0]["secretId"])

    async def delete_secret(self, secret_id: int) -> None:
        await self._request("DELETE", f"/v1/secrets/{secret_id}")

    # =========================================================================
    # Private networks
    # =========================================================================

    async def list_private_networks(
        self, *, page: int = 1, size: int = 50, name: str | None = None,
    ) -> list[ContaboPrivateNetwork]:
        return await self._request(
            "GET", "/v1/private-networks", params=self._page_params(page, size, name=name),
        )

    async def get_private_network(self, private_network_id: int) -> ContaboPrivateNetwork:
        data = await self._request("GET", f"/v1/private-networks/{private_network_id}")
        if not data:
            raise ProviderError(
                404, f"private network {private_network_id} not found", operation="get_private_network",
            )
        return data[0]

    async def create_private_network(self, *, name: str, region: str | None = None) -> int:
        data = await self._request(
            "POST", "/v1/private-networks", {"name": name, "region": region or self.config.region},
        )
        return int(data[0]["privateNetworkId"])

    async def delete_private_network(self, private_network_id: int) -> None:
        await self._request("DELETE", f"/v1/private-networks/{private_network_id}")

    async def assign_private_network(self, private_network_id: int, instance_id: int) -> None:
        """Attach an instance, wait until the network lists it, then restart it.

        The private interface only comes up after a restart.
        """
        await self._locked_retry(
            "POST", f"/v1/private-networks/{private_network_id}/instances/{instance_id}",
        )

        async def attached() -> ContaboPrivateNetwork | None:
            try:
                return await self.get_private_network(private_network_id)
            except InstanceLockedError:
                return None

        await wait_for_ready(
            attached,
            lambda n: any(m["instanceId"] == instance_id for m in n["instances"]),
            timeout=self.config.instance_timeout,
            interval=self.config.poll_interval,
            description=f"private network {private_network_id} assignment",
        )
        await self.restart_instance(instance_id)

    async def unassign_private_network(self, private_network_id: int, instance_id: int) -> None:
        await self._locked_retry(
            "DELETE", f"/v1/private-networks/{private_network_id}/instances/{instance_id}",
        )

    # =========================================================================
    # Tags
    # =========================================================================

    async def list_tags(
        self, *, page: int = 1, size: int = 50, name: str | None = None,
    ) -> list[ContaboTag]:
        return await self._request(
            "GET", "/v1/tags", params=self._page_params(page, size, name=name),
        )

    async def get_tag(self, tag_id: int) -> ContaboTag:
        data = await self._request("GET", f"/v1/tags/{tag_id}")
        if not data:
            raise ProviderError(404, f"tag {tag_id} not found", operation="get_tag")
        return data[0]

    async def create_tag(self, *, name: str, color: str | None = None) -> int:
        body: dict[str, Any] = {"name": name}
        if color:
            body["color"] = color
        data = await self._request("POST", "/v1/tags", body)
        return int(data[0]["tagId"])

    async def delete_tag(self, tag_id: int) -> None:
        await self._request("DELETE", f"/v1/tags/{tag_id}")

    async def list_tag_assignments(
        self, tag_id: int, *, page: int = 1, size: int = 50,
    ) -> list[ContaboTagAssignment]:
        return await self._request(
            "GET", f"/v1/tags/{tag_id}/assignments", params=self._page_params(page, size),
        )

    async def create_tag_assignment(
        self, tag_id: int, resource_type: TagResourceType, resource_id: str,
    ) -> None:
        await self._request("POST", f"/v1/tags/{tag_id}/assignments/{resource_type}/{resource_id}")

    async def delete_tag_assignment(
        self, tag_id: int, resource_type: TagResourceType, resource_id: str,
    ) -> None:
        await self._request("DELETE", f"/v1/tags/{tag_id}/assignments/{resource_type}/{resource_id}")
