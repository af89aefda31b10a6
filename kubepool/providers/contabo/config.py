"""Contabo provider configuration.

Immutable configuration dataclass for the Contabo Instance Directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from kubepool.core.exceptions import ConfigurationError

type ContaboRegion = Literal["EU", "US-central", "US-east", "US-west", "SIN"]
type ProvisioningMode = Literal["auto", "manual"]

CONTABO_API_BASE = "https://api.contabo.com"
CONTABO_TOKEN_URL = "https://auth.contabo.com/auth/realms/contabo/protocol/openid-connect/token"
UBUNTU_24_04_IMAGE_ID = "d64d5c6c-9dda-4e38-8174-0ee282474d8a"


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class Contabo:
    """Contabo provider configuration.

    Contabo has no spot market and instances are billed monthly, so the
    provisioner treats existing instances as a pool: it claims an idle
    one, reinstalls it if needed, and hands it back when a node is
    removed. New instances are only ordered in ``"auto"`` mode.

    Example:
        >>> from kubepool.providers.contabo import Contabo
        >>> config = Contabo(product_id="V78", provisioning="manual")

    Args:
        client_id: OAuth2 client id. Falls back to CNTB_CLIENT_ID.
        client_secret: OAuth2 client secret. Falls back to CNTB_CLIENT_SECRET.
        username: API user. Falls back to CNTB_USER.
        password: API password. Falls back to CNTB_PASSWORD.
        token_url: OAuth2 token endpoint. Falls back to CNTB_TOKEN_URL.
        region: Region used for new instances and private networks.
        product_id: Capacity class a pooled instance must match.
        image_id: OS image every node must run.
        provisioning: "auto" orders new instances when the pool is empty,
            "manual" fails with NoCapacityError instead.
        page_size: Page size for instance listing.
        use_tags: Mirror cluster membership into a ``cluster=<id>`` tag.
        private_networking: Attach nodes to a per-cluster private network.
        request_timeout: HTTP request timeout in seconds.
        claim_settle_delay: Seconds to wait between writing a claim and
            reading it back.
        poll_interval: Seconds between instance state polls.
        instance_timeout: Maximum seconds to wait for an instance to run.
        lock_retry_attempts: Attempts for calls rejected with HTTP 423.
        lock_retry_delay: Base delay between locked-instance retries.
    """

    client_id: str | None = None
    client_secret: str | None = None
    username: str | None = None
    password: str | None = None
    token_url: str | None = None
    api_url: str = CONTABO_API_BASE
    region: ContaboRegion = "EU"
    product_id: str = "V78"
    image_id: str = UBUNTU_24_04_IMAGE_ID
    provisioning: ProvisioningMode = "manual"
    page_size: int = 50
    use_tags: bool = True
    private_networking: bool = False
    request_timeout: float = 30.0
    claim_settle_delay: float = 2.0
    poll_interval: float = 5.0
    instance_timeout: float = 600.0
    lock_retry_attempts: int = 6
    lock_retry_delay: float = 5.0

    def credentials(self) -> tuple[str, str, str, str, str]:
        """Resolve (token_url, client_id, client_secret, username, password)."""
        resolved = (
            self.token_url or os.environ.get("CNTB_TOKEN_URL") or CONTABO_TOKEN_URL,
            self.client_id or os.environ.get("CNTB_CLIENT_ID"),
            self.client_secret or os.environ.get("CNTB_CLIENT_SECRET"),
            self.username or os.environ.get("CNTB_USER"),
            self.password or os.environ.get("CNTB_PASSWORD"),
        )
        missing = [
            name
            for name, value in zip(
                ("token_url", "client_id", "client_secret", "username", "password"),
                resolved,
                strict=True,
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Contabo credentials missing: {', '.join(missing)}. "
                "Set them in kubepool.toml or via CNTB_* environment variables."
            )
        return resolved  # type: ignore[return-value]


__all__ = ["CONTABO_API_BASE", "CONTABO_TOKEN_URL", "UBUNTU_24_04_IMAGE_ID", "Contabo"]
