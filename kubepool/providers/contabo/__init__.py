"""Contabo Instance Directory binding.

Contabo VPS instances are billed monthly, so kubepool treats them as a
reusable pool instead of creating and destroying them per cluster.

For the client, import explicitly:

    from kubepool.providers.contabo.client import ContaboClient

Environment Variables:
    CNTB_CLIENT_ID, CNTB_CLIENT_SECRET, CNTB_USER, CNTB_PASSWORD:
        OAuth2 credentials (required if not passed directly)
    CNTB_TOKEN_URL: Token endpoint override
"""

from __future__ import annotations

from .config import CONTABO_API_BASE, CONTABO_TOKEN_URL, UBUNTU_24_04_IMAGE_ID, Contabo

__all__ = ["CONTABO_API_BASE", "CONTABO_TOKEN_URL", "UBUNTU_24_04_IMAGE_ID", "Contabo"]
