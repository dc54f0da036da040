"""Configuration loading utilities."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from dlprovision.core.normalize import normalize_domain
from dlprovision.utils.config import get_settings


@dataclass
class ExchangeCredentials:
    """Credentials for Exchange Online PowerShell authentication."""

    tenant_id: str
    client_id: str
    organization: str
    certificate_base64: str | None = None
    certificate_thumbprint: str | None = None
    certificate_path: str | None = None
    certificate_password: str | None = None

    @property
    def has_certificate_material(self) -> bool:
        """Check if a base64-encoded certificate was supplied."""
        return bool(self.certificate_base64)


def get_exchange_credentials() -> ExchangeCredentials:
    """Get Exchange Online credentials from environment.

    Uses certificate-based authentication for app-only access. One of
    certificate_base64 (CI secret), certificate_path (.pfx on disk) or
    certificate_thumbprint (Windows certificate store) must be provided.

    Environment variables:
        EXCHANGE_TENANT_ID: Tenant ID (falls back to MS_GRAPH_TENANT_ID)
        EXCHANGE_CLIENT_ID: App client ID (falls back to MS_GRAPH_CLIENT_ID)
        EXCHANGE_ORGANIZATION: Organization domain (falls back to GROUP_DOMAIN)
        EXCHANGE_CERTIFICATE_BASE64: Base64-encoded .pfx certificate
        EXCHANGE_CERTIFICATE_PATH: Path to .pfx certificate file
        EXCHANGE_CERTIFICATE_PASSWORD: Password for the .pfx certificate
        EXCHANGE_CERTIFICATE_THUMBPRINT: Expected/installed certificate thumbprint

    Returns:
        ExchangeCredentials with certificate configuration

    Raises:
        ValueError: If required values are missing
    """
    load_dotenv()

    # Get tenant/client, with fallback to Graph credentials
    tenant_id = os.getenv("EXCHANGE_TENANT_ID") or os.getenv("MS_GRAPH_TENANT_ID")
    client_id = os.getenv("EXCHANGE_CLIENT_ID") or os.getenv("MS_GRAPH_CLIENT_ID")

    if not tenant_id or not client_id:
        raise ValueError(
            "Exchange credentials not set. Required: "
            "EXCHANGE_TENANT_ID/MS_GRAPH_TENANT_ID and EXCHANGE_CLIENT_ID/MS_GRAPH_CLIENT_ID"
        )

    # Default to the group domain if not set in environment
    organization = os.getenv("EXCHANGE_ORGANIZATION")
    if not organization:
        organization = get_settings().group_domain

    cert_base64 = os.getenv("EXCHANGE_CERTIFICATE_BASE64")
    cert_path = os.getenv("EXCHANGE_CERTIFICATE_PATH")
    cert_password = os.getenv("EXCHANGE_CERTIFICATE_PASSWORD")
    thumbprint = os.getenv("EXCHANGE_CERTIFICATE_THUMBPRINT")

    if not cert_base64 and not cert_path and not thumbprint:
        raise ValueError(
            "Exchange credentials not set. Required: "
            "EXCHANGE_CERTIFICATE_BASE64 or EXCHANGE_CERTIFICATE_PATH "
            "(+ EXCHANGE_CERTIFICATE_PASSWORD), or EXCHANGE_CERTIFICATE_THUMBPRINT (Windows)"
        )

    if (cert_base64 or cert_path) and cert_password is None:
        raise ValueError(
            "EXCHANGE_CERTIFICATE_PASSWORD is required with a certificate file or base64 "
            "material (can be empty string for Key Vault generated certs)"
        )

    return ExchangeCredentials(
        tenant_id=tenant_id,
        client_id=client_id,
        organization=organization,
        certificate_base64=cert_base64,
        certificate_thumbprint=thumbprint,
        certificate_path=cert_path,
        certificate_password=cert_password,
    )


@dataclass(frozen=True)
class ProvisioningConfig:
    """Settings the provisioning procedure needs, resolved once at startup."""

    domain: str
    dry_run: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain", normalize_domain(self.domain))
        if not self.domain:
            raise ValueError("Provisioning domain must not be empty")


def load_provisioning_config(dry_run: bool = False) -> ProvisioningConfig:
    """Build the provisioning config from application settings."""
    return ProvisioningConfig(domain=get_settings().group_domain, dry_run=dry_run)
