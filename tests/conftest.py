"""Shared pytest fixtures."""

import base64
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from dlprovision.exchange.client import ExchangeGroup, ExchangeOnlineClient, ExchangeRecipient
from dlprovision.utils.config import get_settings

# Test password for certificate authentication (not a real secret)
TEST_CERT_PASSWORD = "test-password"
TEST_DOMAIN = "stefaninisandbox.onmicrosoft.com"


@pytest.fixture
def clear_settings_cache():
    """Settings are cached per process; reset between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def build_pfx(
    password: str | None = TEST_CERT_PASSWORD,
    expires_in: timedelta = timedelta(days=365),
) -> tuple[bytes, str]:
    """Build a self-signed .pfx and return (bytes, uppercase SHA-1 thumbprint)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "dl-provisioner-test")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - abs(expires_in) - timedelta(days=1))
        .not_valid_after(now + expires_in)
        .sign(key, hashes.SHA256())
    )
    encryption = (
        serialization.BestAvailableEncryption(password.encode())
        if password
        else serialization.NoEncryption()
    )
    data = pkcs12.serialize_key_and_certificates(b"test", key, cert, None, encryption)
    thumbprint = cert.fingerprint(hashes.SHA1()).hex().upper()  # noqa: S303
    return data, thumbprint


@pytest.fixture(scope="session")
def pfx_bytes_and_thumbprint():
    """A password-protected self-signed certificate."""
    return build_pfx()


@pytest.fixture(scope="session")
def pfx_base64(pfx_bytes_and_thumbprint):
    """Base64-encoded .pfx, as stored in a CI secret."""
    return base64.b64encode(pfx_bytes_and_thumbprint[0]).decode()


@pytest.fixture
def mock_env_vars(monkeypatch, pfx_base64, clear_settings_cache):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("EXCHANGE_TENANT_ID", "test-tenant-id")
    monkeypatch.setenv("EXCHANGE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("EXCHANGE_ORGANIZATION", TEST_DOMAIN)
    monkeypatch.setenv("EXCHANGE_CERTIFICATE_BASE64", pfx_base64)
    monkeypatch.setenv("EXCHANGE_CERTIFICATE_PASSWORD", TEST_CERT_PASSWORD)
    monkeypatch.delenv("EXCHANGE_CERTIFICATE_PATH", raising=False)
    monkeypatch.delenv("EXCHANGE_CERTIFICATE_THUMBPRINT", raising=False)
    monkeypatch.setenv("GROUP_DOMAIN", TEST_DOMAIN)
    monkeypatch.delenv("GITHUB_STEP_SUMMARY", raising=False)


@pytest.fixture
def mock_exchange_client():
    """Mock Exchange Online client where every call succeeds and nothing exists yet."""
    client = MagicMock(spec=ExchangeOnlineClient)
    client.connect = AsyncMock(return_value=True)
    client.get_distribution_group = AsyncMock(return_value=None)
    client.create_distribution_group = AsyncMock(
        side_effect=lambda name, display_name, alias, primary_smtp_address=None, **kw: (
            ExchangeGroup(
                identity=alias,
                display_name=display_name,
                primary_smtp_address=primary_smtp_address or "",
                group_type="MailUniversalDistributionGroup",
            )
        )
    )
    client.get_recipient = AsyncMock(
        side_effect=lambda identity: ExchangeRecipient(
            identity=identity.split("@")[0],
            display_name=identity.split("@")[0],
            primary_smtp_address=identity,
            recipient_type="UserMailbox",
        )
    )
    client.get_distribution_group_managers = AsyncMock(return_value=[])
    client.add_distribution_group_manager = AsyncMock(return_value=True)
    client.close = AsyncMock()
    return client
