"""Client certificate handling for app-only Exchange Online authentication.

CI pipelines hand the certificate over as a base64-encoded .pfx secret.
Connect-ExchangeOnline wants a file path, so the decoded bytes are validated,
fingerprinted, and written to a private temporary file for the lifetime of
the session.
"""

import base64
import binascii
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12

from dlprovision.core.config import ExchangeCredentials

logger = logging.getLogger(__name__)


class CertificateError(Exception):
    """Raised when the client certificate cannot be loaded or does not match."""


@dataclass
class LoadedCertificate:
    """A validated client certificate."""

    thumbprint: str  # Uppercase hex SHA-1, as shown in Entra/Windows
    subject: str
    not_valid_after: datetime
    path: Path | None = None

    @property
    def is_expired(self) -> bool:
        """Check if the certificate is past its validity period."""
        return self.not_valid_after < datetime.now(UTC)


def decode_certificate(material: str) -> bytes:
    """Decode base64 certificate material.

    Raises:
        CertificateError: If the material is not valid base64
    """
    try:
        return base64.b64decode("".join(material.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateError(f"Certificate material is not valid base64: {e}") from e


def load_certificate(data: bytes, password: str | None) -> LoadedCertificate:
    """Load a PKCS#12 certificate and compute its thumbprint.

    Args:
        data: Raw .pfx bytes
        password: Password for the .pfx (empty or None for no password)

    Returns:
        LoadedCertificate (without a path)

    Raises:
        CertificateError: If the data cannot be parsed or holds no certificate
    """
    try:
        _key, cert, _chain = pkcs12.load_key_and_certificates(
            data, password.encode() if password else None
        )
    except ValueError as e:
        raise CertificateError(f"Failed to load certificate: {e}") from e

    if cert is None:
        raise CertificateError("Certificate file contains no certificate")

    digest = hashes.Hash(hashes.SHA1())  # noqa: S303
    digest.update(cert.public_bytes(Encoding.DER))

    return LoadedCertificate(
        thumbprint=digest.finalize().hex().upper(),
        subject=cert.subject.rfc4514_string(),
        not_valid_after=cert.not_valid_after_utc,
    )


def verify_thumbprint(cert: LoadedCertificate, expected: str | None) -> None:
    """Check the loaded certificate against a pre-known thumbprint.

    Raises:
        CertificateError: If an expected thumbprint is set and differs
    """
    if not expected:
        return
    normalized = "".join(expected.split()).replace(":", "").upper()
    if cert.thumbprint != normalized:
        raise CertificateError(
            f"Certificate thumbprint mismatch: expected {normalized}, got {cert.thumbprint}"
        )


@contextmanager
def materialize_certificate(creds: ExchangeCredentials) -> Iterator[LoadedCertificate | None]:
    """Make the configured certificate available as a file for the session.

    - Base64 material is decoded, validated, and written to a temp file that
      is removed on exit.
    - A certificate path is validated in place.
    - A bare thumbprint (Windows certificate store) yields None.

    Yields:
        LoadedCertificate with ``path`` set, or None for store-based auth

    Raises:
        CertificateError: If the certificate cannot be loaded or does not match
    """
    if creds.has_certificate_material:
        data = decode_certificate(creds.certificate_base64)
    elif creds.certificate_path:
        try:
            data = Path(creds.certificate_path).read_bytes()
        except OSError as e:
            raise CertificateError(f"Failed to read certificate file: {e}") from e
    else:
        logger.info("Using installed certificate by thumbprint")
        yield None
        return

    cert = load_certificate(data, creds.certificate_password)
    verify_thumbprint(cert, creds.certificate_thumbprint)

    if cert.is_expired:
        logger.warning(f"Certificate expired on {cert.not_valid_after:%Y-%m-%d}")

    logger.info(f"Loaded certificate {cert.thumbprint} ({cert.subject})")

    if not creds.has_certificate_material:
        cert.path = Path(creds.certificate_path)
        yield cert
        return

    fd, temp_name = tempfile.mkstemp(suffix=".pfx", prefix="exo-cert-")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        temp_path.chmod(0o600)
        cert.path = temp_path
        yield cert
    finally:
        temp_path.unlink(missing_ok=True)
        logger.debug(f"Removed temporary certificate file {temp_path}")
