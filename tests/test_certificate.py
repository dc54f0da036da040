"""Tests for dlprovision.core.certificate."""

import base64
from datetime import timedelta

import pytest

from conftest import TEST_CERT_PASSWORD, build_pfx
from dlprovision.core.certificate import (
    CertificateError,
    decode_certificate,
    load_certificate,
    materialize_certificate,
    verify_thumbprint,
)
from dlprovision.core.config import ExchangeCredentials


def make_creds(**kwargs) -> ExchangeCredentials:
    defaults = {
        "tenant_id": "test-tenant-id",
        "client_id": "test-client-id",
        "organization": "test.org",
    }
    defaults.update(kwargs)
    return ExchangeCredentials(**defaults)


class TestDecodeCertificate:
    """Tests for decode_certificate function."""

    def test_decodes_base64(self):
        assert decode_certificate(base64.b64encode(b"pfx-bytes").decode()) == b"pfx-bytes"

    def test_ignores_line_breaks(self):
        encoded = base64.b64encode(b"some longer pfx bytes").decode()
        wrapped = "\n".join(encoded[i : i + 8] for i in range(0, len(encoded), 8))
        assert decode_certificate(wrapped) == b"some longer pfx bytes"

    def test_invalid_base64_raises(self):
        with pytest.raises(CertificateError, match="not valid base64"):
            decode_certificate("not*base64!")


class TestLoadCertificate:
    """Tests for load_certificate function."""

    def test_loads_and_computes_thumbprint(self, pfx_bytes_and_thumbprint):
        data, thumbprint = pfx_bytes_and_thumbprint

        cert = load_certificate(data, TEST_CERT_PASSWORD)

        assert cert.thumbprint == thumbprint
        assert "dl-provisioner-test" in cert.subject
        assert cert.is_expired is False
        assert cert.path is None

    def test_wrong_password_raises(self, pfx_bytes_and_thumbprint):
        data, _ = pfx_bytes_and_thumbprint

        with pytest.raises(CertificateError, match="Failed to load certificate"):
            load_certificate(data, "wrong-password")

    def test_garbage_raises(self):
        with pytest.raises(CertificateError):
            load_certificate(b"not a pfx", TEST_CERT_PASSWORD)

    def test_no_password(self):
        data, thumbprint = build_pfx(password=None)

        cert = load_certificate(data, "")

        assert cert.thumbprint == thumbprint

    def test_expired_certificate(self):
        data, _ = build_pfx(expires_in=timedelta(days=-1))

        cert = load_certificate(data, TEST_CERT_PASSWORD)

        assert cert.is_expired is True


class TestVerifyThumbprint:
    """Tests for verify_thumbprint function."""

    def test_no_expected_thumbprint(self, pfx_bytes_and_thumbprint):
        cert = load_certificate(pfx_bytes_and_thumbprint[0], TEST_CERT_PASSWORD)
        verify_thumbprint(cert, None)

    def test_matching_thumbprint_any_format(self, pfx_bytes_and_thumbprint):
        data, thumbprint = pfx_bytes_and_thumbprint
        cert = load_certificate(data, TEST_CERT_PASSWORD)
        colon_format = ":".join(thumbprint[i : i + 2] for i in range(0, len(thumbprint), 2))

        verify_thumbprint(cert, thumbprint.lower())
        verify_thumbprint(cert, colon_format)

    def test_mismatch_raises(self, pfx_bytes_and_thumbprint):
        cert = load_certificate(pfx_bytes_and_thumbprint[0], TEST_CERT_PASSWORD)

        with pytest.raises(CertificateError, match="thumbprint mismatch"):
            verify_thumbprint(cert, "0" * 40)


class TestMaterializeCertificate:
    """Tests for materialize_certificate context manager."""

    def test_base64_written_to_temp_file_and_removed(self, pfx_base64, pfx_bytes_and_thumbprint):
        data, thumbprint = pfx_bytes_and_thumbprint
        creds = make_creds(
            certificate_base64=pfx_base64, certificate_password=TEST_CERT_PASSWORD
        )

        with materialize_certificate(creds) as cert:
            assert cert is not None
            assert cert.thumbprint == thumbprint
            assert cert.path.exists()
            assert cert.path.read_bytes() == data
            assert cert.path.suffix == ".pfx"
            assert cert.path.stat().st_mode & 0o777 == 0o600
            temp_path = cert.path

        assert not temp_path.exists()

    def test_temp_file_removed_on_error(self, pfx_base64):
        creds = make_creds(
            certificate_base64=pfx_base64, certificate_password=TEST_CERT_PASSWORD
        )

        with pytest.raises(RuntimeError), materialize_certificate(creds) as cert:
            temp_path = cert.path
            raise RuntimeError("boom")

        assert not temp_path.exists()

    def test_certificate_path_used_in_place(self, tmp_path, pfx_bytes_and_thumbprint):
        data, thumbprint = pfx_bytes_and_thumbprint
        pfx_file = tmp_path / "cert.pfx"
        pfx_file.write_bytes(data)
        creds = make_creds(
            certificate_path=str(pfx_file), certificate_password=TEST_CERT_PASSWORD
        )

        with materialize_certificate(creds) as cert:
            assert cert.path == pfx_file
            assert cert.thumbprint == thumbprint

        assert pfx_file.exists()

    def test_missing_certificate_path_raises(self, tmp_path):
        creds = make_creds(
            certificate_path=str(tmp_path / "missing.pfx"),
            certificate_password=TEST_CERT_PASSWORD,
        )

        with pytest.raises(CertificateError, match="Failed to read"):
            with materialize_certificate(creds):
                pass

    def test_thumbprint_only_yields_none(self):
        creds = make_creds(certificate_thumbprint="ABC123")

        with materialize_certificate(creds) as cert:
            assert cert is None

    def test_thumbprint_mismatch_raises(self, pfx_base64):
        creds = make_creds(
            certificate_base64=pfx_base64,
            certificate_password=TEST_CERT_PASSWORD,
            certificate_thumbprint="0" * 40,
        )

        with pytest.raises(CertificateError, match="thumbprint mismatch"):
            with materialize_certificate(creds):
                pass

    def test_bad_base64_raises(self):
        creds = make_creds(certificate_base64="***", certificate_password="")

        with pytest.raises(CertificateError):
            with materialize_certificate(creds):
                pass
