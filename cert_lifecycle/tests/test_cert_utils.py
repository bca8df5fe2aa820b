"""Tests for certificate utility functions."""

from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from cert_lifecycle.lib.cert_utils import (
    certificate_fingerprint,
    classify_certificate,
    deserialize_certificate,
    deserialize_private_key,
    extract_certificate_metadata,
    find_key_file,
    format_hex,
    get_domains,
    is_key_encrypted,
    key_matches_certificate,
    load_certificate_file,
    serialize_certificate,
    serialize_private_key,
    validate_certificate_chain,
)
from cert_lifecycle.lib.errors import CertificateInputError
from cert_lifecycle.lib.models import CertClass


class TestPrivateKeySerialization:
    def test_plain_key_round_trips(self, leaf_key: RSAPrivateKey) -> None:
        pem = serialize_private_key(leaf_key)

        assert not is_key_encrypted(pem)
        loaded = deserialize_private_key(pem)
        assert loaded.private_numbers() == leaf_key.private_numbers()

    def test_encrypted_key_requires_passphrase(self, leaf_key: RSAPrivateKey) -> None:
        pem = serialize_private_key(leaf_key, "s3cret")

        assert is_key_encrypted(pem)
        with pytest.raises(TypeError):
            deserialize_private_key(pem)
        with pytest.raises(ValueError):
            deserialize_private_key(pem, "wrong")
        assert deserialize_private_key(pem, "s3cret").key_size == 2048


class TestFingerprint:
    def test_format_is_uppercase_colon_hex(self, root_cert: x509.Certificate) -> None:
        fingerprint = certificate_fingerprint(root_cert)

        parts = fingerprint.split(":")
        assert len(parts) == 32
        assert all(len(part) == 2 and part == part.upper() for part in parts)

    def test_format_hex_without_separator(self) -> None:
        assert format_hex(b"\x0a\xff") == "0AFF"
        assert format_hex(b"\x0a\xff", ":") == "0A:FF"


class TestClassification:
    """Should classify by CA flag and self-issuance."""

    def test_root(self, root_cert: x509.Certificate) -> None:
        assert classify_certificate(root_cert) is CertClass.ROOT_CA

    def test_intermediate(self, intermediate_cert: x509.Certificate) -> None:
        assert classify_certificate(intermediate_cert) is CertClass.INTERMEDIATE_CA

    def test_leaf(self, leaf_cert: x509.Certificate) -> None:
        assert classify_certificate(leaf_cert) is CertClass.STANDARD


class TestExtractCertificateMetadata:
    def test_leaf_metadata(
        self, leaf_cert: x509.Certificate, intermediate_cert: x509.Certificate
    ) -> None:
        record = extract_certificate_metadata(leaf_cert, Path("/certs/svc/svc.crt"))

        assert record.name == "svc.local"
        assert record.domains == ("svc.local", "www.svc.local")
        assert record.subject == "CN=svc.local"
        assert record.issuer == "CN=int.local"
        assert record.cert_class is CertClass.STANDARD
        assert record.cert_path == Path("/certs/svc/svc.crt")
        assert record.valid_to is not None and record.valid_to.tzinfo is not None

        issuer_record = extract_certificate_metadata(intermediate_cert)
        assert record.authority_key_id == issuer_record.subject_key_id

    def test_key_identifiers_have_no_colons(self, root_cert: x509.Certificate) -> None:
        record = extract_certificate_metadata(root_cert)

        assert record.subject_key_id is not None
        assert ":" not in record.subject_key_id
        assert record.subject_key_id == record.subject_key_id.upper()

    def test_ip_san_included_in_domains(self, root_key: RSAPrivateKey) -> None:
        from cert_lifecycle.lib.certificate_builder import CertificateBuilder, build_subject

        cert = CertificateBuilder.build_self_signed_certificate(
            build_subject("api.local"), root_key, 30, ["api.local", "10.0.0.5"]
        )

        assert get_domains(cert) == ("api.local", "10.0.0.5")


class TestLoadCertificateFile:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(CertificateInputError) as exc_info:
            load_certificate_file(tmp_path / "missing.crt")

        assert exc_info.value.code == "CERT_INPUT_INVALID"

    def test_garbage_file(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.crt"
        path.write_text("not a certificate")

        with pytest.raises(CertificateInputError):
            load_certificate_file(path)

    def test_der_encoded(self, tmp_path: Path, leaf_cert: x509.Certificate) -> None:
        from cryptography.hazmat.primitives import serialization

        path = tmp_path / "leaf.cer"
        path.write_bytes(leaf_cert.public_bytes(serialization.Encoding.DER))

        assert load_certificate_file(path) == leaf_cert


class TestFindKeyFile:
    def test_prefers_configured_path(self, tmp_path: Path) -> None:
        cert = tmp_path / "svc.crt"
        configured = tmp_path / "elsewhere.key"
        configured.write_text("k")
        (tmp_path / "private.key").write_text("k")

        assert find_key_file(cert, configured) == configured

    def test_private_key_before_stem_key(self, tmp_path: Path) -> None:
        cert = tmp_path / "svc.crt"
        (tmp_path / "private.key").write_text("k")
        (tmp_path / "svc.key").write_text("k")

        assert find_key_file(cert) == tmp_path / "private.key"

    def test_stem_key(self, tmp_path: Path) -> None:
        cert = tmp_path / "svc.crt"
        (tmp_path / "svc.key").write_text("k")

        assert find_key_file(cert) == tmp_path / "svc.key"

    def test_any_key_sorted(self, tmp_path: Path) -> None:
        cert = tmp_path / "svc.crt"
        (tmp_path / "zeta.key").write_text("k")
        (tmp_path / "alpha.key").write_text("k")

        assert find_key_file(cert) == tmp_path / "alpha.key"

    def test_strict_skips_unrelated_keys(self, tmp_path: Path) -> None:
        (tmp_path / "ca.key").write_text("k")

        assert find_key_file(tmp_path / "svc.crt", strict=True) is None

    def test_none_found(self, tmp_path: Path) -> None:
        assert find_key_file(tmp_path / "svc.crt") is None


class TestKeyMatchesCertificate:
    def test_matching_key(self, leaf_key: RSAPrivateKey, leaf_cert: x509.Certificate) -> None:
        assert key_matches_certificate(serialize_private_key(leaf_key), leaf_cert) is True

    def test_other_key(self, root_key: RSAPrivateKey, leaf_cert: x509.Certificate) -> None:
        assert key_matches_certificate(serialize_private_key(root_key), leaf_cert) is False

    def test_encrypted_key_is_unknown(
        self, leaf_key: RSAPrivateKey, leaf_cert: x509.Certificate
    ) -> None:
        pem = serialize_private_key(leaf_key, "s3cret")

        assert key_matches_certificate(pem, leaf_cert) is None

    def test_garbage(self, leaf_cert: x509.Certificate) -> None:
        assert key_matches_certificate(b"not a key", leaf_cert) is False


def test_chain_validation(
    root_cert: x509.Certificate,
    intermediate_cert: x509.Certificate,
    leaf_cert: x509.Certificate,
) -> None:
    assert validate_certificate_chain(intermediate_cert, root_cert)
    assert validate_certificate_chain(leaf_cert, intermediate_cert)
    assert not validate_certificate_chain(leaf_cert, root_cert)


def test_certificate_pem_round_trip(root_cert: x509.Certificate) -> None:
    assert deserialize_certificate(serialize_certificate(root_cert)) == root_cert
