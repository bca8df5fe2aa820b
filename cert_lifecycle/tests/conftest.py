"""Test fixtures for cert_lifecycle tests."""

import logging
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from cert_lifecycle.lib.cert_utils import (
    generate_private_key,
    serialize_certificate,
    serialize_private_key,
)
from cert_lifecycle.lib.certificate_builder import CertificateBuilder, build_subject
from cert_lifecycle.lib.config import GlobalDefaults
from cert_lifecycle.lib.models import CertClass, CertificateRecord
from cert_lifecycle.lib.policy_store import JsonPolicyStore
from cert_lifecycle.lib.toolkit import CAToolkit

CA_PASSPHRASE = "correct horse battery staple"


@pytest.fixture
def ca_passphrase() -> str:
    """Return the passphrase protecting the Root CA key on disk."""
    return CA_PASSPHRASE


@pytest.fixture
def propagate_logs() -> Generator[None, None, None]:
    """Let caplog see records from the cert_lifecycle logger, which does not propagate."""
    engine_logger = logging.getLogger("cert_lifecycle")
    previous = engine_logger.propagate
    engine_logger.propagate = True
    try:
        yield
    finally:
        engine_logger.propagate = previous


@pytest.fixture
def temp_output_dir(tmp_path: Path) -> Path:
    """Return temporary directory for test output artifacts."""
    return tmp_path


@pytest.fixture
def defaults() -> GlobalDefaults:
    """Return global defaults with 2048-bit CA keys (faster for tests)."""
    return GlobalDefaults(ca_key_size=2048, key_size=2048)


@pytest.fixture
def toolkit() -> CAToolkit:
    return CAToolkit(default_key_size=2048)


@pytest.fixture
def policy_store(tmp_path: Path, defaults: GlobalDefaults) -> JsonPolicyStore:
    """Return a policy store backed by a temp file."""
    return JsonPolicyStore(tmp_path / "config" / "certificates.json", defaults)


@pytest.fixture
def root_key() -> RSAPrivateKey:
    """Generate RSA private key for Root CA."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def root_cert(root_key: RSAPrivateKey) -> x509.Certificate:
    """Generate self-signed Root CA certificate for ca.local."""
    return CertificateBuilder.build_root_ca(
        subject=build_subject("ca.local"),
        private_key=root_key,
        validity_days=3650,
    )


@pytest.fixture
def intermediate_key() -> RSAPrivateKey:
    """Generate RSA private key for Intermediate CA."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def intermediate_cert(
    intermediate_key: RSAPrivateKey,
    root_cert: x509.Certificate,
    root_key: RSAPrivateKey,
) -> x509.Certificate:
    """Generate Intermediate CA certificate int.local signed by Root CA."""
    csr = CertificateBuilder.build_csr(build_subject("int.local"), intermediate_key)
    return CertificateBuilder.build_signed_certificate(
        csr=csr,
        issuer_cert=root_cert,
        issuer_key=root_key,
        validity_days=1825,
        is_ca=True,
    )


@pytest.fixture
def leaf_key() -> RSAPrivateKey:
    """Generate RSA private key for the service certificate."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def leaf_cert(
    leaf_key: RSAPrivateKey,
    intermediate_cert: x509.Certificate,
    intermediate_key: RSAPrivateKey,
) -> x509.Certificate:
    """Generate svc.local certificate signed by Intermediate CA."""
    csr = CertificateBuilder.build_csr(
        build_subject("svc.local"), leaf_key, ["svc.local", "www.svc.local"]
    )
    return CertificateBuilder.build_signed_certificate(
        csr=csr,
        issuer_cert=intermediate_cert,
        issuer_key=intermediate_key,
        validity_days=90,
    )


@pytest.fixture
def certs_dir(
    tmp_path: Path,
    root_cert: x509.Certificate,
    root_key: RSAPrivateKey,
    intermediate_cert: x509.Certificate,
    intermediate_key: RSAPrivateKey,
    leaf_cert: x509.Certificate,
    leaf_key: RSAPrivateKey,
) -> Path:
    """Write the three-level chain to disk.

    Layout:
        certs/ca/ca.crt + private.key (encrypted with CA_PASSPHRASE)
        certs/int/int.crt + private.key
        certs/svc/svc.crt + svc.key
    """
    base = tmp_path / "certs"
    for name in ("ca", "int", "svc"):
        (base / name).mkdir(parents=True)

    (base / "ca" / "ca.crt").write_bytes(serialize_certificate(root_cert))
    (base / "ca" / "private.key").write_bytes(serialize_private_key(root_key, CA_PASSPHRASE))
    (base / "int" / "int.crt").write_bytes(serialize_certificate(intermediate_cert))
    (base / "int" / "private.key").write_bytes(serialize_private_key(intermediate_key))
    (base / "svc" / "svc.crt").write_bytes(serialize_certificate(leaf_cert))
    (base / "svc" / "svc.key").write_bytes(serialize_private_key(leaf_key))
    return base


RecordFactory = Callable[..., CertificateRecord]


@pytest.fixture
def make_record() -> RecordFactory:
    """Return a factory for synthetic records (no key material involved)."""

    def _make(
        name: str,
        cert_class: CertClass = CertClass.STANDARD,
        ski: str | None = None,
        aki: str | None = None,
        issuer: str | None = None,
        days_left: float = 60,
        validity_days: int = 90,
        fingerprint: str | None = None,
    ) -> CertificateRecord:
        now = datetime.now(UTC)
        subject = f"CN={name}"
        return CertificateRecord(
            fingerprint=fingerprint or f"FP:{name}",
            name=name,
            domains=(name,),
            subject=subject,
            issuer=issuer or subject,
            valid_from=now + timedelta(days=days_left - validity_days),
            valid_to=now + timedelta(days=days_left),
            cert_class=cert_class,
            subject_key_id=ski,
            authority_key_id=aki,
        )

    return _make
