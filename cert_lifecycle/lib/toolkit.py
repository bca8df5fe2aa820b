"""Certificate Authority Toolkit: the only X.509 surface the engine uses.

All material crosses this boundary as PEM bytes so that callers never touch
cryptography objects directly.
"""

import logging
from pathlib import Path

from cryptography import x509

from .cert_utils import (
    deserialize_certificate,
    deserialize_csr,
    deserialize_private_key,
    extract_certificate_metadata,
    generate_private_key,
    serialize_certificate,
    serialize_csr,
    serialize_private_key,
)
from .certificate_builder import CertificateBuilder, build_subject
from .errors import CertificateInputError, ToolkitError
from .models import CertClass, CertificateRecord

logger = logging.getLogger(__name__)


class CAToolkit:
    """Key generation, CSR issuance and signing on top of CertificateBuilder."""

    def __init__(self, default_key_size: int = 2048) -> None:
        self.default_key_size = default_key_size

    def extract_metadata(
        self,
        cert_pem: bytes,
        cert_path: Path | None = None,
        key_path: Path | None = None,
        has_passphrase: bool = False,
    ) -> CertificateRecord:
        """Parse certificate bytes into a CertificateRecord.

        Raises:
            CertificateInputError: If the bytes are not a certificate
        """
        try:
            cert = deserialize_certificate(cert_pem)
        except ValueError as e:
            raise CertificateInputError(
                "not a parseable certificate",
                {"path": str(cert_path) if cert_path else None},
            ) from e
        return extract_certificate_metadata(cert, cert_path, key_path, has_passphrase)

    def issue_self_signed(
        self,
        name: str,
        sans: list[str] | tuple[str, ...],
        validity_days: int,
        cert_class: CertClass,
        key_size: int | None = None,
        passphrase: str | None = None,
        subject: str | None = None,
    ) -> tuple[bytes, bytes]:
        """Issue a fresh self-signed pair.

        RootCA produces a CA certificate; Standard produces an end-entity one.

        Returns:
            Tuple of (cert_pem, key_pem); key_pem is encrypted with passphrase if given
        """
        if cert_class is CertClass.INTERMEDIATE_CA:
            raise ToolkitError("intermediate CAs cannot be self-signed", {"name": name})
        try:
            key = generate_private_key(key_size or self.default_key_size)
            subject_name = build_subject(name, subject)
            if cert_class is CertClass.ROOT_CA:
                cert = CertificateBuilder.build_root_ca(subject_name, key, validity_days, sans)
            else:
                cert = CertificateBuilder.build_self_signed_certificate(
                    subject_name, key, validity_days, sans
                )
            return serialize_certificate(cert), serialize_private_key(key, passphrase)
        except (ValueError, TypeError) as e:
            raise ToolkitError(f"self-signed issuance failed: {e}", {"name": name}) from e

    def issue_csr(
        self,
        name: str,
        sans: list[str] | tuple[str, ...],
        key_size: int | None = None,
        passphrase: str | None = None,
        subject: str | None = None,
    ) -> tuple[bytes, bytes]:
        """Generate a key and a CSR for it.

        Returns:
            Tuple of (csr_pem, key_pem)
        """
        try:
            key = generate_private_key(key_size or self.default_key_size)
            csr = CertificateBuilder.build_csr(build_subject(name, subject), key, sans)
            return serialize_csr(csr), serialize_private_key(key, passphrase)
        except (ValueError, TypeError) as e:
            raise ToolkitError(f"CSR issuance failed: {e}", {"name": name}) from e

    def sign_csr(
        self,
        csr_pem: bytes,
        ca_cert_pem: bytes,
        ca_key_pem: bytes,
        ca_passphrase: str | None,
        validity_days: int,
        is_ca: bool = False,
        sans: list[str] | tuple[str, ...] = (),
    ) -> bytes:
        """Sign a CSR with a CA key.

        Raises:
            ToolkitError: If the CA key cannot be decrypted or the CSR is invalid
        """
        try:
            ca_key = deserialize_private_key(ca_key_pem, ca_passphrase)
        except (ValueError, TypeError) as e:
            raise ToolkitError(
                "cannot load CA private key (wrong or missing passphrase?)",
                {"reason": type(e).__name__},
            ) from e

        try:
            csr = deserialize_csr(csr_pem)
            ca_cert: x509.Certificate = deserialize_certificate(ca_cert_pem)
            cert = CertificateBuilder.build_signed_certificate(
                csr, ca_cert, ca_key, validity_days, is_ca=is_ca, sans=sans
            )
        except (ValueError, TypeError) as e:
            raise ToolkitError(f"CSR signing failed: {e}") from e

        logger.debug("Signed CSR", extra={"action": "sign_csr"})
        return serialize_certificate(cert)
