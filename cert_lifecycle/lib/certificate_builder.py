"""Certificate builder for X.509 certificate construction."""

from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .cert_utils import (
    build_san,
    extract_csr_public_key,
    generate_serial_number,
    validate_csr_signature,
)

CA_KEY_USAGE = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=False,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=True,
    crl_sign=True,
    encipher_only=False,
    decipher_only=False,
)

LEAF_KEY_USAGE = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=True,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=False,
    crl_sign=False,
    encipher_only=False,
    decipher_only=False,
)


def build_subject(common_name: str, subject: str | None = None) -> x509.Name:
    """Reuse a full RFC 4514 subject when known, else a CN-only name."""
    if subject:
        return x509.Name.from_rfc4514_string(subject)
    return x509.Name([x509.NameAttribute(x509.NameOID.COMMON_NAME, common_name)])


def _authority_key_identifier(issuer_cert: x509.Certificate) -> x509.AuthorityKeyIdentifier:
    try:
        ski = issuer_cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value)
    except x509.ExtensionNotFound:
        public_key = issuer_cert.public_key()
        if not isinstance(public_key, RSAPublicKey):
            raise ValueError("issuer public key must be RSA type")
        return x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key)


def _base_builder(
    subject: x509.Name,
    issuer: x509.Name,
    public_key: RSAPublicKey,
    validity_days: int,
    is_ca: bool,
    sans: list[str] | tuple[str, ...],
) -> x509.CertificateBuilder:
    not_before = datetime.now(timezone.utc)
    not_after = not_before + timedelta(days=validity_days)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(generate_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.BasicConstraints(ca=is_ca, path_length=None),
            critical=True,
        )
        .add_extension(
            CA_KEY_USAGE if is_ca else LEAF_KEY_USAGE,
            critical=is_ca,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
    )
    if sans:
        builder = builder.add_extension(build_san(sans), critical=False)
    return builder


class CertificateBuilder:
    """Builds X.509 certificates for Root CAs, CA-signed and self-signed certificates."""

    @staticmethod
    def build_root_ca(
        subject: x509.Name,
        private_key: RSAPrivateKey,
        validity_days: int,
        sans: list[str] | tuple[str, ...] = (),
    ) -> x509.Certificate:
        """Build self-signed Root CA certificate.

        Args:
            subject: Distinguished name for certificate subject and issuer
            private_key: RSA private key for signing
            validity_days: Certificate validity period in days
            sans: Subject alternative names to carry over

        Returns:
            Self-signed X.509 certificate with CA extensions
        """
        public_key = private_key.public_key()
        builder = _base_builder(subject, subject, public_key, validity_days, True, sans)
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key),
            critical=False,
        )
        return builder.sign(private_key, hashes.SHA256())

    @staticmethod
    def build_self_signed_certificate(
        subject: x509.Name,
        private_key: RSAPrivateKey,
        validity_days: int,
        sans: list[str] | tuple[str, ...] = (),
    ) -> x509.Certificate:
        """Build self-signed end-entity certificate (no CA flag)."""
        public_key = private_key.public_key()
        builder = _base_builder(subject, subject, public_key, validity_days, False, sans)
        return builder.sign(private_key, hashes.SHA256())

    @staticmethod
    def build_signed_certificate(
        csr: x509.CertificateSigningRequest,
        issuer_cert: x509.Certificate,
        issuer_key: RSAPrivateKey,
        validity_days: int,
        is_ca: bool = False,
        sans: list[str] | tuple[str, ...] = (),
    ) -> x509.Certificate:
        """Build certificate from CSR, signed by a CA.

        Traditional PKI flow: CSR contains subject DN and public key.
        Signer validates CSR signature and issues certificate. The
        AuthorityKeyIdentifier is taken from the issuer's SKI so the result
        chains by key identifier.

        Args:
            csr: Certificate signing request
            issuer_cert: CA certificate (issuer)
            issuer_key: CA private key for signing
            validity_days: Certificate validity period in days
            is_ca: Issue an intermediate CA instead of an end-entity cert
            sans: Subject alternative names; when empty the CSR's SAN is used

        Returns:
            X.509 certificate signed by issuer_key

        Raises:
            ValueError: If CSR signature is invalid
        """
        if not validate_csr_signature(csr):
            raise ValueError("CSR signature validation failed")

        public_key = extract_csr_public_key(csr)
        if not sans:
            try:
                csr_san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
                sans = [
                    *csr_san.value.get_values_for_type(x509.DNSName),
                    *(str(ip) for ip in csr_san.value.get_values_for_type(x509.IPAddress)),
                ]
            except x509.ExtensionNotFound:
                sans = ()

        builder = _base_builder(
            csr.subject, issuer_cert.subject, public_key, validity_days, is_ca, sans
        ).add_extension(
            _authority_key_identifier(issuer_cert),
            critical=False,
        )
        return builder.sign(issuer_key, hashes.SHA256())

    @staticmethod
    def build_csr(
        subject: x509.Name,
        private_key: RSAPrivateKey,
        sans: list[str] | tuple[str, ...] = (),
    ) -> x509.CertificateSigningRequest:
        """Build CSR signed by the requester's own key."""
        builder = x509.CertificateSigningRequestBuilder().subject_name(subject)
        if sans:
            builder = builder.add_extension(build_san(sans), critical=False)
        return builder.sign(private_key, hashes.SHA256())
