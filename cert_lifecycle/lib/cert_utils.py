"""Certificate utility functions for keys, serialization and metadata extraction."""

import ipaddress
import uuid
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .errors import CertificateInputError
from .models import CertClass, CertificateRecord

CERT_EXTENSIONS = (".crt", ".pem", ".cer", ".cert")
DEFAULT_KEY_FILENAME = "private.key"


def generate_private_key(key_size: int = 2048) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey, passphrase: str | None = None) -> bytes:
    """Serialize private key to PEM (PKCS8), encrypted when a passphrase is given."""
    encryption: serialization.KeySerializationEncryption
    if passphrase:
        encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))
    else:
        encryption = serialization.NoEncryption()
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def deserialize_private_key(pem_data: bytes, passphrase: str | None = None) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes.

    Raises:
        TypeError: If the key is encrypted and no passphrase was given
        ValueError: If the passphrase is wrong or the key is not RSA
    """
    password = passphrase.encode("utf-8") if passphrase else None
    key = serialization.load_pem_private_key(pem_data, password=password)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("expected RSA private key")
    return key


def key_matches_certificate(key_pem: bytes, cert: x509.Certificate) -> bool | None:
    """Compare a private key's public half with a certificate's public key.

    Returns:
        True or False, or None when the key is encrypted and cannot be checked
    """
    if is_key_encrypted(key_pem):
        return None
    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError):
        return False
    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    return key.public_key().public_bytes(
        serialization.Encoding.DER, spki
    ) == cert.public_key().public_bytes(serialization.Encoding.DER, spki)


def is_key_encrypted(pem_data: bytes) -> bool:
    """Return True if a PEM private key needs a passphrase.

    Covers PKCS8 ("BEGIN ENCRYPTED PRIVATE KEY") and traditional OpenSSL
    ("Proc-Type: 4,ENCRYPTED") encodings.
    """
    return b"ENCRYPTED" in pem_data


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes, falling back to DER."""
    if b"-----BEGIN CERTIFICATE-----" in pem_data:
        return x509.load_pem_x509_certificate(pem_data)
    return x509.load_der_x509_certificate(pem_data)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def deserialize_csr(pem_data: bytes) -> x509.CertificateSigningRequest:
    """Deserialize CSR from PEM bytes."""
    return x509.load_pem_x509_csr(pem_data)


def generate_serial_number() -> int:
    """Generate certificate serial number from UUID4 (128-bit, ~122 random bits)."""
    return uuid.uuid4().int


def format_hex(data: bytes, separator: str = "") -> str:
    """Upper-case hex, optionally separated per byte (e.g. 3A:F2:B1)."""
    return separator.join(f"{byte:02X}" for byte in data)


def certificate_fingerprint(cert: x509.Certificate) -> str:
    """SHA-256 fingerprint of the DER encoding, colon separated."""
    return format_hex(cert.fingerprint(hashes.SHA256()), separator=":")


def get_subject_key_id(cert: x509.Certificate) -> str | None:
    """Subject Key Identifier as hex, None for certs without the extension."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
    except x509.ExtensionNotFound:
        return None
    return format_hex(ext.value.digest)


def get_authority_key_id(cert: x509.Certificate) -> str | None:
    """Authority Key Identifier keyid as hex, None when absent."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier)
    except x509.ExtensionNotFound:
        return None
    if ext.value.key_identifier is None:
        return None
    return format_hex(ext.value.key_identifier)


def is_ca_certificate(cert: x509.Certificate) -> bool:
    """Return True if BasicConstraints marks the certificate as a CA."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return ext.value.ca


def classify_certificate(cert: x509.Certificate) -> CertClass:
    """RootCA if CA and self-issued, IntermediateCA if CA otherwise, else Standard."""
    if not is_ca_certificate(cert):
        return CertClass.STANDARD
    if cert.subject == cert.issuer:
        return CertClass.ROOT_CA
    return CertClass.INTERMEDIATE_CA


def get_common_name(name: x509.Name) -> str | None:
    attributes = name.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    if not attributes:
        return None
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8")


def get_domains(cert: x509.Certificate) -> tuple[str, ...]:
    """CN first, then SAN DNS names and IP literals, without duplicates."""
    domains: list[str] = []
    common_name = get_common_name(cert.subject)
    if common_name:
        domains.append(common_name)

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return tuple(domains)

    for value in san.get_values_for_type(x509.DNSName):
        if value not in domains:
            domains.append(value)
    for address in san.get_values_for_type(x509.IPAddress):
        if str(address) not in domains:
            domains.append(str(address))
    return tuple(domains)


def build_san(domains: list[str] | tuple[str, ...]) -> x509.SubjectAlternativeName:
    """Build a SAN extension value, treating IP literals as IPAddress entries."""
    names: list[x509.GeneralName] = []
    for domain in domains:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(domain)))
        except ValueError:
            names.append(x509.DNSName(domain))
    return x509.SubjectAlternativeName(names)


def extract_certificate_metadata(
    cert: x509.Certificate,
    cert_path: Path | None = None,
    key_path: Path | None = None,
    has_passphrase: bool = False,
) -> CertificateRecord:
    """Extract a CertificateRecord from a parsed certificate.

    Args:
        cert: X.509 certificate to extract metadata from
        cert_path: Where the certificate lives on disk, if known
        key_path: Where its private key lives, if known
        has_passphrase: Whether that private key is encrypted

    Returns:
        CertificateRecord with identity, validity and classification fields
    """
    name = get_common_name(cert.subject)
    if not name:
        name = cert_path.stem if cert_path else cert.subject.rfc4514_string()

    return CertificateRecord(
        fingerprint=certificate_fingerprint(cert),
        name=name,
        domains=get_domains(cert),
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        valid_from=cert.not_valid_before_utc,
        valid_to=cert.not_valid_after_utc,
        cert_class=classify_certificate(cert),
        subject_key_id=get_subject_key_id(cert),
        authority_key_id=get_authority_key_id(cert),
        cert_path=cert_path,
        key_path=key_path,
        has_passphrase=has_passphrase,
    )


def load_certificate_file(cert_path: Path) -> x509.Certificate:
    """Read and parse a certificate file.

    Raises:
        CertificateInputError: If the file is missing or not a certificate
    """
    try:
        data = cert_path.read_bytes()
    except OSError as e:
        raise CertificateInputError(
            f"cannot read certificate file: {cert_path}", {"path": str(cert_path)}
        ) from e
    try:
        return deserialize_certificate(data)
    except ValueError as e:
        raise CertificateInputError(
            f"not a parseable certificate: {cert_path}", {"path": str(cert_path)}
        ) from e


def key_file_candidates(cert_path: Path) -> list[Path]:
    """Sibling key names that may belong to a certificate: private.key, <stem>.key."""
    return [cert_path.parent / DEFAULT_KEY_FILENAME, cert_path.with_suffix(".key")]


def find_key_file(
    cert_path: Path, configured: Path | None = None, strict: bool = False
) -> Path | None:
    """Best-effort search for the private key that belongs to a certificate.

    Order: configured path, sibling private.key, <stem>.key, then (unless
    strict) the first *.key file in the certificate's directory.
    """
    if configured is not None and configured.is_file():
        return configured

    for candidate in key_file_candidates(cert_path):
        if candidate.is_file():
            return candidate

    directory = cert_path.parent
    if not strict and directory.is_dir():
        key_files = sorted(path for path in directory.glob("*.key") if path.is_file())
        if key_files:
            return key_files[0]
    return None


def validate_csr_signature(csr: x509.CertificateSigningRequest) -> bool:
    """Verify CSR self-signature to prove private key possession."""
    try:
        return csr.is_signature_valid
    except Exception:
        return False


def extract_csr_public_key(csr: x509.CertificateSigningRequest) -> rsa.RSAPublicKey:
    """Extract public key from CSR.

    Raises:
        ValueError: If public key is not RSA type
    """
    public_key = csr.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("CSR public key must be RSA type")
    return public_key


def validate_certificate_chain(cert: x509.Certificate, issuer_cert: x509.Certificate) -> bool:
    """Return True if cert's signature verifies against issuer_cert."""
    try:
        cert.verify_directly_issued_by(issuer_cert)
        return True
    except Exception:
        return False
