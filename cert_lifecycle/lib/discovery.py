"""Certificate discovery on the local filesystem."""

import logging
from pathlib import Path

from cryptography import x509

from .cert_utils import (
    CERT_EXTENSIONS,
    is_key_encrypted,
    key_file_candidates,
    key_matches_certificate,
    load_certificate_file,
    serialize_certificate,
)
from .errors import CertificateInputError
from .models import CertificateRecord
from .toolkit import CAToolkit

logger = logging.getLogger(__name__)

SKIP_DIRECTORIES = {"backups", "archive"}


def _is_certificate_name(path: Path) -> bool:
    return path.suffix.lower() in CERT_EXTENSIONS and ".bak" not in path.suffixes


def _is_candidate(path: Path, root: Path) -> bool:
    if not path.is_file() or not _is_certificate_name(path):
        return False
    relative_parts = path.relative_to(root).parts
    if any(part.startswith(".") for part in relative_parts):
        return False
    return not any(part in SKIP_DIRECTORIES for part in relative_parts[:-1])


def _sole_certificate(path: Path) -> bool:
    siblings = [
        sibling
        for sibling in path.parent.iterdir()
        if sibling.is_file() and not sibling.name.startswith(".") and _is_certificate_name(sibling)
    ]
    return siblings == [path]


def pair_key_file(path: Path, cert: x509.Certificate) -> Path | None:
    """Find the sibling private key that belongs to a certificate.

    Only private.key and <stem>.key are considered. An unencrypted key must
    match the certificate's public key. An encrypted key cannot be checked,
    so it is paired only as <stem>.key or when the certificate is alone in
    its directory.
    """
    for candidate in key_file_candidates(path):
        if not candidate.is_file():
            continue
        try:
            key_pem = candidate.read_bytes()
        except OSError:
            logger.warning("Cannot read key file %s", candidate)
            continue
        matches = key_matches_certificate(key_pem, cert)
        if matches:
            return candidate
        if matches is None and (candidate == path.with_suffix(".key") or _sole_certificate(path)):
            return candidate
        logger.debug("Key file %s does not belong to %s", candidate, path)
    return None


def load_certificate(path: Path, toolkit: CAToolkit) -> CertificateRecord:
    """Build a record for one certificate file, pairing its key if present.

    Raises:
        CertificateInputError: If the file cannot be read or parsed
    """
    cert = load_certificate_file(path)
    key_path = pair_key_file(path, cert)
    has_passphrase = False
    if key_path is not None:
        try:
            has_passphrase = is_key_encrypted(key_path.read_bytes())
        except OSError:
            logger.warning("Cannot read key file %s", key_path)
            key_path = None

    return toolkit.extract_metadata(serialize_certificate(cert), path, key_path, has_passphrase)


def discover_certificates(certs_dir: Path, toolkit: CAToolkit) -> list[CertificateRecord]:
    """Scan certs_dir recursively and return one record per parseable certificate.

    Hidden paths, backup/archive directories and `.bak` files are ignored.
    Unreadable or unparseable files are logged and skipped.
    """
    if not certs_dir.is_dir():
        logger.warning("Certificate directory does not exist: %s", certs_dir)
        return []

    records: list[CertificateRecord] = []
    for path in sorted(certs_dir.rglob("*")):
        if not _is_candidate(path, certs_dir):
            continue
        try:
            records.append(load_certificate(path, toolkit))
        except CertificateInputError as e:
            logger.warning("Skipping certificate: %s", e)

    logger.info("Discovered %d certificates in %s", len(records), certs_dir)
    return records
