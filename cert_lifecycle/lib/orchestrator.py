"""Renewal orchestration: signer resolution, re-keying, backup and write-out."""

import logging
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .cert_utils import deserialize_certificate, find_key_file, validate_certificate_chain
from .errors import (
    CertLifecycleError,
    ChainResolutionError,
    CertificateInputError,
    PassphraseRejectedError,
    ToolkitError,
)
from .models import CertClass, CertificateRecord, RenewalResult
from .passphrase import PassphraseBroker
from .policy import CertificatePolicy
from .policy_store import JsonPolicyStore
from .toolkit import CAToolkit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signer:
    """A CA ready to sign: its record, PEM material and unlocked passphrase."""

    record: CertificateRecord
    cert_pem: bytes
    key_pem: bytes
    passphrase: str | None


def resolve_key_path(cert_path: Path) -> Path:
    """Where to write a new key for a certificate that has no paired key.

    Raises:
        CertificateInputError: If <stem>.key exists but was not paired with the
            certificate, since it may belong to another certificate
    """
    key_path = cert_path.with_suffix(".key")
    if key_path.exists():
        raise CertificateInputError(
            f"{key_path.name} exists but does not belong to {cert_path.name}",
            {"path": str(key_path)},
        )
    return key_path


def backup_path_for(path: Path, stamp: str) -> Path:
    """`<path>.<stamp>.bak`, with -1, -2... appended while the name is taken."""
    candidate = path.with_name(f"{path.name}.{stamp}.bak")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.name}.{stamp}-{counter}.bak")
        counter += 1
    return candidate


def _stage(path: Path, data: bytes, mode: int | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        if mode is not None:
            os.chmod(tmp_name, mode)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return Path(tmp_name)


def replace_together(files: list[tuple[Path, bytes, int | None]]) -> None:
    """Write several files so that either all of them change or none do.

    Every file is staged next to its target first. Targets are then replaced
    in order; if one replace fails, the targets already replaced get their
    previous content back.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for path, data, mode in files:
            staged.append((path, _stage(path, data, mode)))
    except BaseException:
        for _, tmp in staged:
            tmp.unlink(missing_ok=True)
        raise

    saved: dict[Path, Path | None] = {}
    replaced: list[Path] = []
    try:
        for path, _ in staged:
            saved[path] = None
            if path.exists():
                original = _stage(path, path.read_bytes())
                shutil.copymode(path, original)
                saved[path] = original
        for path, tmp in staged:
            os.replace(tmp, path)
            replaced.append(path)
    except BaseException:
        for path in reversed(replaced):
            original = saved[path]
            if original is None:
                path.unlink(missing_ok=True)
            else:
                os.replace(original, path)
                saved[path] = None
        raise
    finally:
        for _, tmp in staged:
            tmp.unlink(missing_ok=True)
        for original in saved.values():
            if original is not None:
                original.unlink(missing_ok=True)


class RenewalOrchestrator:
    """Renews one certificate at a time per path, following its chain of trust."""

    def __init__(
        self,
        toolkit: CAToolkit,
        policy_store: JsonPolicyStore,
        passphrase_broker: PassphraseBroker | None = None,
    ) -> None:
        self.toolkit = toolkit
        self.policy_store = policy_store
        self.passphrase_broker = passphrase_broker
        self._path_locks: dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            return self._path_locks.setdefault(path.resolve(), threading.Lock())

    def renew(
        self,
        record: CertificateRecord,
        inventory: list[CertificateRecord],
        domains: list[str] | None = None,
    ) -> RenewalResult:
        """Renew a certificate and return the outcome; failures never raise.

        Args:
            record: Certificate to renew
            inventory: All known certificates, used to find signing CAs
            domains: Replacement domain list (CN stays the same)

        Returns:
            RenewalResult describing new material and backups, or the failure
        """
        if record.cert_path is None:
            error = CertificateInputError("certificate has no file path", {"name": record.name})
            return RenewalResult.failure(record.fingerprint, error.message, error.code)

        with self._lock_for(record.cert_path):
            try:
                result = self._renew(record, record.cert_path, inventory, domains)
            except CertLifecycleError as e:
                logger.error(
                    "Renewal of %s failed: %s",
                    record.name,
                    e,
                    extra={"fingerprint": record.fingerprint},
                )
                return RenewalResult.failure(record.fingerprint, e.message, e.code)
            except OSError as e:
                logger.error(
                    "Renewal of %s failed writing files: %s",
                    record.name,
                    e,
                    extra={"fingerprint": record.fingerprint},
                )
                return RenewalResult.failure(
                    record.fingerprint, str(e), CertLifecycleError.code
                )

        logger.info(
            "Renewed %s",
            record.name,
            extra={"fingerprint": result.new_fingerprint, "action": "renew"},
        )
        return result

    def _acquire_passphrase(self, record: CertificateRecord) -> str:
        if self.passphrase_broker is None:
            raise PassphraseRejectedError(
                f"key for {record.name} is encrypted and no operator channel is configured",
                {"fingerprint": record.fingerprint},
            )
        return self.passphrase_broker.obtain(record)

    def _load_signer(self, ca: CertificateRecord) -> Signer:
        if ca.cert_path is None or not ca.cert_path.is_file():
            raise ChainResolutionError(
                f"signing CA {ca.name} has no readable certificate", {"fingerprint": ca.fingerprint}
            )
        key_path = find_key_file(ca.cert_path, ca.key_path, strict=True)
        if key_path is None:
            raise ChainResolutionError(
                f"signing CA {ca.name} has no private key", {"fingerprint": ca.fingerprint}
            )
        passphrase = self._acquire_passphrase(ca) if ca.has_passphrase else None
        return Signer(
            record=ca,
            cert_pem=ca.cert_path.read_bytes(),
            key_pem=key_path.read_bytes(),
            passphrase=passphrase,
        )

    def _resolve_signer(
        self,
        record: CertificateRecord,
        policy: CertificatePolicy,
        inventory: list[CertificateRecord],
    ) -> Signer | None:
        """Pick the signing CA, or None for self-signed renewals."""
        others = [other for other in inventory if other.fingerprint != record.fingerprint]

        if record.cert_class is CertClass.ROOT_CA:
            return None

        if record.cert_class is CertClass.INTERMEDIATE_CA:
            root = next((ca for ca in others if ca.cert_class is CertClass.ROOT_CA), None)
            if root is None:
                raise ChainResolutionError(
                    f"no root CA available to sign {record.name}",
                    {"fingerprint": record.fingerprint},
                )
            return self._load_signer(root)

        sign_with_ca = policy.sign_with_ca
        if sign_with_ca is None:
            sign_with_ca = self.policy_store.global_defaults().sign_standard_with_ca
        if not sign_with_ca:
            return None

        ca: CertificateRecord | None = None
        if policy.ca_fingerprint:
            ca = next(
                (c for c in others if c.is_ca and c.fingerprint == policy.ca_fingerprint), None
            )
        if ca is None:
            ca = next((c for c in others if c.cert_class is CertClass.INTERMEDIATE_CA), None)
        if ca is None:
            ca = next((c for c in others if c.cert_class is CertClass.ROOT_CA), None)
        if ca is None:
            raise ChainResolutionError(
                f"no CA available to sign {record.name}", {"fingerprint": record.fingerprint}
            )
        return self._load_signer(ca)

    def _issue(
        self,
        record: CertificateRecord,
        sans: list[str],
        validity_days: int,
        key_size: int,
        passphrase: str | None,
        signer: Signer | None,
    ) -> tuple[bytes, bytes]:
        if signer is None:
            cert_class = CertClass.ROOT_CA if record.cert_class is CertClass.ROOT_CA else CertClass.STANDARD
            return self.toolkit.issue_self_signed(
                record.name, sans, validity_days, cert_class, key_size, passphrase, record.subject
            )

        csr_pem, key_pem = self.toolkit.issue_csr(
            record.name, sans, key_size, passphrase, record.subject
        )
        cert_pem = self.toolkit.sign_csr(
            csr_pem,
            signer.cert_pem,
            signer.key_pem,
            signer.passphrase,
            validity_days,
            is_ca=record.is_ca,
            sans=sans,
        )
        if not validate_certificate_chain(
            deserialize_certificate(cert_pem), deserialize_certificate(signer.cert_pem)
        ):
            raise ToolkitError(
                f"certificate issued for {record.name} does not verify against {signer.record.name}",
                {"fingerprint": record.fingerprint, "signer": signer.record.fingerprint},
            )
        return cert_pem, key_pem

    def _backup(self, record: CertificateRecord, paths: list[Path]) -> list[Path | None]:
        valid_from = record.valid_from or datetime.now(timezone.utc)
        stamp = valid_from.strftime("%Y-%m-%d")
        backups: list[Path | None] = []
        for path in paths:
            if not path.exists():
                backups.append(None)
                continue
            backup = backup_path_for(path, stamp)
            shutil.copy2(path, backup)
            backups.append(backup)
        return backups

    def _renew(
        self,
        record: CertificateRecord,
        cert_path: Path,
        inventory: list[CertificateRecord],
        domains: list[str] | None,
    ) -> RenewalResult:
        defaults = self.policy_store.global_defaults()
        policy = self.policy_store.get(record.fingerprint)

        sans = list(domains or policy.domains or record.domains)
        validity_days = policy.validity_days or defaults.validity_for(record.cert_class)
        key_size = defaults.key_size_for(record.cert_class)
        key_path = record.key_path or resolve_key_path(cert_path)

        signer = self._resolve_signer(record, policy, inventory)
        passphrase = self._acquire_passphrase(record) if record.has_passphrase else None

        cert_pem, key_pem = self._issue(record, sans, validity_days, key_size, passphrase, signer)

        backup_cert: Path | None = None
        backup_key: Path | None = None
        if defaults.enable_backups:
            backup_cert, backup_key = self._backup(record, [cert_path, key_path])

        replace_together([(key_path, key_pem, 0o600), (cert_path, cert_pem, None)])

        new_record = self.toolkit.extract_metadata(
            cert_pem, cert_path, key_path, has_passphrase=passphrase is not None
        )
        return RenewalResult(
            success=True,
            old_fingerprint=record.fingerprint,
            new_fingerprint=new_record.fingerprint,
            cert_path=cert_path,
            key_path=key_path,
            backup_cert_path=backup_cert,
            backup_key_path=backup_key,
            record=new_record,
        )
