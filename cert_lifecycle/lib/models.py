"""Record and result models for certificate lifecycle operations."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class CertClass(str, Enum):
    """Certificate classification used for validity and renewal policy."""

    ROOT_CA = "RootCA"
    INTERMEDIATE_CA = "IntermediateCA"
    STANDARD = "Standard"

    @property
    def is_ca(self) -> bool:
        return self is not CertClass.STANDARD


@dataclass(frozen=True)
class CertificateRecord:
    """Immutable snapshot of one certificate at a point in time.

    The fingerprint is only stable for one generation of a certificate:
    renewal produces a new one. Policy history (`previous_versions`) links
    generations together.
    """

    fingerprint: str
    name: str
    domains: tuple[str, ...]
    subject: str
    issuer: str
    valid_from: datetime | None
    valid_to: datetime | None
    cert_class: CertClass
    subject_key_id: str | None = None
    authority_key_id: str | None = None
    cert_path: Path | None = None
    key_path: Path | None = None
    has_passphrase: bool = False

    @property
    def is_ca(self) -> bool:
        return self.cert_class.is_ca

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict (camelCase keys)."""
        return {
            "fingerprint": self.fingerprint,
            "name": self.name,
            "domains": list(self.domains),
            "subject": self.subject,
            "issuer": self.issuer,
            "validFrom": self.valid_from.isoformat() if self.valid_from else None,
            "validTo": self.valid_to.isoformat() if self.valid_to else None,
            "certClass": self.cert_class.value,
            "subjectKeyId": self.subject_key_id,
            "authorityKeyId": self.authority_key_id,
            "certPath": str(self.cert_path) if self.cert_path else None,
            "keyPath": str(self.key_path) if self.key_path else None,
            "hasPassphrase": self.has_passphrase,
        }


@dataclass
class HierarchyNode:
    """One node of the derived trust forest.

    `record` is None for virtual group nodes such as "Unattached".
    """

    record: CertificateRecord | None
    label: str
    children: list["HierarchyNode"] = field(default_factory=list)

    @classmethod
    def for_record(cls, record: CertificateRecord) -> "HierarchyNode":
        return cls(record=record, label=record.name)

    @classmethod
    def group(cls, label: str) -> "HierarchyNode":
        return cls(record=None, label=label)

    @property
    def is_virtual(self) -> bool:
        return self.record is None

    @property
    def fingerprint(self) -> str | None:
        return self.record.fingerprint if self.record else None

    def walk(self, depth: int = 0) -> Iterator[tuple["HierarchyNode", int]]:
        """Yield (node, depth) pairs depth-first, this node first."""
        yield self, depth
        for child in self.children:
            yield from child.walk(depth + 1)

    def depth(self) -> int:
        """Number of levels in this subtree, counting this node."""
        if not self.children:
            return 1
        return 1 + max(child.depth() for child in self.children)


@dataclass(frozen=True)
class RenewalDecision:
    """Eligibility verdict for one certificate."""

    due: bool
    reason: str
    days_remaining: float | None = None


@dataclass
class RenewalResult:
    """Result from renewing a single certificate.

    On failure, `error` and `error_code` are set and no new material exists.
    """

    success: bool
    old_fingerprint: str
    new_fingerprint: str | None = None
    cert_path: Path | None = None
    key_path: Path | None = None
    backup_cert_path: Path | None = None
    backup_key_path: Path | None = None
    record: CertificateRecord | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def failure(cls, old_fingerprint: str, error: str, error_code: str) -> "RenewalResult":
        return cls(
            success=False,
            old_fingerprint=old_fingerprint,
            error=error,
            error_code=error_code,
        )


@dataclass
class ActionResult:
    """Outcome of one deployment action."""

    type: str
    success: bool
    error: str | None = None
    output: str | None = None


@dataclass
class DeployResult:
    """Aggregate outcome of a deployment action sequence."""

    success: bool
    results: list[ActionResult] = field(default_factory=list)


@dataclass
class RenewalOutcome:
    """Renewal plus its follow-up steps (migration, deployment)."""

    fingerprint: str
    name: str
    renewal: RenewalResult
    migration_error: str | None = None
    deploy: DeployResult | None = None

    @property
    def success(self) -> bool:
        return self.renewal.success


@dataclass
class RenewalCheckResult:
    """Summary of one batch renewal pass."""

    checked: int = 0
    renewal_needed: int = 0
    renewed: list[RenewalOutcome] = field(default_factory=list)
    failed: list[RenewalOutcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def renewed_count(self) -> int:
        return len(self.renewed)

    @property
    def failed_count(self) -> int:
        return len(self.failed)
