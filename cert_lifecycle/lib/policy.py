"""Per-certificate policy and deployment action types.

Policies are persisted as camelCase JSON keyed by fingerprint; these classes
are the in-memory form and own the conversion in both directions.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, ClassVar, NotRequired, TypedDict, Union


class PreviousVersionDocument(TypedDict):
    """Persisted audit entry for a retired certificate generation."""

    fingerprint: str
    validFrom: str | None
    validTo: str | None
    backupCertPath: str | None
    backupKeyPath: str | None
    renewedAt: str


class PolicyDocument(TypedDict):
    """Persisted policy record for one fingerprint."""

    autoRenew: bool
    renewDaysBeforeExpiry: NotRequired[int | None]
    deployActions: list[dict[str, Any]]
    domains: list[str]
    previousVersions: list[PreviousVersionDocument]
    signWithCA: NotRequired[bool | None]
    caFingerprint: NotRequired[str | None]
    validityDays: NotRequired[int | None]


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class CopyAction:
    """Copy certificate and private key to a file or directory."""

    type: ClassVar[str] = "copy"
    destination: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "destination": self.destination}


@dataclass(frozen=True)
class DockerRestartAction:
    """Restart a container by id or name."""

    type: ClassVar[str] = "docker-restart"
    container_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "containerId": self.container_id}


@dataclass(frozen=True)
class CommandAction:
    """Run an operator-supplied shell command."""

    type: ClassVar[str] = "command"
    command: str
    cwd: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "command": self.command}
        if self.cwd:
            data["cwd"] = self.cwd
        return data


@dataclass(frozen=True)
class UnknownAction:
    """Action whose type this engine does not implement; kept verbatim."""

    type: str
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.raw)


DeployAction = Union[CopyAction, DockerRestartAction, CommandAction, UnknownAction]


def parse_action(raw: dict[str, Any]) -> DeployAction:
    """Convert a persisted action dict into its typed variant.

    Required fields that are missing are kept as empty strings so the runner
    can report them as failures instead of losing the action.
    """
    action_type = str(raw.get("type", ""))
    if action_type == CopyAction.type:
        return CopyAction(destination=str(raw.get("destination") or ""))
    if action_type == DockerRestartAction.type:
        container = raw.get("containerId") or raw.get("containerName") or ""
        return DockerRestartAction(container_id=str(container))
    if action_type == CommandAction.type:
        return CommandAction(command=str(raw.get("command") or ""), cwd=raw.get("cwd"))
    return UnknownAction(type=action_type or "unknown", raw=dict(raw))


@dataclass(frozen=True)
class PreviousVersion:
    """One retired generation of a certificate."""

    fingerprint: str
    valid_from: datetime | None
    valid_to: datetime | None
    backup_cert_path: str | None
    backup_key_path: str | None
    renewed_at: datetime

    def to_dict(self) -> PreviousVersionDocument:
        return PreviousVersionDocument(
            fingerprint=self.fingerprint,
            validFrom=_format_datetime(self.valid_from),
            validTo=_format_datetime(self.valid_to),
            backupCertPath=self.backup_cert_path,
            backupKeyPath=self.backup_key_path,
            renewedAt=self.renewed_at.isoformat(),
        )

    @classmethod
    def from_dict(cls, data: PreviousVersionDocument) -> "PreviousVersion":
        renewed_at = _parse_datetime(data.get("renewedAt"))
        if renewed_at is None:
            raise ValueError("previous version entry missing renewedAt")
        return cls(
            fingerprint=data["fingerprint"],
            valid_from=_parse_datetime(data.get("validFrom")),
            valid_to=_parse_datetime(data.get("validTo")),
            backup_cert_path=data.get("backupCertPath"),
            backup_key_path=data.get("backupKeyPath"),
            renewed_at=renewed_at,
        )


@dataclass(frozen=True)
class CertificatePolicy:
    """Operator configuration for one certificate generation."""

    auto_renew: bool
    renew_days_before_expiry: int | None = None
    deploy_actions: tuple[DeployAction, ...] = ()
    domains: tuple[str, ...] = ()
    previous_versions: tuple[PreviousVersion, ...] = ()
    sign_with_ca: bool | None = None
    ca_fingerprint: str | None = None
    validity_days: int | None = None

    def with_previous_version(self, entry: PreviousVersion) -> "CertificatePolicy":
        """Return a copy with one more history entry appended."""
        return replace(self, previous_versions=(*self.previous_versions, entry))

    def to_dict(self) -> PolicyDocument:
        document = PolicyDocument(
            autoRenew=self.auto_renew,
            deployActions=[action.to_dict() for action in self.deploy_actions],
            domains=list(self.domains),
            previousVersions=[entry.to_dict() for entry in self.previous_versions],
        )
        if self.renew_days_before_expiry is not None:
            document["renewDaysBeforeExpiry"] = self.renew_days_before_expiry
        if self.sign_with_ca is not None:
            document["signWithCA"] = self.sign_with_ca
        if self.ca_fingerprint:
            document["caFingerprint"] = self.ca_fingerprint
        if self.validity_days is not None:
            document["validityDays"] = self.validity_days
        return document

    @classmethod
    def from_dict(cls, data: PolicyDocument) -> "CertificatePolicy":
        renew_days = data.get("renewDaysBeforeExpiry")
        validity_days = data.get("validityDays")
        return cls(
            auto_renew=bool(data.get("autoRenew", False)),
            renew_days_before_expiry=int(renew_days) if renew_days is not None else None,
            deploy_actions=tuple(parse_action(raw) for raw in data.get("deployActions", [])),
            domains=tuple(data.get("domains", [])),
            previous_versions=tuple(
                PreviousVersion.from_dict(entry) for entry in data.get("previousVersions", [])
            ),
            sign_with_ca=data.get("signWithCA"),
            ca_fingerprint=data.get("caFingerprint"),
            validity_days=int(validity_days) if validity_days is not None else None,
        )
