"""Error taxonomy for the certificate lifecycle engine.

Every error carries a machine-readable code and structured details so that
batch results can be logged and reported without string matching.
Details must never contain passphrases or key material.
"""

from typing import Any


class CertLifecycleError(Exception):
    """Base exception for certificate lifecycle errors."""

    code = "CERT_INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {"code": self.code, "message": self.message, "details": self.details}


class CertificateInputError(CertLifecycleError):
    """Certificate file missing, unreadable, or not parseable."""

    code = "CERT_INPUT_INVALID"


class ChainResolutionError(CertLifecycleError):
    """No usable signer could be found for a renewal."""

    code = "CERT_CHAIN_UNRESOLVED"


class PassphraseTimeoutError(CertLifecycleError):
    """Operator did not answer a passphrase request in time."""

    code = "CERT_PASSPHRASE_TIMEOUT"


class PassphraseRejectedError(CertLifecycleError):
    """Operator explicitly declined to provide a passphrase."""

    code = "CERT_PASSPHRASE_REJECTED"


class ToolkitError(CertLifecycleError):
    """Key generation, CSR creation or signing failed."""

    code = "CERT_TOOLKIT_FAILED"


class MigrationError(CertLifecycleError):
    """Policy could not be moved to the renewed certificate's fingerprint."""

    code = "CERT_MIGRATION_FAILED"


class DeploymentError(CertLifecycleError):
    """A single deployment action failed."""

    code = "CERT_DEPLOY_FAILED"
