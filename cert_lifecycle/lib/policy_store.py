"""JSON-file policy store keyed by certificate fingerprint."""

import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from .config import GlobalDefaults
from .policy import CertificatePolicy, PolicyDocument

logger = logging.getLogger(__name__)


class JsonPolicyStore:
    """Persists policies as one JSON document.

    Every mutation is a read-modify-write under a lock, written atomically
    via a temp file and `os.replace`.
    """

    def __init__(self, path: Path, defaults: GlobalDefaults | None = None) -> None:
        self.path = path
        self.defaults = defaults or GlobalDefaults()
        self._lock = threading.RLock()

    def _read(self) -> dict[str, PolicyDocument]:
        if not self.path.exists():
            return {}
        text = self.path.read_text()
        if not text.strip():
            return {}
        return json.loads(text)

    def _write(self, documents: dict[str, PolicyDocument]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as handle:
                json.dump(documents, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def default_policy(self) -> CertificatePolicy:
        return CertificatePolicy(auto_renew=self.defaults.auto_renew_by_default)

    def global_defaults(self) -> GlobalDefaults:
        return self.defaults

    def find(self, fingerprint: str) -> CertificatePolicy | None:
        """Stored policy for a fingerprint, or None when none is stored."""
        with self._lock:
            document = self._read().get(fingerprint)
        return CertificatePolicy.from_dict(document) if document is not None else None

    def get(self, fingerprint: str) -> CertificatePolicy:
        """Effective policy: the stored one, else defaults."""
        return self.find(fingerprint) or self.default_policy()

    def set(self, fingerprint: str, policy: CertificatePolicy) -> None:
        with self._lock:
            documents = self._read()
            documents[fingerprint] = policy.to_dict()
            self._write(documents)
        logger.debug("Stored policy", extra={"fingerprint": fingerprint})

    def remove(self, fingerprint: str) -> bool:
        with self._lock:
            documents = self._read()
            if documents.pop(fingerprint, None) is None:
                return False
            self._write(documents)
        return True

    def update(
        self, fingerprint: str, change: Callable[[CertificatePolicy], CertificatePolicy]
    ) -> CertificatePolicy:
        """Apply `change` to the effective policy and store the result."""
        with self._lock:
            policy = change(self.get(fingerprint))
            self.set(fingerprint, policy)
        return policy

    def all(self) -> dict[str, CertificatePolicy]:
        with self._lock:
            documents = self._read()
        return {fp: CertificatePolicy.from_dict(doc) for fp, doc in documents.items()}
