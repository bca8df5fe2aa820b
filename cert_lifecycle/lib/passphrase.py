"""Passphrase acquisition for encrypted CA keys.

`PassphraseCache` keeps remembered passphrases in an AES-GCM encrypted file.
`PassphraseBroker` asks the operator through an `OperatorChannel` and blocks
only the requesting renewal until the operator answers or the request times
out.
"""

import getpass
import json
import logging
import os
import tempfile
import threading
import uuid
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import PassphraseRejectedError, PassphraseTimeoutError
from .models import CertificateRecord

logger = logging.getLogger(__name__)

KEY_FILENAME = ".encryption-key"
CACHE_FILENAME = ".passphrases.enc"
DEFAULT_TIMEOUT_SECONDS = 120.0
NONCE_SIZE = 12


def _write_private(path: Path, data: bytes) -> None:
    """Atomically write data with owner-only permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class PassphraseCache:
    """Encrypted on-disk passphrase store keyed by CA fingerprint."""

    def __init__(self, config_dir: Path) -> None:
        self.key_path = config_dir / KEY_FILENAME
        self.cache_path = config_dir / CACHE_FILENAME
        self._lock = threading.Lock()

    def _encryption_key(self) -> bytes:
        if self.key_path.exists():
            return bytes.fromhex(self.key_path.read_text().strip())
        key = AESGCM.generate_key(bit_length=256)
        _write_private(self.key_path, key.hex().encode("ascii"))
        return key

    def _load(self) -> dict[str, str]:
        if not self.cache_path.exists():
            return {}
        nonce_hex, _, ciphertext_hex = self.cache_path.read_text().strip().partition(":")
        plaintext = AESGCM(self._encryption_key()).decrypt(
            bytes.fromhex(nonce_hex), bytes.fromhex(ciphertext_hex), None
        )
        return json.loads(plaintext)

    def _save(self, entries: dict[str, str]) -> None:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(self._encryption_key()).encrypt(
            nonce, json.dumps(entries).encode("utf-8"), None
        )
        _write_private(self.cache_path, f"{nonce.hex()}:{ciphertext.hex()}".encode("ascii"))

    def has(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._load()

    def get(self, fingerprint: str) -> str | None:
        with self._lock:
            return self._load().get(fingerprint)

    def store(self, fingerprint: str, passphrase: str) -> None:
        with self._lock:
            entries = self._load()
            entries[fingerprint] = passphrase
            self._save(entries)

    def delete(self, fingerprint: str) -> bool:
        with self._lock:
            entries = self._load()
            if entries.pop(fingerprint, None) is None:
                return False
            self._save(entries)
            return True


@dataclass(frozen=True)
class PassphraseRequest:
    """A pending operator prompt for one CA key."""

    request_id: str
    fingerprint: str
    name: str
    subject: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PassphraseResponse:
    passphrase: str | None
    remember: bool = False


class OperatorChannel(Protocol):
    """Delivers passphrase requests to a human operator."""

    def request_passphrase(self, request: PassphraseRequest) -> None: ...


class PassphraseBroker:
    """Correlates passphrase requests with operator responses by request id."""

    def __init__(
        self,
        channel: OperatorChannel,
        cache: PassphraseCache | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.channel = channel
        self.cache = cache
        self.timeout = timeout
        self._pending: dict[str, tuple[PassphraseRequest, Future[PassphraseResponse]]] = {}
        self._lock = threading.Lock()

    def obtain(self, ca_record: CertificateRecord) -> str:
        """Return the passphrase for a CA key, asking the operator if needed.

        Raises:
            PassphraseTimeoutError: If no answer arrives within the timeout
            PassphraseRejectedError: If the operator declines
        """
        if self.cache is not None:
            cached = self.cache.get(ca_record.fingerprint)
            if cached is not None:
                logger.debug("Using cached passphrase", extra={"fingerprint": ca_record.fingerprint})
                return cached

        request = PassphraseRequest(
            request_id=uuid.uuid4().hex,
            fingerprint=ca_record.fingerprint,
            name=ca_record.name,
            subject=ca_record.subject,
        )
        future: Future[PassphraseResponse] = Future()
        with self._lock:
            self._pending[request.request_id] = (request, future)

        logger.info(
            "Requesting passphrase for %s",
            ca_record.name,
            extra={"fingerprint": ca_record.fingerprint, "request_id": request.request_id},
        )
        delivery = threading.Thread(
            target=self._deliver,
            args=(request, future),
            name=f"passphrase-{request.request_id[:8]}",
            daemon=True,
        )
        try:
            delivery.start()
            response = future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            raise PassphraseTimeoutError(
                f"no passphrase received for {ca_record.name} within {self.timeout:g}s",
                {"fingerprint": ca_record.fingerprint, "request_id": request.request_id},
            ) from e
        finally:
            with self._lock:
                self._pending.pop(request.request_id, None)

        if response.passphrase is None:
            raise PassphraseRejectedError(
                f"operator declined passphrase for {ca_record.name}",
                {"fingerprint": ca_record.fingerprint, "request_id": request.request_id},
            )
        if response.remember and self.cache is not None:
            self.cache.store(ca_record.fingerprint, response.passphrase)
        return response.passphrase

    def _deliver(self, request: PassphraseRequest, future: Future[PassphraseResponse]) -> None:
        """Hand a request to the channel; a channel failure rejects the request."""
        try:
            self.channel.request_passphrase(request)
        except Exception as e:
            logger.error(
                "Operator channel failed: %s",
                e,
                extra={"fingerprint": request.fingerprint, "request_id": request.request_id},
            )
            if not future.done():
                future.set_exception(
                    PassphraseRejectedError(
                        f"operator channel failed for {request.name}: {e}",
                        {"fingerprint": request.fingerprint, "request_id": request.request_id},
                    )
                )

    def _resolve(self, request_id: str, response: PassphraseResponse) -> bool:
        with self._lock:
            entry = self._pending.get(request_id)
        if entry is None:
            logger.warning("Response for unknown passphrase request", extra={"request_id": request_id})
            return False
        _, future = entry
        if future.done():
            return False
        future.set_result(response)
        return True

    def respond(self, request_id: str, passphrase: str, remember: bool = False) -> bool:
        """Answer a pending request. Returns False if the id is unknown or already answered."""
        return self._resolve(request_id, PassphraseResponse(passphrase, remember))

    def reject(self, request_id: str) -> bool:
        """Decline a pending request."""
        return self._resolve(request_id, PassphraseResponse(None))

    def pending_requests(self) -> list[PassphraseRequest]:
        with self._lock:
            return [request for request, _ in self._pending.values()]


class ConsoleOperatorChannel:
    """Prompts for passphrases on the controlling terminal."""

    def __init__(self, remember: bool = False) -> None:
        self.remember = remember
        self.broker: PassphraseBroker | None = None

    def bind(self, broker: PassphraseBroker) -> None:
        self.broker = broker

    def request_passphrase(self, request: PassphraseRequest) -> None:
        if self.broker is None:
            raise RuntimeError("ConsoleOperatorChannel is not bound to a broker")
        try:
            passphrase = getpass.getpass(f"Passphrase for CA '{request.name}' ({request.subject}): ")
        except (EOFError, KeyboardInterrupt):
            self.broker.reject(request.request_id)
            return
        self.broker.respond(request.request_id, passphrase, self.remember)
