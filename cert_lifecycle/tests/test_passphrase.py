"""Tests for passphrase cache and broker."""

import stat
import threading
import time
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cert_lifecycle.lib.errors import PassphraseRejectedError, PassphraseTimeoutError
from cert_lifecycle.lib.models import CertClass, CertificateRecord
from cert_lifecycle.lib.passphrase import (
    CACHE_FILENAME,
    KEY_FILENAME,
    ConsoleOperatorChannel,
    PassphraseBroker,
    PassphraseCache,
    PassphraseRequest,
)


@pytest.fixture
def ca_record(make_record: Callable[..., CertificateRecord]) -> CertificateRecord:
    return make_record("ca.local", CertClass.ROOT_CA, ski="CA01")


@pytest.fixture
def cache(tmp_path: Path) -> PassphraseCache:
    return PassphraseCache(tmp_path / "config")


class RespondingChannel:
    """Operator channel that answers from a background thread."""

    def __init__(self, passphrase: str | None, remember: bool = False) -> None:
        self.passphrase = passphrase
        self.remember = remember
        self.broker: PassphraseBroker | None = None
        self.requests: list[PassphraseRequest] = []

    def request_passphrase(self, request: PassphraseRequest) -> None:
        self.requests.append(request)
        assert self.broker is not None
        broker = self.broker

        def answer() -> None:
            if self.passphrase is None:
                broker.reject(request.request_id)
            else:
                broker.respond(request.request_id, self.passphrase, self.remember)

        threading.Thread(target=answer).start()


class TestPassphraseCache:
    def test_store_and_get(self, cache: PassphraseCache) -> None:
        cache.store("AA:BB", "s3cret")

        assert cache.has("AA:BB")
        assert cache.get("AA:BB") == "s3cret"
        assert cache.get("CC:DD") is None

    def test_file_is_encrypted_and_private(self, cache: PassphraseCache, tmp_path: Path) -> None:
        cache.store("AA:BB", "s3cret")

        cache_file = tmp_path / "config" / CACHE_FILENAME
        key_file = tmp_path / "config" / KEY_FILENAME
        assert "s3cret" not in cache_file.read_text()
        assert stat.S_IMODE(key_file.stat().st_mode) == 0o600
        assert stat.S_IMODE(cache_file.stat().st_mode) == 0o600

    def test_persists_across_instances(self, cache: PassphraseCache, tmp_path: Path) -> None:
        cache.store("AA:BB", "s3cret")

        assert PassphraseCache(tmp_path / "config").get("AA:BB") == "s3cret"

    def test_delete(self, cache: PassphraseCache) -> None:
        cache.store("AA:BB", "s3cret")

        assert cache.delete("AA:BB")
        assert not cache.delete("AA:BB")
        assert not cache.has("AA:BB")


class TestPassphraseBroker:
    def test_uses_cache_without_prompting(
        self, cache: PassphraseCache, ca_record: CertificateRecord
    ) -> None:
        cache.store(ca_record.fingerprint, "cached")
        channel = MagicMock()
        broker = PassphraseBroker(channel, cache)

        assert broker.obtain(ca_record) == "cached"
        channel.request_passphrase.assert_not_called()

    def test_operator_response(self, cache: PassphraseCache, ca_record: CertificateRecord) -> None:
        channel = RespondingChannel("typed")
        broker = PassphraseBroker(channel, cache, timeout=5)
        channel.broker = broker

        assert broker.obtain(ca_record) == "typed"
        assert channel.requests[0].fingerprint == ca_record.fingerprint
        assert len(channel.requests[0].request_id) == 32
        assert not cache.has(ca_record.fingerprint)
        assert broker.pending_requests() == []

    def test_remember_caches_passphrase(
        self, cache: PassphraseCache, ca_record: CertificateRecord
    ) -> None:
        channel = RespondingChannel("typed", remember=True)
        broker = PassphraseBroker(channel, cache, timeout=5)
        channel.broker = broker

        broker.obtain(ca_record)

        assert cache.get(ca_record.fingerprint) == "typed"

    def test_rejection(self, cache: PassphraseCache, ca_record: CertificateRecord) -> None:
        channel = RespondingChannel(None)
        broker = PassphraseBroker(channel, cache, timeout=5)
        channel.broker = broker

        with pytest.raises(PassphraseRejectedError):
            broker.obtain(ca_record)

    def test_timeout(self, cache: PassphraseCache, ca_record: CertificateRecord) -> None:
        broker = PassphraseBroker(MagicMock(), cache, timeout=0.05)

        with pytest.raises(PassphraseTimeoutError) as exc_info:
            broker.obtain(ca_record)

        assert exc_info.value.code == "CERT_PASSPHRASE_TIMEOUT"
        assert broker.pending_requests() == []

    def test_request_is_pending_while_waiting(
        self, cache: PassphraseCache, ca_record: CertificateRecord
    ) -> None:
        seen: list[list[PassphraseRequest]] = []
        broker = PassphraseBroker(MagicMock(), cache, timeout=5)

        def operator(request: PassphraseRequest) -> None:
            seen.append(broker.pending_requests())
            broker.respond(request.request_id, "pw")

        broker.channel.request_passphrase.side_effect = operator

        assert broker.obtain(ca_record) == "pw"
        assert [request.fingerprint for request in seen[0]] == [ca_record.fingerprint]

    def test_unknown_request_id(self, cache: PassphraseCache) -> None:
        broker = PassphraseBroker(MagicMock(), cache)

        assert not broker.respond("does-not-exist", "pw")
        assert not broker.reject("does-not-exist")


class TestConsoleOperatorChannel:
    def test_prompts_and_responds(
        self, cache: PassphraseCache, ca_record: CertificateRecord
    ) -> None:
        channel = ConsoleOperatorChannel(remember=True)
        broker = PassphraseBroker(channel, cache, timeout=5)
        channel.bind(broker)

        with patch("cert_lifecycle.lib.passphrase.getpass.getpass", return_value="typed"):
            assert broker.obtain(ca_record) == "typed"

        assert cache.get(ca_record.fingerprint) == "typed"

    def test_eof_rejects(self, cache: PassphraseCache, ca_record: CertificateRecord) -> None:
        channel = ConsoleOperatorChannel()
        broker = PassphraseBroker(channel, cache, timeout=5)
        channel.bind(broker)

        with patch("cert_lifecycle.lib.passphrase.getpass.getpass", side_effect=EOFError):
            with pytest.raises(PassphraseRejectedError):
                broker.obtain(ca_record)

    def test_slow_channel_still_times_out(
        self, cache: PassphraseCache, ca_record: CertificateRecord
    ) -> None:
        """A channel that blocks longer than the timeout does not delay the timeout."""
        release = threading.Event()
        channel = ConsoleOperatorChannel()
        broker = PassphraseBroker(channel, cache, timeout=0.2)
        channel.bind(broker)

        def slow_prompt(_prompt: str) -> str:
            release.wait(5)
            return "late answer"

        started = time.monotonic()
        try:
            with patch("cert_lifecycle.lib.passphrase.getpass.getpass", side_effect=slow_prompt):
                with pytest.raises(PassphraseTimeoutError):
                    broker.obtain(ca_record)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 2
        assert broker.pending_requests() == []

    def test_unbound_channel_rejects(
        self, cache: PassphraseCache, ca_record: CertificateRecord
    ) -> None:
        broker = PassphraseBroker(ConsoleOperatorChannel(), cache, timeout=5)

        with pytest.raises(PassphraseRejectedError, match="not bound"):
            broker.obtain(ca_record)

        assert broker.pending_requests() == []


def test_concurrent_requests_are_independent(
    cache: PassphraseCache, make_record: Callable[..., CertificateRecord]
) -> None:
    """Two outstanding requests are answered out of order, each to its own caller."""
    first_ca = make_record("first.local", CertClass.ROOT_CA)
    second_ca = make_record("second.local", CertClass.INTERMEDIATE_CA)
    broker = PassphraseBroker(MagicMock(), cache, timeout=5)
    results: dict[str, str] = {}

    def obtain(record: CertificateRecord) -> None:
        results[record.name] = broker.obtain(record)

    threads = [threading.Thread(target=obtain, args=(ca,)) for ca in (first_ca, second_ca)]
    for thread in threads:
        thread.start()

    deadline = time.monotonic() + 5
    while len(broker.pending_requests()) < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    pending = {request.name: request.request_id for request in broker.pending_requests()}
    assert set(pending) == {"first.local", "second.local"}
    assert pending["first.local"] != pending["second.local"]

    assert broker.respond(pending["second.local"], "second-pw")
    threads[1].join(5)
    assert [request.name for request in broker.pending_requests()] == ["first.local"]
    assert broker.respond(pending["first.local"], "first-pw")
    threads[0].join(5)

    assert results == {"first.local": "first-pw", "second.local": "second-pw"}
    assert broker.pending_requests() == []
