"""Interval scheduler for the renewal pipeline."""

import logging
import threading
from collections.abc import Callable

from .models import CertificateRecord, RenewalCheckResult
from .renewal_service import RenewalService

logger = logging.getLogger(__name__)


class RenewalScheduler:
    """Runs a renewal check shortly after start and then on a fixed interval."""

    def __init__(
        self,
        service: RenewalService,
        load_certificates: Callable[[], list[CertificateRecord]],
        interval_seconds: float = 24 * 3600,
        initial_delay_seconds: float = 5.0,
    ) -> None:
        self.service = service
        self.load_certificates = load_certificates
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> RenewalCheckResult | None:
        """Run a single check; errors are logged and None is returned."""
        try:
            return self.service.check_for_renewals(self.load_certificates())
        except Exception as e:
            logger.error("Scheduled renewal check failed: %s", e, exc_info=True)
            return None

    def _loop(self) -> None:
        if self._stop.wait(self.initial_delay_seconds):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval_seconds):
                return

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="renewal-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Renewal scheduler started (interval %gs, first run in %gs)",
            self.interval_seconds,
            self.initial_delay_seconds,
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Renewal scheduler stopped")
