"""Batch renewal pipeline: evaluate, renew, migrate and deploy."""

import logging
import threading
from datetime import datetime

from .deploy import DeploymentActionRunner
from .eligibility import evaluate_renewal
from .errors import CertificateInputError, MigrationError
from .hierarchy import dedupe_by_fingerprint
from .migration import migrate_identity
from .models import CertificateRecord, RenewalCheckResult, RenewalOutcome
from .orchestrator import RenewalOrchestrator
from .policy_store import JsonPolicyStore

logger = logging.getLogger(__name__)


class RenewalService:
    """Runs renewal for an inventory of certificates.

    Standard certificates are evaluated and renewed before any CA is
    evaluated, so a CA renewal can never happen underneath a leaf that is
    still being processed in the same pass.
    """

    def __init__(
        self,
        orchestrator: RenewalOrchestrator,
        policy_store: JsonPolicyStore,
        deploy_runner: DeploymentActionRunner,
    ) -> None:
        self.orchestrator = orchestrator
        self.policy_store = policy_store
        self.deploy_runner = deploy_runner
        self._batch_lock = threading.Lock()

    def _process(
        self,
        record: CertificateRecord,
        inventory: list[CertificateRecord],
        domains: list[str] | None = None,
        deploy: bool = True,
    ) -> RenewalOutcome:
        """Renew one certificate, then migrate its policy and run its actions."""
        policy = self.policy_store.get(record.fingerprint)
        renewal = self.orchestrator.renew(record, inventory, domains)
        outcome = RenewalOutcome(fingerprint=record.fingerprint, name=record.name, renewal=renewal)
        if not renewal.success or renewal.record is None:
            return outcome

        try:
            migrate_identity(self.policy_store, record, renewal, domains=domains)
        except MigrationError as e:
            logger.warning(
                "Renewed %s but policy migration failed: %s",
                record.name,
                e,
                extra={"fingerprint": record.fingerprint},
            )
            outcome.migration_error = e.message

        if deploy and policy.deploy_actions:
            outcome.deploy = self.deploy_runner.run(renewal.record, policy.deploy_actions)
            if not outcome.deploy.success:
                logger.warning(
                    "Deployment for %s had failures",
                    record.name,
                    extra={"fingerprint": renewal.new_fingerprint},
                )
        return outcome

    def _run_pass(
        self,
        candidates: list[CertificateRecord],
        inventory: list[CertificateRecord],
        result: RenewalCheckResult,
        now: datetime | None,
    ) -> None:
        defaults = self.policy_store.global_defaults()
        for record in candidates:
            result.checked += 1
            decision = evaluate_renewal(
                record, self.policy_store.get(record.fingerprint), defaults, now
            )
            if not decision.due:
                logger.debug(
                    "%s: %s", record.name, decision.reason, extra={"fingerprint": record.fingerprint}
                )
                continue

            result.renewal_needed += 1
            logger.info(
                "%s is due for renewal: %s",
                record.name,
                decision.reason,
                extra={"fingerprint": record.fingerprint},
            )
            outcome = self._process(record, inventory)
            if outcome.success and outcome.renewal.record is not None:
                result.renewed.append(outcome)
                # Later signer lookups must see the renewed material
                position = inventory.index(record)
                inventory[position] = outcome.renewal.record
            else:
                result.failed.append(outcome)

    def check_for_renewals(
        self, certificates: list[CertificateRecord], now: datetime | None = None
    ) -> RenewalCheckResult:
        """Evaluate and renew everything that is due.

        Returns a result with skipped=True if another check is already running.
        """
        if not self._batch_lock.acquire(blocking=False):
            logger.warning("Renewal check already in progress, skipping")
            return RenewalCheckResult(skipped=True)

        try:
            inventory = dedupe_by_fingerprint(certificates)
            result = RenewalCheckResult()
            standard = [record for record in inventory if not record.is_ca]
            self._run_pass(standard, inventory, result, now)
            cas = [record for record in inventory if record.is_ca]
            self._run_pass(cas, inventory, result, now)
        finally:
            self._batch_lock.release()

        logger.info(
            "Renewal check complete: %d checked, %d due, %d renewed, %d failed",
            result.checked,
            result.renewal_needed,
            result.renewed_count,
            result.failed_count,
        )
        return result

    def renew_certificate(
        self,
        fingerprint: str,
        certificates: list[CertificateRecord],
        domains: list[str] | None = None,
        deploy: bool = True,
    ) -> RenewalOutcome:
        """Renew one certificate on demand, regardless of eligibility.

        Raises:
            CertificateInputError: If no certificate has that fingerprint
        """
        inventory = dedupe_by_fingerprint(certificates)
        record = next((r for r in inventory if r.fingerprint == fingerprint), None)
        if record is None:
            raise CertificateInputError(
                f"no certificate with fingerprint {fingerprint}", {"fingerprint": fingerprint}
            )
        return self._process(record, inventory, domains, deploy)
