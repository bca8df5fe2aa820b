#!/usr/bin/env python3
"""Check all discovered certificates and renew the ones that are due."""

import argparse
import sys
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from cert_lifecycle.lib.config import EngineSettings
from cert_lifecycle.lib.eligibility import evaluate_renewal
from cert_lifecycle.lib.engine import LifecycleEngine
from cert_lifecycle.lib.logging_config import LOGGER, set_log_level
from cert_lifecycle.lib.models import CertificateRecord, RenewalDecision
from cert_lifecycle.lib.passphrase import ConsoleOperatorChannel


def preview_renewals(
    engine: LifecycleEngine,
    certificates: list[CertificateRecord],
    now: datetime | None = None,
) -> list[tuple[CertificateRecord, RenewalDecision]]:
    """Evaluate eligibility without renewing anything.

    Returns:
        (record, decision) pairs for certificates that are due, Standard first
    """
    defaults = engine.policy_store.global_defaults()
    ordered = [r for r in certificates if not r.is_ca] + [r for r in certificates if r.is_ca]
    due: list[tuple[CertificateRecord, RenewalDecision]] = []
    for record in ordered:
        decision = evaluate_renewal(
            record, engine.policy_store.get(record.fingerprint), defaults, now
        )
        if decision.due:
            due.append((record, decision))
    return due


def main() -> int:
    """Run a renewal check.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    settings = EngineSettings.from_env()
    parser = argparse.ArgumentParser(description="Check certificates and renew those that are due")
    parser.add_argument(
        "--certs-dir",
        type=Path,
        default=settings.certs_dir,
        help=f"Certificate directory (default: {settings.certs_dir})",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=settings.config_dir,
        help=f"Configuration directory (default: {settings.config_dir})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report which certificates are due",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and check on the configured interval",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")
    args = parser.parse_args()

    try:
        set_log_level(args.log_level)
        settings = replace(settings, certs_dir=args.certs_dir, config_dir=args.config_dir)
        channel = ConsoleOperatorChannel()
        engine = LifecycleEngine.create(settings, channel)
        channel.bind(engine.broker)

        if args.dry_run:
            LOGGER.info("DRY RUN - no certificates will be renewed")
            due = preview_renewals(engine, engine.load_certificates())
            for record, decision in due:
                LOGGER.info("Due: %s (%s)", record.name, decision.reason)
            LOGGER.info("%d certificates due for renewal", len(due))
            return 0

        if args.watch:
            scheduler = engine.scheduler()
            scheduler.start()
            try:
                while scheduler.running:
                    time.sleep(1)
            except KeyboardInterrupt:
                LOGGER.info("Interrupted, stopping scheduler")
            finally:
                scheduler.stop()
            return 0

        result = engine.service.check_for_renewals(engine.load_certificates())
        LOGGER.info("Renewal check complete:")
        LOGGER.info("  Checked: %d", result.checked)
        LOGGER.info("  Due: %d", result.renewal_needed)
        LOGGER.info("  Renewed: %d", result.renewed_count)
        LOGGER.info("  Failed: %d", result.failed_count)

        if result.failed_count > 0:
            LOGGER.warning(
                "Failed certificates: %s",
                [f"{o.name}: {o.renewal.error}" for o in result.failed],
            )
            return 1

        return 0

    except Exception as e:
        LOGGER.error("Renewal check failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
