#!/usr/bin/env python3
"""Renew a single certificate on demand, regardless of its expiry."""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path

from cert_lifecycle.lib.config import EngineSettings
from cert_lifecycle.lib.engine import LifecycleEngine
from cert_lifecycle.lib.logging_config import LOGGER, set_log_level
from cert_lifecycle.lib.models import RenewalOutcome
from cert_lifecycle.lib.passphrase import ConsoleOperatorChannel


def summarize(outcome: RenewalOutcome) -> dict[str, object]:
    """JSON-friendly summary of a renewal outcome."""
    renewal = outcome.renewal
    summary: dict[str, object] = {
        "name": outcome.name,
        "success": renewal.success,
        "oldFingerprint": renewal.old_fingerprint,
        "newFingerprint": renewal.new_fingerprint,
    }
    if renewal.error:
        summary["error"] = {"code": renewal.error_code, "message": renewal.error}
    if renewal.backup_cert_path:
        summary["backupCertPath"] = str(renewal.backup_cert_path)
    if outcome.migration_error:
        summary["migrationError"] = outcome.migration_error
    if outcome.deploy is not None:
        summary["deploy"] = {
            "success": outcome.deploy.success,
            "results": [vars(result) for result in outcome.deploy.results],
        }
    return summary


def main() -> int:
    """Renew one certificate by fingerprint.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    settings = EngineSettings.from_env()
    parser = argparse.ArgumentParser(description="Renew one certificate by fingerprint")
    parser.add_argument("--fingerprint", required=True, help="SHA-256 fingerprint (AA:BB:...)")
    parser.add_argument(
        "--domain",
        action="append",
        dest="domains",
        help="Replacement domain; repeat for several (default: keep current domains)",
    )
    parser.add_argument(
        "--no-deploy",
        action="store_true",
        help="Skip the certificate's deployment actions",
    )
    parser.add_argument("--remember", action="store_true", help="Cache entered CA passphrases")
    parser.add_argument("--certs-dir", type=Path, default=settings.certs_dir)
    parser.add_argument("--config-dir", type=Path, default=settings.config_dir)
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")
    args = parser.parse_args()

    try:
        set_log_level(args.log_level)
        settings = replace(settings, certs_dir=args.certs_dir, config_dir=args.config_dir)
        channel = ConsoleOperatorChannel(remember=args.remember)
        engine = LifecycleEngine.create(settings, channel)
        channel.bind(engine.broker)

        outcome = engine.service.renew_certificate(
            args.fingerprint.upper(),
            engine.load_certificates(),
            domains=args.domains,
            deploy=not args.no_deploy,
        )
        LOGGER.info("Renewal result: %s", json.dumps(summarize(outcome)))
        return 0 if outcome.success else 1

    except Exception as e:
        LOGGER.error("Renewal failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
