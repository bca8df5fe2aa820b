"""Move a certificate's policy to its new fingerprint after renewal."""

import logging
from dataclasses import replace
from datetime import datetime, timezone

from .errors import MigrationError
from .models import CertificateRecord, RenewalResult
from .policy import CertificatePolicy, PreviousVersion
from .policy_store import JsonPolicyStore

logger = logging.getLogger(__name__)


def migrate_identity(
    store: JsonPolicyStore,
    old_record: CertificateRecord,
    result: RenewalResult,
    now: datetime | None = None,
    domains: list[str] | None = None,
) -> CertificatePolicy | None:
    """Re-key the stored policy from the old fingerprint to the new one.

    A domains override used for the renewal replaces the stored domain list,
    so later renewals keep issuing for the same names.

    The new record is written first and the old one removed afterwards, so a
    failed write leaves the old policy in place.

    Returns:
        The migrated policy, or None when there was nothing to migrate

    Raises:
        MigrationError: If the new policy could not be stored
    """
    new_fingerprint = result.new_fingerprint
    if not result.success or not new_fingerprint or new_fingerprint == old_record.fingerprint:
        return None

    old_policy = store.find(old_record.fingerprint)
    if old_policy is None:
        logger.debug("No stored policy to migrate", extra={"fingerprint": old_record.fingerprint})
        return None

    entry = PreviousVersion(
        fingerprint=old_record.fingerprint,
        valid_from=old_record.valid_from,
        valid_to=old_record.valid_to,
        backup_cert_path=str(result.backup_cert_path) if result.backup_cert_path else None,
        backup_key_path=str(result.backup_key_path) if result.backup_key_path else None,
        renewed_at=now or datetime.now(timezone.utc),
    )
    new_policy = old_policy.with_previous_version(entry)
    if domains:
        new_policy = replace(new_policy, domains=tuple(domains))

    try:
        store.set(new_fingerprint, new_policy)
    except (OSError, ValueError, TypeError) as e:
        raise MigrationError(
            f"could not store policy for renewed {old_record.name}: {e}",
            {"old_fingerprint": old_record.fingerprint, "new_fingerprint": new_fingerprint},
        ) from e

    try:
        store.remove(old_record.fingerprint)
    except OSError as e:
        raise MigrationError(
            f"renewed policy stored but old entry not removed: {e}",
            {"old_fingerprint": old_record.fingerprint, "new_fingerprint": new_fingerprint},
        ) from e

    logger.info(
        "Migrated policy for %s to new fingerprint",
        old_record.name,
        extra={"fingerprint": new_fingerprint, "action": "migrate"},
    )
    return new_policy
