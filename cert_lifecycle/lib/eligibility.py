"""Renewal eligibility evaluation."""

from datetime import datetime, timedelta, timezone

from .config import GlobalDefaults
from .models import CertificateRecord, RenewalDecision
from .policy import CertificatePolicy

# CAs renew once a quarter of their class validity period is left
CA_RENEWAL_FRACTION = 0.25

SECONDS_PER_DAY = 86400.0


def evaluate_renewal(
    record: CertificateRecord,
    policy: CertificatePolicy,
    defaults: GlobalDefaults,
    now: datetime | None = None,
) -> RenewalDecision:
    """Decide whether a certificate is due for renewal.

    Standard certificates are due when `now + threshold >= valid_to`, with the
    threshold taken from the policy or the global default. CA certificates are
    due when their remaining days fall to 25% of the configured validity
    period for their class or below.

    Args:
        record: Certificate to evaluate
        policy: Its effective policy (defaults when none is stored)
        defaults: Global defaults
        now: Evaluation time, defaults to current UTC time

    Returns:
        RenewalDecision with the verdict, a short reason and days remaining
    """
    if not policy.auto_renew:
        return RenewalDecision(due=False, reason="auto-renew disabled")
    if record.valid_to is None:
        return RenewalDecision(due=False, reason="expiry unknown")

    now = now or datetime.now(timezone.utc)
    remaining = (record.valid_to - now).total_seconds() / SECONDS_PER_DAY

    if record.is_ca:
        threshold = CA_RENEWAL_FRACTION * defaults.validity_for(record.cert_class)
        if remaining <= threshold:
            return RenewalDecision(
                due=True,
                reason=f"{remaining:.1f} days left, CA threshold {threshold:g} days",
                days_remaining=remaining,
            )
        return RenewalDecision(due=False, reason="within validity", days_remaining=remaining)

    threshold_days = policy.renew_days_before_expiry
    if threshold_days is None:
        threshold_days = defaults.renew_days_before_expiry
    if now + timedelta(days=threshold_days) >= record.valid_to:
        return RenewalDecision(
            due=True,
            reason=f"{remaining:.1f} days left, threshold {threshold_days} days",
            days_remaining=remaining,
        )
    return RenewalDecision(due=False, reason="within validity", days_remaining=remaining)
