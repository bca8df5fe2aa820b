"""Engine configuration dataclasses."""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .models import CertClass

SETTINGS_FILENAME = "settings.json"
POLICY_FILENAME = "certificates.json"


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _default_validity() -> dict[str, int]:
    return {
        CertClass.ROOT_CA.value: 3650,
        CertClass.INTERMEDIATE_CA.value: 1825,
        CertClass.STANDARD.value: 90,
    }


@dataclass
class GlobalDefaults:
    """Operator-wide defaults applied when a certificate has no override."""

    validity_days: dict[str, int] = field(default_factory=_default_validity)
    renew_days_before_expiry: int = 30
    enable_backups: bool = True
    sign_standard_with_ca: bool = False
    auto_renew_by_default: bool = True
    ca_key_size: int = 4096
    key_size: int = 2048

    def validity_for(self, cert_class: CertClass) -> int:
        """Configured total validity period in days for a class."""
        return self.validity_days.get(cert_class.value, _default_validity()[cert_class.value])

    def key_size_for(self, cert_class: CertClass) -> int:
        return self.ca_key_size if cert_class.is_ca else self.key_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "caValidityPeriod": dict(self.validity_days),
            "renewDaysBeforeExpiry": self.renew_days_before_expiry,
            "enableCertificateBackups": self.enable_backups,
            "signStandardCertsWithCA": self.sign_standard_with_ca,
            "autoRenewByDefault": self.auto_renew_by_default,
            "caKeySize": self.ca_key_size,
            "keySize": self.key_size,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GlobalDefaults":
        """Build defaults from a settings document; missing keys keep defaults."""
        base = cls()
        validity = {**base.validity_days, **data.get("caValidityPeriod", {})}
        return cls(
            validity_days={key: int(value) for key, value in validity.items()},
            renew_days_before_expiry=int(
                data.get("renewDaysBeforeExpiry", base.renew_days_before_expiry)
            ),
            enable_backups=bool(data.get("enableCertificateBackups", base.enable_backups)),
            sign_standard_with_ca=bool(
                data.get("signStandardCertsWithCA", base.sign_standard_with_ca)
            ),
            auto_renew_by_default=bool(data.get("autoRenewByDefault", base.auto_renew_by_default)),
            ca_key_size=int(data.get("caKeySize", base.ca_key_size)),
            key_size=int(data.get("keySize", base.key_size)),
        )

    def with_env_overrides(self) -> "GlobalDefaults":
        """Return a copy with environment variables applied on top."""
        validity = dict(self.validity_days)
        validity[CertClass.ROOT_CA.value] = _env_int(
            "ROOT_CA_VALIDITY_DAYS", self.validity_for(CertClass.ROOT_CA)
        )
        validity[CertClass.INTERMEDIATE_CA.value] = _env_int(
            "INTERMEDIATE_CA_VALIDITY_DAYS", self.validity_for(CertClass.INTERMEDIATE_CA)
        )
        validity[CertClass.STANDARD.value] = _env_int(
            "STANDARD_CERT_VALIDITY_DAYS", self.validity_for(CertClass.STANDARD)
        )
        return GlobalDefaults(
            validity_days=validity,
            renew_days_before_expiry=_env_int(
                "RENEW_DAYS_BEFORE_EXPIRY", self.renew_days_before_expiry
            ),
            enable_backups=_env_bool("ENABLE_CERTIFICATE_BACKUPS", self.enable_backups),
            sign_standard_with_ca=_env_bool(
                "SIGN_STANDARD_CERTS_WITH_CA", self.sign_standard_with_ca
            ),
            auto_renew_by_default=_env_bool("AUTO_RENEW_DEFAULT", self.auto_renew_by_default),
            ca_key_size=self.ca_key_size,
            key_size=self.key_size,
        )

    @classmethod
    def load(cls, config_dir: Path) -> "GlobalDefaults":
        """Load `settings.json` from config_dir (if present) plus env overrides."""
        settings_path = config_dir / SETTINGS_FILENAME
        if settings_path.exists():
            data = json.loads(settings_path.read_text())
            defaults = cls.from_dict(data.get("globalDefaults", data))
        else:
            defaults = cls()
        return defaults.with_env_overrides()


@dataclass
class EngineSettings:
    """Process-level settings for scripts and the scheduler."""

    certs_dir: Path = Path("certs")
    config_dir: Path = Path("config")
    renewal_interval_hours: int = 24
    initial_delay_seconds: float = 5.0
    passphrase_timeout_seconds: float = 120.0
    log_level: str = "INFO"

    @property
    def policy_path(self) -> Path:
        return self.config_dir / POLICY_FILENAME

    @classmethod
    def from_env(cls) -> "EngineSettings":
        base = cls()
        timeout = os.environ.get("PASSPHRASE_TIMEOUT_SECONDS")
        return cls(
            certs_dir=Path(os.environ.get("CERTS_DIR", str(base.certs_dir))),
            config_dir=Path(os.environ.get("CONFIG_DIR", str(base.config_dir))),
            renewal_interval_hours=_env_int("RENEWAL_INTERVAL_HOURS", base.renewal_interval_hours),
            initial_delay_seconds=base.initial_delay_seconds,
            passphrase_timeout_seconds=float(timeout) if timeout else base.passphrase_timeout_seconds,
            log_level=os.environ.get("CERT_LIFECYCLE_LOG_LEVEL", base.log_level),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["certs_dir"] = str(self.certs_dir)
        data["config_dir"] = str(self.config_dir)
        return data
