"""Wiring of the lifecycle components from EngineSettings."""

from dataclasses import dataclass

from .config import EngineSettings, GlobalDefaults
from .deploy import ContainerRuntime, DeploymentActionRunner
from .discovery import discover_certificates
from .models import CertificateRecord
from .orchestrator import RenewalOrchestrator
from .passphrase import OperatorChannel, PassphraseBroker, PassphraseCache
from .policy_store import JsonPolicyStore
from .renewal_service import RenewalService
from .scheduler import RenewalScheduler
from .toolkit import CAToolkit


@dataclass
class LifecycleEngine:
    """All collaborators needed to discover, renew and deploy certificates."""

    settings: EngineSettings
    toolkit: CAToolkit
    policy_store: JsonPolicyStore
    broker: PassphraseBroker
    service: RenewalService

    @classmethod
    def create(
        cls,
        settings: EngineSettings,
        channel: OperatorChannel,
        container_runtime: ContainerRuntime | None = None,
    ) -> "LifecycleEngine":
        defaults = GlobalDefaults.load(settings.config_dir)
        toolkit = CAToolkit(default_key_size=defaults.key_size)
        policy_store = JsonPolicyStore(settings.policy_path, defaults)
        broker = PassphraseBroker(
            channel,
            PassphraseCache(settings.config_dir),
            timeout=settings.passphrase_timeout_seconds,
        )
        orchestrator = RenewalOrchestrator(toolkit, policy_store, broker)
        service = RenewalService(orchestrator, policy_store, DeploymentActionRunner(container_runtime))
        return cls(settings, toolkit, policy_store, broker, service)

    def load_certificates(self) -> list[CertificateRecord]:
        return discover_certificates(self.settings.certs_dir, self.toolkit)

    def scheduler(self) -> RenewalScheduler:
        return RenewalScheduler(
            self.service,
            self.load_certificates,
            interval_seconds=self.settings.renewal_interval_hours * 3600,
            initial_delay_seconds=self.settings.initial_delay_seconds,
        )
