"""Post-renewal deployment actions."""

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .cert_utils import find_key_file
from .errors import DeploymentError
from .models import ActionResult, CertificateRecord, DeployResult
from .policy import CommandAction, CopyAction, DeployAction, DockerRestartAction

logger = logging.getLogger(__name__)


class ContainerRuntime(Protocol):
    """Restarts containers that consume renewed certificates."""

    def restart(self, container_id: str) -> str: ...


class DockerCLIRuntime:
    """Container runtime backed by the `docker` command line client."""

    def __init__(self, executable: str = "docker", timeout: float = 60.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def restart(self, container_id: str) -> str:
        try:
            completed = subprocess.run(
                [self.executable, "restart", container_id],
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise DeploymentError(f"{self.executable} executable not found") from e
        except subprocess.CalledProcessError as e:
            raise DeploymentError(
                f"docker restart {container_id} failed: {(e.stderr or '').strip()}",
                {"container_id": container_id, "returncode": e.returncode},
            ) from e
        except subprocess.TimeoutExpired as e:
            raise DeploymentError(
                f"docker restart {container_id} timed out", {"container_id": container_id}
            ) from e
        return completed.stdout.strip()


def _is_directory_destination(destination: str) -> bool:
    return destination.endswith(("/", os.sep)) or Path(destination).is_dir()


class DeploymentActionRunner:
    """Runs a certificate's deploy actions in order, isolating each failure."""

    def __init__(self, container_runtime: ContainerRuntime | None = None) -> None:
        self.container_runtime = container_runtime or DockerCLIRuntime()

    def run(self, record: CertificateRecord, actions: Sequence[DeployAction]) -> DeployResult:
        """Execute all actions; one failure never stops the next action.

        Returns:
            DeployResult whose success is True only if every action succeeded
        """
        results: list[ActionResult] = []
        for action in actions:
            try:
                output = self._run_action(record, action)
                results.append(ActionResult(type=action.type, success=True, output=output))
            except DeploymentError as e:
                logger.error(
                    "Deploy action failed: %s",
                    e,
                    extra={"fingerprint": record.fingerprint, "action": action.type},
                )
                results.append(ActionResult(type=action.type, success=False, error=e.message))
            except Exception as e:
                logger.error(
                    "Deploy action failed unexpectedly: %s",
                    e,
                    extra={"fingerprint": record.fingerprint, "action": action.type},
                )
                results.append(ActionResult(type=action.type, success=False, error=str(e)))

        return DeployResult(success=all(result.success for result in results), results=results)

    def _run_action(self, record: CertificateRecord, action: DeployAction) -> str | None:
        if isinstance(action, CopyAction):
            return self._copy(record, action)
        if isinstance(action, DockerRestartAction):
            return self._docker_restart(action)
        if isinstance(action, CommandAction):
            return self._command(record, action)
        raise DeploymentError(f"unknown action type: {action.type}", {"type": action.type})

    def _copy(self, record: CertificateRecord, action: CopyAction) -> str:
        if not action.destination:
            raise DeploymentError("copy action has no destination")
        if record.cert_path is None or not record.cert_path.is_file():
            raise DeploymentError(
                f"certificate file not found: {record.cert_path}", {"name": record.name}
            )

        key_path = find_key_file(record.cert_path, record.key_path)
        destination = Path(action.destination)
        if _is_directory_destination(action.destination):
            destination.mkdir(parents=True, exist_ok=True)
            cert_target = destination / record.cert_path.name
            key_target = destination / key_path.name if key_path else None
        else:
            destination.parent.mkdir(parents=True, exist_ok=True)
            cert_target = destination
            key_target = destination.with_suffix(".key")

        shutil.copy2(record.cert_path, cert_target)
        if key_path is None or key_target is None:
            raise DeploymentError(
                f"private key for {record.name} not found; certificate copied to {cert_target}",
                {"name": record.name},
            )
        shutil.copy2(key_path, key_target)
        os.chmod(key_target, 0o600)
        logger.info(
            "Copied %s to %s",
            record.name,
            cert_target,
            extra={"fingerprint": record.fingerprint, "action": action.type},
        )
        return f"copied to {cert_target} and {key_target}"

    def _docker_restart(self, action: DockerRestartAction) -> str:
        if not action.container_id:
            raise DeploymentError("docker-restart action has no containerId")
        output = self.container_runtime.restart(action.container_id)
        logger.info("Restarted container %s", action.container_id, extra={"action": action.type})
        return output

    def _command(self, record: CertificateRecord, action: CommandAction) -> str:
        if not action.command:
            raise DeploymentError("command action has no command")
        env = {
            **os.environ,
            "CERT_PATH": str(record.cert_path or ""),
            "KEY_PATH": str(record.key_path or ""),
            "CERT_NAME": record.name,
            "CERT_FINGERPRINT": record.fingerprint,
        }
        try:
            completed = subprocess.run(
                action.command,
                shell=True,
                check=True,
                capture_output=True,
                text=True,
                cwd=action.cwd,
                env=env,
            )
        except subprocess.CalledProcessError as e:
            raise DeploymentError(
                f"command exited with {e.returncode}: {(e.stderr or '').strip()}",
                {"returncode": e.returncode},
            ) from e
        except OSError as e:
            raise DeploymentError(f"command could not be started: {e}") from e
        return completed.stdout.strip()
