"""Pre-run checks and cleanup of leftovers from interrupted runs."""

import logging

from common import WaitTimeoutError, wait_until
from config import TerraformerSettings
from kube.client import NotFoundError
from kube.status import object_name, object_namespace
from terraformer.types import (
    ConfigurationError,
    CleanupTimeoutError,
    DURABLE_ARTIFACTS,
    TerraformerNames,
)

logger = logging.getLogger(__name__)


class Preparer:
    """Counts the durable artifacts and purges stale Job/Pods.

    Attributes:
        client: Object API client
        namespace: Namespace of all run objects
        names: Derived object names of the run
        settings: Poll timings
        label: Log prefix identifying the run
    """

    def __init__(self, client, namespace: str, names: TerraformerNames,
                 settings: TerraformerSettings, label: str = ''):
        self.client = client
        self.namespace = namespace
        self.names = names
        self.settings = settings
        self.label = label or names.job

    def count_artifacts(self) -> int:
        """Return how many of config, variables and state exist (0-3)."""
        existing = DURABLE_ARTIFACTS
        checks = (
            (self.client.get_config_map, self.names.state),
            (self.client.get_secret, self.names.variables),
            (self.client.get_config_map, self.names.config),
        )
        for getter, name in checks:
            try:
                getter(self.namespace, name)
            except NotFoundError:
                existing -= 1
        return existing

    def prepare(self, variables_environment) -> int:
        """Check the durable artifacts and make sure no old Job/Pods remain.

        Returns:
            Number of existing durable artifacts

        Raises:
            ConfigurationError: If no variables environment was provided
            CleanupTimeoutError: If leftovers do not disappear in time
            KubeError: On unexpected object API errors
        """
        if variables_environment is None:
            raise ConfigurationError("no Terraform variable environment provided")

        existing = self.count_artifacts()
        self.cleanup_job(self.list_job_pods())
        self.wait_for_clean_environment()
        return existing

    def list_job_pods(self) -> list[dict]:
        """List all Pods labelled with the run's job name."""
        return self.client.list_pods(self.namespace, self.names.label_selector)

    def cleanup_job(self, job_pods: list[dict]) -> None:
        """Delete the Job and the given Pods; missing objects are fine."""
        try:
            self.client.delete_job(self.namespace, self.names.job)
            logger.info(f"[{self.label}] Deleted Terraform Job '{self.names.job}'")
        except NotFoundError:
            pass

        for pod in job_pods:
            name = object_name(pod)
            try:
                self.client.delete_pod(object_namespace(pod) or self.namespace, name)
                logger.info(f"[{self.label}] Deleted Terraform Job Pod '{name}'")
            except NotFoundError:
                pass

    def _environment_clean(self) -> bool:
        try:
            self.client.get_job(self.namespace, self.names.job)
        except NotFoundError:
            pass
        else:
            logger.info(f"[{self.label}] Waiting until no Terraform Job with name '{self.names.job}' exists any more...")
            return False

        if self.list_job_pods():
            logger.info(f"[{self.label}] Waiting until no Terraform Pods with label "
                        f"'{self.names.label_selector}' exist any more...")
            return False
        return True

    def wait_for_clean_environment(self) -> None:
        """Block until neither the Job nor any of its Pods exist."""
        try:
            wait_until(
                self._environment_clean,
                interval=self.settings.poll_interval,
                timeout=self.settings.clean_environment_timeout,
                what=f"removal of Job '{self.names.job}' and its Pods",
            )
        except WaitTimeoutError as e:
            raise CleanupTimeoutError(str(e)) from e
