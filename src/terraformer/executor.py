"""Supervised execution of a Terraform script.

A run moves through a fixed set of phases::

    PREPARING -> VALIDATING -> EXECUTING -> COLLECTING_LOGS -> CLEANING_UP -> DONE

VALIDATING and EXECUTING may be skipped; PREPARING goes straight to DONE
when none of the durable artifacts exist. Each phase handler returns the
next phase, and the skip decisions live in small predicates below.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from bundle import BundleError, apply_bundle
from common import WaitTimeoutError, retry, wait_until
from kube.client import KubeError, NotFoundError
from kube.status import container_exit_code, job_finished, job_succeeded, object_name, pod_terminated
from terraformer.extractor import ErrorExtractor, TerraformErrorExtractor
from terraformer.types import (
    DURABLE_ARTIFACTS,
    EXIT_DRIFT,
    EXIT_ERROR,
    EXIT_NO_CHANGES,
    RUNNER_BUNDLE,
    SCRIPT_APPLY,
    SCRIPT_DESTROY,
    SCRIPT_VALIDATE,
    DeployError,
    ExecutionError,
    PrepareError,
)

logger = logging.getLogger(__name__)


class RunPhase(Enum):
    PREPARING = 'preparing'
    VALIDATING = 'validating'
    EXECUTING = 'executing'
    COLLECTING_LOGS = 'collecting-logs'
    CLEANING_UP = 'cleaning-up'
    DONE = 'done'


@dataclass
class RunState:
    """Mutable bookkeeping of one execute() call."""
    script: str
    phase: RunPhase = RunPhase.PREPARING
    artifacts: int = -1
    skip_pod: bool = False
    skip_job: bool = False
    exit_code: Optional[int] = None
    succeeded: bool = True
    job_pods: list = field(default_factory=list)
    logs: dict = field(default_factory=dict)
    errors: Optional[list] = None
    history: list = field(default_factory=list)


# -- transition predicates ----------------------------------------------

def artifacts_decisive(count: int) -> bool:
    """All durable artifacts or none of them exist."""
    return count in (0, DURABLE_ARTIFACTS)


def nothing_to_run(count: int) -> bool:
    return count == 0


def skips_validation(script: str) -> bool:
    """Destroy runs never validate."""
    return script == SCRIPT_DESTROY


def skips_job_for_state(script: str, state_empty: bool) -> bool:
    """A destroy with empty state has nothing to tear down."""
    return script == SCRIPT_DESTROY and state_empty


def job_required(exit_code: int) -> bool:
    """Validation found drift, so the scripts must actually run."""
    return exit_code not in (EXIT_NO_CHANGES, EXIT_ERROR)


def validation_failed(exit_code: int) -> bool:
    return exit_code == EXIT_ERROR


def phase_after_prepare(run: RunState) -> RunPhase:
    if not run.skip_pod:
        return RunPhase.VALIDATING
    if not run.skip_job:
        return RunPhase.EXECUTING
    return RunPhase.COLLECTING_LOGS


def phase_after_validation(run: RunState) -> RunPhase:
    return RunPhase.COLLECTING_LOGS if run.skip_job else RunPhase.EXECUTING


class Executor:
    """Runs the validate-then-execute pipeline for one Terraformer.

    Attributes:
        terraformer: Handle providing client, renderer, names and settings
        extractor: Turns failed-run logs into error entries
    """

    def __init__(self, terraformer, extractor: Optional[ErrorExtractor] = None):
        self.tf = terraformer
        self.extractor = extractor or TerraformErrorExtractor()
        self._handlers = {
            RunPhase.PREPARING: self._prepare,
            RunPhase.VALIDATING: self._validate,
            RunPhase.EXECUTING: self._execute_job,
            RunPhase.COLLECTING_LOGS: self._collect_logs,
            RunPhase.CLEANING_UP: self._cleanup,
        }

    @property
    def label(self) -> str:
        return self.tf.label

    def execute(self, script_name: str) -> RunState:
        """Run script_name ('apply' or 'destroy') to completion.

        Returns:
            The final RunState of a successful (or no-op) run

        Raises:
            ExecutionError: If validation or the Job failed
            PrepareError: If the durable artifacts stayed inconsistent
            DeployError: If the Pod/Job manifest could not be rendered
            ConfigurationError: If no variables environment was set
            KubeError: On unexpected object API errors
        """
        if script_name not in (SCRIPT_APPLY, SCRIPT_DESTROY):
            raise ValueError(f"Unknown script '{script_name}', expected apply or destroy")

        run = RunState(script=script_name)
        while run.phase is not RunPhase.DONE:
            run.history.append(run.phase)
            run.phase = self._handlers[run.phase](run)

        if not run.succeeded:
            raise ExecutionError(run.errors)
        return run

    # -- phases -----------------------------------------------------------

    def _prepare(self, run: RunState) -> RunPhase:
        settings = self.tf.settings

        def _decisive() -> bool:
            run.artifacts = self.tf.preparer.prepare(self.tf.variables_environment)
            if artifacts_decisive(run.artifacts):
                return True
            logger.error(f"[{self.label}] Can not execute Terraform Job as ConfigMaps/Secrets are missing "
                         f"({run.artifacts}/{DURABLE_ARTIFACTS} exist)")
            return False

        try:
            retry(logger, settings.prepare_timeout, _decisive,
                  interval=settings.poll_interval, what='consistent Terraform configuration')
        except WaitTimeoutError as e:
            raise PrepareError(
                f"Terraform configuration of '{self.label}' is inconsistent: "
                f"{run.artifacts} of {DURABLE_ARTIFACTS} ConfigMaps/Secrets exist"
            ) from e

        if nothing_to_run(run.artifacts):
            logger.debug(f"[{self.label}] No ConfigMaps/Secrets exist, nothing to execute")
            return RunPhase.DONE

        logger.debug(f"[{self.label}] All ConfigMaps/Secrets exist, will execute the Terraform Job")
        run.skip_pod = skips_validation(run.script)
        run.skip_job = run.skip_pod and skips_job_for_state(run.script, self.tf.is_state_empty())
        if run.skip_job:
            logger.info(f"[{self.label}] Terraform state is empty, skipping the {run.script} Job")
        return phase_after_prepare(run)

    def _validate(self, run: RunState) -> RunPhase:
        self._deploy('Pod', SCRIPT_VALIDATE)
        run.exit_code = self.wait_for_pod()
        run.skip_job = not job_required(run.exit_code)

        if run.exit_code == EXIT_NO_CHANGES:
            logger.debug(f"[{self.label}] Terraform validation succeeded, no difference between state and actual resources")
        elif validation_failed(run.exit_code):
            logger.debug(f"[{self.label}] Terraform validation failed, will not start the Job")
            run.succeeded = False
        else:
            logger.debug(f"[{self.label}] Terraform validation detected changes (exit code {run.exit_code})")
        return phase_after_validation(run)

    def _execute_job(self, run: RunState) -> RunPhase:
        self._deploy('Job', run.script)
        run.succeeded = self.wait_for_job()
        return RunPhase.COLLECTING_LOGS

    def _collect_logs(self, run: RunState) -> RunPhase:
        job = self.tf.names.job
        try:
            run.job_pods = self.tf.preparer.list_job_pods()
        except KubeError as e:
            logger.error(f"[{self.label}] Could not list Pods of Terraform Job '{job}': {e}")
            run.job_pods = []

        run.logs = self.retrieve_pod_logs(run.job_pods)
        for pod_name, pod_logs in run.logs.items():
            logger.info(f"[{self.label}] Logs of Pod '{pod_name}' belonging to Terraform Job '{job}':\n{pod_logs}")
        return RunPhase.CLEANING_UP

    def _cleanup(self, run: RunState) -> RunPhase:
        if not run.succeeded:
            run.errors = self.extractor.extract(run.logs)

        try:
            self.tf.preparer.cleanup_job(run.job_pods)
        except KubeError as e:
            if run.succeeded:
                raise
            # Leftovers are purged by the next prepare
            logger.error(f"[{self.label}] Could not delete Terraform Job '{self.tf.names.job}' or its Pods: {e}")
        return RunPhase.DONE

    # -- helpers ----------------------------------------------------------

    def _deploy(self, kind: str, script: str) -> None:
        """Render the runner bundle as a Pod or Job executing script."""
        names = self.tf.names
        values = {
            'kind': kind,
            'script': script,
            'image': self.tf.settings.image,
            'terraformVariablesEnvironment': self.tf.variables_environment,
            'names': {
                'configuration': names.config,
                'variables': names.variables,
                'state': names.state,
                'pod': names.pod,
                'job': names.job,
            },
        }
        logger.info(f"[{self.label}] Deploying Terraform {kind} (script: {script})")
        try:
            apply_bundle(
                self.tf.client,
                self.tf.renderer,
                self.tf.settings.bundle_dir / RUNNER_BUNDLE,
                RUNNER_BUNDLE,
                self.tf.namespace,
                None,
                values,
            )
        except BundleError as e:
            raise DeployError(f"Could not render the Terraform {kind} of '{self.label}': {e}") from e

    def wait_for_pod(self) -> int:
        """Wait for the validation Pod to terminate and return its exit code.

        'terraform plan -detailed-exitcode' exits with 2 when there is a
        diff; if the terminated state can't be read the Job is forced by
        defaulting to 2.
        """
        settings = self.tf.settings
        pod_name = self.tf.names.pod
        exit_code = EXIT_DRIFT

        def _terminated() -> bool:
            nonlocal exit_code
            logger.info(f"[{self.label}] Waiting for Terraform validation Pod '{pod_name}' to be completed...")
            try:
                pod = self.tf.client.get_pod(self.tf.namespace, pod_name)
            except NotFoundError:
                logger.warning(f"[{self.label}] Terraform validation Pod disappeared unexpectedly, "
                               "somebody must have manually deleted it!")
                if settings.fail_on_missing_validation_pod:
                    exit_code = EXIT_ERROR
                return True
            if pod_terminated(pod):
                code = container_exit_code(pod)
                if code is not None:
                    exit_code = code
                return True
            return False

        try:
            wait_until(_terminated, interval=settings.poll_interval, timeout=settings.pod_timeout,
                       what=f"validation Pod '{pod_name}'")
        except WaitTimeoutError as e:
            logger.warning(f"[{self.label}] {e}")
        except KubeError as e:
            logger.error(f"[{self.label}] Could not read Terraform validation Pod '{pod_name}': {e}")
            exit_code = EXIT_ERROR
        return exit_code

    def wait_for_job(self) -> bool:
        """Wait for the Job to finish; return True if at least one Pod succeeded."""
        settings = self.tf.settings
        job_name = self.tf.names.job
        succeeded = False

        def _finished() -> bool:
            nonlocal succeeded
            logger.info(f"[{self.label}] Waiting for Terraform Job '{job_name}' to be completed...")
            try:
                job = self.tf.client.get_job(self.tf.namespace, job_name)
            except NotFoundError:
                logger.warning(f"[{self.label}] Terraform Job disappeared unexpectedly, "
                               "somebody must have manually deleted it!")
                return True
            if job_succeeded(job) >= 1:
                succeeded = True
                return True
            return job_finished(job)

        start = time.time()
        try:
            wait_until(_finished, interval=settings.poll_interval, timeout=settings.job_timeout,
                       what=f"Job '{job_name}'")
        except WaitTimeoutError as e:
            # The Job keeps running remotely; the next prepare purges it
            logger.warning(f"[{self.label}] {e}")
        except KubeError as e:
            logger.error(f"[{self.label}] Could not read Terraform Job '{job_name}': {e}")
        logger.debug(f"[{self.label}] Terraform Job finished after {time.time() - start:.1f}s (succeeded: {succeeded})")
        return succeeded

    def retrieve_pod_logs(self, job_pods: list[dict]) -> dict[str, str]:
        """Fetch the logs of the given Pods keyed by Pod name.

        Pods whose logs can't be read are skipped.
        """
        logs: dict[str, str] = {}
        for pod in job_pods:
            name = object_name(pod)
            namespace = pod.get('metadata', {}).get('namespace') or self.tf.namespace
            try:
                logs[name] = self.tf.client.get_pod_logs(namespace, name)
            except KubeError as e:
                logger.warning(f"[{self.label}] Could not retrieve the logs of Terraform Job Pod '{name}': {e}")
        return logs
