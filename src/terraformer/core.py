"""Terraformer: run infrastructure scripts through objects in the cluster.

A Terraformer is scoped to an owner and a purpose. All durable state lives
in three objects named after ``<owner>.<purpose>``:

- ``.tf-config`` ConfigMap: the rendered configuration (overwritten on define)
- ``.tf-vars`` Secret: the variable values (overwritten on define)
- ``.tf-state`` ConfigMap: the last state (created empty once, never overwritten)

Typical use::

    Terraformer(owner, PURPOSE_INTERNAL_DNS, client=client, renderer=renderer) \\
        .set_variables_environment(env) \\
        .define_config('aws-route53', values) \\
        .apply()

Handles are cheap; build a new one per operation. A new handle against the
same owner/purpose resumes from whatever objects currently exist.
"""

import logging
from typing import Optional

from bundle import BundleError, BundleRenderer, TemplateBundleRenderer, apply_bundle
from common import WaitTimeoutError, retry
from config import TerraformerSettings
from kube.client import KubeError, NotFoundError
from terraformer.executor import Executor
from terraformer.extractor import ErrorExtractor
from terraformer.preparer import Preparer
from terraformer.types import (
    STATE_KEY,
    ConfigurationError,
    Owner,
    TerraformerNames,
)

logger = logging.getLogger(__name__)


class Terraformer:
    """Handle for one <owner>.<purpose> set of Terraform objects."""

    def __init__(
        self,
        owner: Owner,
        purpose: str,
        client,
        renderer: Optional[BundleRenderer] = None,
        settings: Optional[TerraformerSettings] = None,
        extractor: Optional[ErrorExtractor] = None
    ):
        self.owner = owner
        self.purpose = purpose
        self.namespace = owner.namespace
        self.names = TerraformerNames.for_run(owner, purpose)
        self.client = client
        self.renderer = renderer or TemplateBundleRenderer()
        self.settings = settings or TerraformerSettings()
        self.variables_environment: Optional[list[dict]] = None
        self.configuration_defined = False
        self.preparer = Preparer(client, self.namespace, self.names, self.settings, label=self.label)
        self.executor = Executor(self, extractor=extractor)

    @property
    def label(self) -> str:
        return f"{self.owner.name}.{self.purpose}"

    def set_variables_environment(self, environment: list[dict]) -> 'Terraformer':
        """Set the TF_VAR_* environment injected into the Pod/Job."""
        self.variables_environment = environment
        return self

    def define_config(self, bundle_name: str, values: dict) -> 'Terraformer':
        """Store config, variables and (if absent) an empty state.

        The bundle sees the three object names under ``names`` and whether
        the state is currently empty under ``initializeEmptyState``. A
        non-empty state is never submitted, whatever the bundle renders.
        Failures are retried up to define_config_timeout; if they persist
        the error is logged and apply() will refuse to run.
        """
        state_empty = self.is_state_empty()
        values['names'] = {
            'configuration': self.names.config,
            'variables': self.names.variables,
            'state': self.names.state,
        }
        values['initializeEmptyState'] = state_empty

        def _protects_state(manifest: dict) -> bool:
            return (not state_empty
                    and manifest.get('kind') == 'ConfigMap'
                    and manifest.get('metadata', {}).get('name') == self.names.state)

        def _apply() -> bool:
            try:
                apply_bundle(
                    self.client,
                    self.renderer,
                    self.settings.bundle_dir / bundle_name,
                    bundle_name,
                    self.namespace,
                    None,
                    values,
                    exclude=_protects_state,
                )
            except (KubeError, BundleError) as e:
                logger.debug(f"[{self.label}] Applying bundle '{bundle_name}' failed: {e}")
                return False
            return True

        try:
            retry(logger, self.settings.define_config_timeout, _apply,
                  interval=self.settings.poll_interval, what=f"Terraform config bundle '{bundle_name}'")
        except WaitTimeoutError as e:
            logger.error(f"[{self.label}] Could not create the Terraform ConfigMaps/Secrets: {e}")
        else:
            self.configuration_defined = True
        return self

    def apply(self) -> None:
        """Run 'terraform apply' for the defined configuration.

        Raises:
            ConfigurationError: If define_config() did not succeed
            ExecutionError: If validation or the Job failed
        """
        if not self.configuration_defined:
            raise ConfigurationError(
                "Terraformer configuration has not been defined, cannot execute the Terraform scripts")
        self.executor.execute('apply')

    def destroy(self) -> None:
        """Run 'terraform destroy' and remove the durable objects on success."""
        self.executor.execute('destroy')
        self.cleanup_configuration()

    def get_state(self) -> str:
        """Return the stored Terraform state.

        Raises:
            NotFoundError: If the state ConfigMap does not exist
        """
        config_map = self.client.get_config_map(self.namespace, self.names.state)
        return (config_map.get('data') or {}).get(STATE_KEY, '')

    def is_state_empty(self) -> bool:
        """Return True if the state is missing or empty.

        Errors other than not-found count as non-empty, so an unreadable
        state is never treated as safe to replace.
        """
        try:
            return len(self.get_state()) == 0
        except NotFoundError:
            return True
        except KubeError as e:
            logger.warning(f"[{self.label}] Could not read Terraform state: {e}")
            return False

    def cleanup_configuration(self) -> None:
        """Delete variables, config and state, in that order.

        Missing objects are skipped; the first other error aborts the
        remaining deletions.
        """
        deletions = (
            ('variables Secret', self.client.delete_secret, self.names.variables),
            ('configuration ConfigMap', self.client.delete_config_map, self.names.config),
            ('state ConfigMap', self.client.delete_config_map, self.names.state),
        )
        for description, delete, name in deletions:
            logger.info(f"[{self.label}] Deleting Terraform {description} '{name}'")
            try:
                delete(self.namespace, name)
            except NotFoundError:
                logger.debug(f"[{self.label}] Terraform {description} '{name}' already gone")
