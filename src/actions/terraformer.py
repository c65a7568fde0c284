"""Terraformer actions for provisioning and tearing down owner infrastructure."""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from common import ActionResult
from kube.client import KubeError
from kube.status import secret_data
from terraformer import Owner, Terraformer, TerraformerError

logger = logging.getLogger(__name__)


def generate_variables_environment(secret: dict, key_map: dict) -> list[dict]:
    """Build a TF_VAR_* environment from a Secret.

    Args:
        secret: Secret object holding the credentials
        key_map: Maps variable names (without TF_VAR_ prefix) to Secret data keys

    Returns:
        List of {"name": "TF_VAR_<var>", "value": <decoded value>} entries
    """
    data = secret_data(secret)
    return [
        {'name': f'TF_VAR_{var}', 'value': data.get(key, '')}
        for var, key in key_map.items()
    ]


def _terraformer(owner: Owner, purpose: str, context: dict) -> Terraformer:
    """Build a fresh Terraformer from the collaborators in context."""
    if 'client' not in context:
        raise KeyError("context has no 'client' for the object API")
    return Terraformer(
        owner,
        purpose,
        client=context['client'],
        renderer=context.get('renderer'),
        settings=context.get('settings'),
    )


@dataclass
class TerraformerApplyAction:
    """Define the configuration of a purpose and apply it."""
    name: str
    purpose: str          # e.g. "infra", "internal-dns"
    bundle: str           # config bundle under settings.bundle_dir
    values: dict = field(default_factory=dict)
    variables: Optional[list] = None  # TF_VAR_* environment

    def run(self, owner: Owner, context: dict) -> ActionResult:
        """Execute define + apply for owner."""
        start = time.time()
        logger.info(f"[{self.name}] Applying '{self.bundle}' for {owner.name}.{self.purpose}...")

        try:
            _terraformer(owner, self.purpose, context) \
                .set_variables_environment(self.variables) \
                .define_config(self.bundle, dict(self.values)) \
                .apply()
        except (TerraformerError, KubeError) as e:
            return ActionResult(
                success=False,
                message=f"Terraformer apply failed: {e}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Terraformer apply completed for {owner.name}.{self.purpose}",
            duration=time.time() - start
        )


@dataclass
class TerraformerDestroyAction:
    """Destroy the infrastructure of a purpose and remove its objects."""
    name: str
    purpose: str
    variables: Optional[list] = None

    def run(self, owner: Owner, context: dict) -> ActionResult:
        """Execute destroy + cleanup for owner."""
        start = time.time()
        logger.info(f"[{self.name}] Destroying {owner.name}.{self.purpose}...")

        try:
            _terraformer(owner, self.purpose, context) \
                .set_variables_environment(self.variables) \
                .destroy()
        except (TerraformerError, KubeError) as e:
            return ActionResult(
                success=False,
                message=f"Terraformer destroy failed: {e}",
                duration=time.time() - start
            )

        return ActionResult(
            success=True,
            message=f"Terraformer destroy completed for {owner.name}.{self.purpose}",
            duration=time.time() - start
        )
