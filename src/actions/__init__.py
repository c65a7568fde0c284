"""Reusable infrastructure actions."""

from actions.terraformer import (
    TerraformerApplyAction,
    TerraformerDestroyAction,
    generate_variables_environment,
)

__all__ = [
    'TerraformerApplyAction',
    'TerraformerDestroyAction',
    'generate_variables_environment',
]
