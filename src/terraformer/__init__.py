"""Terraformer package: supervised Terraform runs driven through cluster objects.

Scoped to an owner and a purpose, a Terraformer stores configuration,
variables and state as objects, validates and executes the scripts in a
Pod/Job, and reports deduplicated errors from their logs.
"""

from terraformer.core import Terraformer
from terraformer.executor import Executor, RunPhase, RunState
from terraformer.extractor import (
    ErrorExtractor,
    TerraformErrorExtractor,
    find_terraform_errors,
    retrieve_terraform_errors,
)
from terraformer.preparer import Preparer
from terraformer.types import (
    Owner,
    TerraformerNames,
    TerraformerError,
    ConfigurationError,
    PrepareError,
    CleanupTimeoutError,
    DeployError,
    ExecutionError,
    PURPOSE_INFRA,
    PURPOSE_INTERNAL_DNS,
    PURPOSE_EXTERNAL_DNS,
    PURPOSE_BACKUP,
    PURPOSE_KUBE2IAM,
    PURPOSE_INGRESS,
)

__all__ = [
    # Handle
    "Terraformer",
    "Owner",
    "TerraformerNames",
    # Pipeline
    "Executor",
    "RunPhase",
    "RunState",
    "Preparer",
    # Errors from logs
    "ErrorExtractor",
    "TerraformErrorExtractor",
    "find_terraform_errors",
    "retrieve_terraform_errors",
    # Exceptions
    "TerraformerError",
    "ConfigurationError",
    "PrepareError",
    "CleanupTimeoutError",
    "DeployError",
    "ExecutionError",
    # Purposes
    "PURPOSE_INFRA",
    "PURPOSE_INTERNAL_DNS",
    "PURPOSE_EXTERNAL_DNS",
    "PURPOSE_BACKUP",
    "PURPOSE_KUBE2IAM",
    "PURPOSE_INGRESS",
]
