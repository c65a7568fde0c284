"""Names, constants and errors shared by the terraformer modules."""

from dataclasses import dataclass

# Suffixes of the objects belonging to one <owner>.<purpose> run
CONFIG_SUFFIX = '.tf-config'
VARIABLES_SUFFIX = '.tf-vars'
STATE_SUFFIX = '.tf-state'
POD_SUFFIX = '.tf-pod'
JOB_SUFFIX = '.tf-job'

# Data key of the state ConfigMap
STATE_KEY = 'terraform.tfstate'

# Label carried by the validation Pod and the Job's Pods
JOB_NAME_LABEL = 'job-name'

# Bundle holding the Pod/Job manifest
RUNNER_BUNDLE = 'terraformer'

PURPOSE_INFRA = 'infra'
PURPOSE_INTERNAL_DNS = 'internal-dns'
PURPOSE_EXTERNAL_DNS = 'external-dns'
PURPOSE_BACKUP = 'backup'
PURPOSE_KUBE2IAM = 'kube2iam'
PURPOSE_INGRESS = 'ingress'

SCRIPT_VALIDATE = 'validate'
SCRIPT_APPLY = 'apply'
SCRIPT_DESTROY = 'destroy'

# Exit codes of the validation Pod ('terraform plan -detailed-exitcode')
EXIT_NO_CHANGES = 0
EXIT_ERROR = 1
EXIT_DRIFT = 2

# Number of durable artifacts (config, variables, state)
DURABLE_ARTIFACTS = 3


@dataclass(frozen=True)
class Owner:
    """Parent entity a run is scoped to."""
    name: str
    namespace: str


@dataclass(frozen=True)
class TerraformerNames:
    """Object names derived from <owner>.<purpose>."""
    config: str
    variables: str
    state: str
    pod: str
    job: str

    @classmethod
    def for_run(cls, owner: Owner, purpose: str) -> 'TerraformerNames':
        prefix = f"{owner.name}.{purpose}"
        return cls(
            config=prefix + CONFIG_SUFFIX,
            variables=prefix + VARIABLES_SUFFIX,
            state=prefix + STATE_SUFFIX,
            pod=prefix + POD_SUFFIX,
            job=prefix + JOB_SUFFIX,
        )

    @property
    def label_selector(self) -> str:
        return f"{JOB_NAME_LABEL}={self.job}"


class TerraformerError(Exception):
    """Base exception for terraformer errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(TerraformerError):
    """Run requested without the inputs it needs; not retryable."""


class PrepareError(TerraformerError):
    """Durable artifacts never reached a consistent count."""


class CleanupTimeoutError(TerraformerError):
    """Leftover Job/Pods of a previous run did not go away in time."""


class DeployError(TerraformerError):
    """Validation Pod or execution Job manifest could not be rendered."""


class ExecutionError(TerraformerError):
    """Validation or execution of the scripts failed.

    Attributes:
        errors: Pod-attributed error excerpts found in the logs
    """

    GENERIC_MESSAGE = "Terraform execution job could not be completed."

    def __init__(self, errors: list[str] | None = None):
        self.errors = list(errors or [])
        message = self.GENERIC_MESSAGE
        if self.errors:
            message += " The following issues have been found in the logs:\n\n" + "\n\n".join(self.errors)
        super().__init__(message)
