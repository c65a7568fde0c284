"""Terraformer and cluster-access configuration.

Configuration is loaded from YAML files:
- terraformer.yaml: poll timings, bundle location, runner image
- kubeconfig: API server, credentials and CA of the orchestration cluster

Resolution order for the terraformer settings file:
1. Explicit path argument
2. $TERRAFORMER_CONFIG environment variable
3. Built-in defaults

Environment overrides ($TERRAFORMER_IMAGE, $TERRAFORMER_BUNDLE_DIR) are
applied last.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


def get_base_dir() -> Path:
    """Get the repository directory."""
    return Path(__file__).parent.parent  # src/ -> repo/


def get_bundle_dir() -> Path:
    """Get the directory holding the shipped bundles."""
    return get_base_dir() / 'bundles'


@dataclass
class TerraformerSettings:
    """Timings and locations used by a Terraformer run.

    All durations are in seconds. Infrastructure changes are slow, so the
    Job wait is much longer than the others.
    """
    poll_interval: float = 5
    clean_environment_timeout: float = 120
    pod_timeout: float = 120
    job_timeout: float = 3600
    prepare_timeout: float = 30
    define_config_timeout: float = 60
    bundle_dir: Path = field(default_factory=get_bundle_dir)
    image: str = 'terraformer:latest'
    # Fail the run instead of starting the Job when the validation Pod
    # vanishes mid-wait.
    fail_on_missing_validation_pod: bool = False

    def __post_init__(self):
        if isinstance(self.bundle_dir, str):
            self.bundle_dir = Path(self.bundle_dir)
        for name in ('poll_interval', 'clean_environment_timeout', 'pod_timeout',
                     'job_timeout', 'prepare_timeout', 'define_config_timeout'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"'{name}' must be a number of seconds, got {value!r}")
            if value < 0:
                raise ConfigError(f"'{name}' must not be negative, got {value!r}")


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def load_settings(path: Optional[Path] = None) -> TerraformerSettings:
    """Load TerraformerSettings from YAML with environment overrides.

    Args:
        path: Settings file; falls back to $TERRAFORMER_CONFIG

    Raises:
        ConfigError: If the file is missing, malformed or has unknown keys
    """
    values: dict = {}

    if path is None and (env_path := os.environ.get('TERRAFORMER_CONFIG')):
        path = Path(env_path)

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Terraformer config not found: {path}")
        values = _parse_yaml(path).get('terraformer', {}) or {}

    known = {f.name for f in fields(TerraformerSettings)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"Unknown terraformer settings: {', '.join(unknown)}")

    if image := os.environ.get('TERRAFORMER_IMAGE'):
        values['image'] = image
    if bundle_dir := os.environ.get('TERRAFORMER_BUNDLE_DIR'):
        values['bundle_dir'] = bundle_dir

    return TerraformerSettings(**values)


@dataclass
class KubeConfig:
    """Connection parameters for the orchestration cluster API."""
    server: str
    token: str = ''
    ca_file: Optional[Path] = None
    insecure: bool = False
    namespace: str = 'default'
    request_timeout: float = 30


def _named_entry(entries: list, name: str, kind: str, path: Path) -> dict:
    """Find the entry called <name> in a kubeconfig list section."""
    for entry in entries or []:
        if entry.get('name') == name:
            return entry.get(kind) or {}
    raise ConfigError(f"{kind} '{name}' not found in {path}")


def load_kube_config(path: Optional[Path] = None, context: Optional[str] = None) -> KubeConfig:
    """Load connection parameters from a kubeconfig file.

    Resolution order for the file: explicit path, $KUBECONFIG (first entry),
    ~/.kube/config. Only bearer-token users are supported.

    Raises:
        ConfigError: If the file, the context, or its cluster/user is missing
    """
    if path is None:
        if env_path := os.environ.get('KUBECONFIG'):
            path = Path(env_path.split(os.pathsep)[0])
        else:
            path = Path.home() / '.kube' / 'config'
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"kubeconfig not found: {path}")

    data = _parse_yaml(path)
    context_name = context or data.get('current-context')
    if not context_name:
        raise ConfigError(f"No current-context set in {path}")

    ctx = _named_entry(data.get('contexts'), context_name, 'context', path)
    cluster = _named_entry(data.get('clusters'), ctx.get('cluster', ''), 'cluster', path)
    user = _named_entry(data.get('users'), ctx.get('user', ''), 'user', path)

    server = cluster.get('server')
    if not server:
        raise ConfigError(f"Cluster '{ctx.get('cluster')}' in {path} has no server")

    token = user.get('token', '')
    if not token and (token_file := user.get('tokenFile')):
        token = Path(token_file).read_text(encoding='utf-8').strip()

    ca_file = cluster.get('certificate-authority')
    return KubeConfig(
        server=server.rstrip('/'),
        token=token,
        ca_file=Path(ca_file) if ca_file else None,
        insecure=bool(cluster.get('insecure-skip-tls-verify', False)),
        namespace=ctx.get('namespace', 'default'),
    )
