"""Shared pytest fixtures for terraformer tests."""

import copy
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import TerraformerSettings  # noqa: E402
from kube.client import KubeError, NotFoundError  # noqa: E402
from terraformer.types import Owner  # noqa: E402


TERRAFORM_ERROR_LOG = """
aws_route53_record.record: Refreshing state...

Error applying plan:

1 error(s) occurred:

* aws_route53_record.record: InvalidChangeBatch: Tried to create resource record set but it already exists
\tstatus code: 400, request id: {request_id}

Terraform does not automatically rollback in the face of errors.
Instead, your Terraform state file has been partially updated with
any resources that successfully completed.
"""


class FakeKubeClient:
    """In-memory object API with scripted Pod/Job outcomes.

    Applying the validation Pod makes it terminate immediately with
    `validation_exit_code`. Applying the Job creates one Pod per entry of
    `job_logs` and marks the Job succeeded or failed per `job_succeeds`.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str, str], dict] = {}
        self.logs: dict[str, str] = {}
        self.validation_exit_code = 2
        self.validation_logs = ''
        self.job_succeeds = True
        self.job_logs = ['']
        self.applied: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.errors: dict[tuple[str, str], KubeError] = {}

    # -- helpers for tests ---------------------------------------------------

    def add(self, kind: str, namespace: str, name: str, **fields) -> dict:
        obj = {'kind': kind, 'metadata': {'name': name, 'namespace': namespace}}
        obj.update(fields)
        self.objects[(kind, namespace, name)] = obj
        return obj

    def fail(self, method: str, name: str, error: KubeError) -> None:
        """Make method (e.g. 'delete_secret') raise error for name."""
        self.errors[(method, name)] = error

    def _check(self, method: str, name: str) -> None:
        if (method, name) in self.errors:
            raise self.errors[(method, name)]

    def has(self, kind: str, namespace: str, name: str) -> bool:
        return (kind, namespace, name) in self.objects

    def kinds(self, kind: str) -> list[str]:
        return [name for (k, _, name) in self.objects if k == kind]

    def _get(self, kind: str, namespace: str, name: str) -> dict:
        try:
            return copy.deepcopy(self.objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(404, 'NotFound', f'{kind} "{name}" not found') from None

    def _delete(self, kind: str, namespace: str, name: str) -> None:
        if (kind, namespace, name) not in self.objects:
            raise NotFoundError(404, 'NotFound', f'{kind} "{name}" not found')
        del self.objects[(kind, namespace, name)]
        self.logs.pop(name, None)
        self.deleted.append((kind, name))

    # -- object API ----------------------------------------------------------

    def get_config_map(self, namespace, name):
        self._check('get_config_map', name)
        return self._get('ConfigMap', namespace, name)

    def get_secret(self, namespace, name):
        self._check('get_secret', name)
        return self._get('Secret', namespace, name)

    def get_pod(self, namespace, name):
        self._check('get_pod', name)
        return self._get('Pod', namespace, name)

    def get_job(self, namespace, name):
        self._check('get_job', name)
        return self._get('Job', namespace, name)

    def delete_config_map(self, namespace, name):
        self._check('delete_config_map', name)
        self._delete('ConfigMap', namespace, name)

    def delete_secret(self, namespace, name):
        self._check('delete_secret', name)
        self._delete('Secret', namespace, name)

    def delete_pod(self, namespace, name):
        self._check('delete_pod', name)
        self._delete('Pod', namespace, name)

    def delete_job(self, namespace, name):
        self._check('delete_job', name)
        self._delete('Job', namespace, name)

    def list_pods(self, namespace, label_selector=''):
        self._check('list_pods', label_selector)
        key, _, value = label_selector.partition('=')
        return [
            copy.deepcopy(obj) for (kind, ns, _), obj in self.objects.items()
            if kind == 'Pod' and ns == namespace
            and obj['metadata'].get('labels', {}).get(key) == value
        ]

    def get_pod_logs(self, namespace, name):
        self._check('get_pod_logs', name)
        self._get('Pod', namespace, name)
        return self.logs.get(name, '')

    def apply_manifests(self, objs):
        for obj in objs:
            self.apply_object(obj)

    def apply_object(self, obj):
        obj = copy.deepcopy(obj)
        kind = obj['kind']
        meta = obj['metadata']
        namespace, name = meta['namespace'], meta['name']
        self._check('apply_object', name)
        self.applied.append((kind, name))

        if kind == 'Pod':
            obj['status'] = {
                'phase': 'Failed' if self.validation_exit_code == 1 else 'Succeeded',
                'containerStatuses': [
                    {'state': {'terminated': {'exitCode': self.validation_exit_code}}}
                ],
            }
            self.logs[name] = self.validation_logs
        elif kind == 'Job':
            job_name_label = obj['spec']['template']['metadata']['labels']['job-name']
            for i, log in enumerate(self.job_logs):
                pod_name = f'{name}-{i}'
                self.add('Pod', namespace, pod_name,
                         status={'phase': 'Succeeded' if self.job_succeeds else 'Failed'})
                self.objects[('Pod', namespace, pod_name)]['metadata']['labels'] = {
                    'job-name': job_name_label}
                self.logs[pod_name] = log
            if self.job_succeeds:
                obj['status'] = {'succeeded': 1, 'conditions': [{'type': 'Complete', 'status': 'True'}]}
            else:
                obj['status'] = {'succeeded': 0, 'failed': len(self.job_logs),
                                 'conditions': [{'type': 'Failed', 'status': 'True'}]}

        self.objects[(kind, namespace, name)] = obj
        return obj


@pytest.fixture
def fake_client():
    """Empty in-memory object API."""
    return FakeKubeClient()


@pytest.fixture
def fast_settings():
    """Settings with tiny poll intervals and ceilings."""
    return TerraformerSettings(
        poll_interval=0.01,
        clean_environment_timeout=0.1,
        pod_timeout=0.1,
        job_timeout=0.1,
        prepare_timeout=0.05,
        define_config_timeout=0.05,
    )


@pytest.fixture
def owner():
    return Owner(name='shoot1', namespace='garden-dev')


@pytest.fixture
def durable_artifacts(fake_client, owner):
    """Create config, variables and a non-empty state for owner.infra."""
    ns = owner.namespace
    fake_client.add('ConfigMap', ns, 'shoot1.infra.tf-config', data={'main.tf': ''})
    fake_client.add('Secret', ns, 'shoot1.infra.tf-vars', data={})
    fake_client.add('ConfigMap', ns, 'shoot1.infra.tf-state',
                    data={'terraform.tfstate': '{"version": 3}'})
    return fake_client


@pytest.fixture
def error_log():
    """Build a Terraform failure log with a given request id."""
    def _build(request_id='8f4a2b1c-1d2e-4f5a-9b8c-7d6e5f4a3b2c'):
        return TERRAFORM_ERROR_LOG.format(request_id=request_id)
    return _build
