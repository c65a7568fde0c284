"""REST client for the orchestration cluster's object API.

Covers the handful of object kinds a Terraformer run touches (ConfigMap,
Secret, Pod, Job) plus generic create-or-update for rendered manifests.
Objects are plain dicts in their JSON wire form.
"""

import base64
import logging
from typing import Iterable, Optional

import requests
import urllib3

from config import KubeConfig

logger = logging.getLogger(__name__)

# kind -> (API path prefix, plural resource name)
RESOURCES = {
    'ConfigMap': ('/api/v1', 'configmaps'),
    'Secret': ('/api/v1', 'secrets'),
    'Pod': ('/api/v1', 'pods'),
    'Job': ('/apis/batch/v1', 'jobs'),
}

DEFAULT_NAMESPACE = 'default'


class KubeError(Exception):
    """Error returned by the object API.

    A status of 0 means the request never got an HTTP response.
    """

    def __init__(self, status: int, reason: str, message: str):
        self.status = status
        self.reason = reason
        self.message = message
        super().__init__(f"{status} {reason}: {message}")


class NotFoundError(KubeError):
    """Requested object does not exist."""


def is_not_found(error: BaseException) -> bool:
    """Return True if error means the object does not exist."""
    return isinstance(error, NotFoundError)


def encode_secret_data(data: dict) -> dict:
    """Base64-encode plain string values for a Secret's data field."""
    return {
        key: base64.b64encode(str(value).encode('utf-8')).decode('ascii')
        for key, value in (data or {}).items()
    }


class KubeClient:
    """Thin object API client on top of requests.Session."""

    def __init__(self, config: KubeConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update({'Accept': 'application/json'})
        if config.token:
            self.session.headers['Authorization'] = f"Bearer {config.token}"
        if config.insecure:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self.session.verify = False
        elif config.ca_file:
            self.session.verify = str(config.ca_file)

    # -- plumbing ---------------------------------------------------------

    def _path(self, kind: str, namespace: str, name: Optional[str] = None) -> str:
        if kind not in RESOURCES:
            raise KubeError(0, 'UnsupportedKind', f"Kind '{kind}' is not supported")
        prefix, plural = RESOURCES[kind]
        path = f"{prefix}/namespaces/{namespace}/{plural}"
        if name:
            path += f"/{name}"
        return path

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.config.server}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method, url, timeout=self.config.request_timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise KubeError(0, 'ConnectionError', str(e)) from e

        if response.status_code >= 400:
            reason, message = self._parse_error(response)
            error_cls = NotFoundError if response.status_code == 404 else KubeError
            raise error_cls(response.status_code, reason, message)
        return response

    @staticmethod
    def _parse_error(response: requests.Response) -> tuple[str, str]:
        """Extract (reason, message) from a Status error body."""
        try:
            data = response.json()
        except ValueError:
            return response.reason or 'Error', response.text[:200]
        if not isinstance(data, dict):
            return response.reason or 'Error', response.text[:200]
        return data.get('reason', response.reason or 'Error'), data.get('message', '')

    def get(self, kind: str, namespace: str, name: str) -> dict:
        return self._request('GET', self._path(kind, namespace, name)).json()

    def create(self, kind: str, namespace: str, obj: dict) -> dict:
        return self._request('POST', self._path(kind, namespace), json=obj).json()

    def update(self, kind: str, namespace: str, obj: dict) -> dict:
        name = obj['metadata']['name']
        return self._request('PUT', self._path(kind, namespace, name), json=obj).json()

    def delete(self, kind: str, namespace: str, name: str) -> None:
        self._request('DELETE', self._path(kind, namespace, name))

    # -- typed helpers ----------------------------------------------------

    def get_config_map(self, namespace: str, name: str) -> dict:
        return self.get('ConfigMap', namespace, name)

    def create_config_map(self, namespace: str, name: str, data: dict) -> dict:
        return self.create('ConfigMap', namespace, {
            'apiVersion': 'v1',
            'kind': 'ConfigMap',
            'metadata': {'name': name, 'namespace': namespace},
            'data': data,
        })

    def update_config_map(self, namespace: str, obj: dict) -> dict:
        return self.update('ConfigMap', namespace, obj)

    def delete_config_map(self, namespace: str, name: str) -> None:
        self.delete('ConfigMap', namespace, name)

    def get_secret(self, namespace: str, name: str) -> dict:
        return self.get('Secret', namespace, name)

    def create_secret(self, namespace: str, name: str, data: dict) -> dict:
        return self.create('Secret', namespace, {
            'apiVersion': 'v1',
            'kind': 'Secret',
            'type': 'Opaque',
            'metadata': {'name': name, 'namespace': namespace},
            'data': encode_secret_data(data),
        })

    def update_secret(self, namespace: str, obj: dict) -> dict:
        return self.update('Secret', namespace, obj)

    def delete_secret(self, namespace: str, name: str) -> None:
        self.delete('Secret', namespace, name)

    def get_pod(self, namespace: str, name: str) -> dict:
        return self.get('Pod', namespace, name)

    def create_pod(self, namespace: str, obj: dict) -> dict:
        return self.create('Pod', namespace, obj)

    def delete_pod(self, namespace: str, name: str) -> None:
        self.delete('Pod', namespace, name)

    def list_pods(self, namespace: str, label_selector: str = '') -> list[dict]:
        """List Pods in namespace, optionally filtered by a label selector."""
        params = {'labelSelector': label_selector} if label_selector else None
        response = self._request('GET', self._path('Pod', namespace), params=params)
        return response.json().get('items') or []

    def get_pod_logs(self, namespace: str, name: str) -> str:
        response = self._request('GET', self._path('Pod', namespace, name) + '/log')
        return response.text

    def get_job(self, namespace: str, name: str) -> dict:
        return self.get('Job', namespace, name)

    def create_job(self, namespace: str, obj: dict) -> dict:
        return self.create('Job', namespace, obj)

    def delete_job(self, namespace: str, name: str) -> None:
        self.delete('Job', namespace, name)

    # -- manifests --------------------------------------------------------

    def apply_object(self, obj: dict) -> dict:
        """Create obj, or update it in place if it already exists.

        The live object's resourceVersion and finalizers are carried over so
        the update does not conflict or drop finalizers set by others.
        """
        metadata = obj.setdefault('metadata', {})
        namespace = metadata.setdefault('namespace', DEFAULT_NAMESPACE)
        kind = obj.get('kind', '')
        name = metadata.get('name')
        if not name:
            raise KubeError(0, 'Invalid', f"{kind or 'Object'} without metadata.name")

        try:
            current = self.get(kind, namespace, name)
        except NotFoundError:
            logger.debug("Creating %s %s/%s", kind, namespace, name)
            return self.create(kind, namespace, obj)

        current_meta = current.get('metadata', {})
        metadata['resourceVersion'] = current_meta.get('resourceVersion')
        if 'finalizers' in current_meta:
            metadata['finalizers'] = current_meta['finalizers']
        logger.debug("Updating %s %s/%s", kind, namespace, name)
        return self.update(kind, namespace, obj)

    def apply_manifests(self, objs: Iterable[dict]) -> None:
        """Apply every object in order, stopping at the first failure."""
        for obj in objs:
            self.apply_object(obj)
