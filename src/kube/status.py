"""Accessors for the status fields of Pod, Job and Secret objects."""

import base64
from typing import Optional

POD_SUCCEEDED = 'Succeeded'
POD_FAILED = 'Failed'

JOB_COMPLETE = 'Complete'
JOB_FAILED = 'Failed'


def object_name(obj: dict) -> str:
    return obj.get('metadata', {}).get('name', '')


def object_namespace(obj: dict) -> str:
    return obj.get('metadata', {}).get('namespace', '')


def pod_phase(pod: dict) -> str:
    return (pod.get('status') or {}).get('phase', '')


def pod_terminated(pod: dict) -> bool:
    """Return True once the Pod reached a terminal phase."""
    return pod_phase(pod) in (POD_SUCCEEDED, POD_FAILED)


def container_exit_code(pod: dict, index: int = 0) -> Optional[int]:
    """Return the terminated exit code of a container, or None if unknown."""
    statuses = (pod.get('status') or {}).get('containerStatuses') or []
    if len(statuses) <= index:
        return None
    terminated = (statuses[index].get('state') or {}).get('terminated')
    if not terminated or 'exitCode' not in terminated:
        return None
    return int(terminated['exitCode'])


def job_succeeded(job: dict) -> int:
    """Return the number of succeeded Pods of a Job."""
    return int((job.get('status') or {}).get('succeeded') or 0)


def job_finished(job: dict) -> bool:
    """Return True if the Job carries a Complete or Failed condition."""
    for condition in (job.get('status') or {}).get('conditions') or []:
        if condition.get('type') in (JOB_COMPLETE, JOB_FAILED):
            return True
    return False


def secret_data(secret: dict) -> dict:
    """Return a Secret's data with values base64-decoded to str."""
    return {
        key: base64.b64decode(value).decode('utf-8')
        for key, value in (secret.get('data') or {}).items()
    }
