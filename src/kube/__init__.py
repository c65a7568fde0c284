"""Object API access for the orchestration cluster."""

from kube.client import (
    KubeClient,
    KubeError,
    NotFoundError,
    is_not_found,
    encode_secret_data,
)

__all__ = [
    "KubeClient",
    "KubeError",
    "NotFoundError",
    "is_not_found",
    "encode_secret_data",
]
