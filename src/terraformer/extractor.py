"""Error extraction from Terraform run logs.

Terraform prints a block like::

    Error applying plan:

    2 error(s) occurred:

    * aws_route53_record.record: ...
    * aws_vpc.vpc: ...

    Terraform does not automatically rollback in the face of errors.
    ...

The extractor pulls out the bullet list, normalizes it so that the same
failure reported by several Pods (differing only in request IDs) compares
equal, and attributes each distinct message to one Pod.
"""

import re
from typing import Optional, Protocol, runtime_checkable

ROLLBACK_NOTE = "\n\nTerraform does not automatically rollback"
UUID_PLACEHOLDER = '<omitted>'

_ERROR_HEADER = re.compile(r'(?:Error [^:]*|Errors): *([\s\S]*)')
_UUID = re.compile(r'[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12}', re.IGNORECASE)
_MULTI_NEWLINE = re.compile(r'\n{2,}')


@runtime_checkable
class ErrorExtractor(Protocol):
    """Protocol for turning per-Pod logs into reportable error entries."""

    def extract(self, logs_by_pod: dict[str, str]) -> Optional[list[str]]:
        """Return formatted error entries, or None if nothing was recognized."""


def find_terraform_errors(output: str) -> str:
    """Return the normalized error block of one Terraform log, or ''."""
    message = output

    suffix_index = message.find(ROLLBACK_NOTE)
    if suffix_index != -1:
        message = message[:suffix_index]

    match = _ERROR_HEADER.search(message)
    if not match:
        return ''

    message = match.group(1).strip()
    message = _UUID.sub(UUID_PLACEHOLDER, message)

    # Bullets start with '* '; anything not indented is header/footer noise
    bullets = [line for line in sorted(message.split('*')) if line.startswith(' ')]
    if not bullets:
        # Single-error output without a bullet list
        return _MULTI_NEWLINE.sub('\n', message).strip()

    message = '*' + '\n*'.join(bullets)
    message = _MULTI_NEWLINE.sub('\n', message)
    return message.strip()


def retrieve_terraform_errors(logs_by_pod: dict[str, str]) -> Optional[list[str]]:
    """Collect distinct Terraform errors from the logs of several Pods.

    Pods are visited in name order and each distinct message is attributed
    to the first Pod reporting it. Entries are sorted by message.

    Returns:
        One "-> Pod '<name>' reported:\\n<message>" entry per distinct
        message, or None if no log contains an error block
    """
    found: dict[str, str] = {}
    for pod_name in sorted(logs_by_pod):
        message = find_terraform_errors(logs_by_pod[pod_name])
        if message and message not in found:
            found[message] = pod_name

    if not found:
        return None
    return [f"-> Pod '{found[message]}' reported:\n{message}" for message in sorted(found)]


class TerraformErrorExtractor:
    """ErrorExtractor for Terraform's textual output."""

    def extract(self, logs_by_pod: dict[str, str]) -> Optional[list[str]]:
        return retrieve_terraform_errors(logs_by_pod)
