"""Bundle rendering and submission.

A bundle is a directory of Jinja2 templates (``*.yaml.j2``) producing
object manifests. Rendering turns a bundle plus a value map into a list of
manifest dicts; apply_bundle submits them to the object API.
"""

import base64
import json
import logging
from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from common import merge_maps

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = '.yaml.j2'


class BundleError(Exception):
    """Bundle could not be rendered."""


@runtime_checkable
class BundleRenderer(Protocol):
    """Protocol for renderers turning a bundle into manifests."""

    def render(self, bundle_path: Path, name: str, namespace: str, values: dict) -> list[dict]:
        """Render the bundle and return its manifests."""


def _b64encode(value) -> str:
    return base64.b64encode(str(value).encode('utf-8')).decode('ascii')


class TemplateBundleRenderer:
    """Render bundles made of Jinja2 YAML templates."""

    def render(self, bundle_path: Path, name: str, namespace: str, values: dict) -> list[dict]:
        """Render every template in bundle_path, sorted by file name.

        Templates see ``values`` and ``release`` (name, namespace).

        Raises:
            BundleError: If the bundle is missing, a template fails to render,
                or the output is not valid YAML
        """
        bundle_path = Path(bundle_path)
        if not bundle_path.is_dir():
            raise BundleError(f"Bundle not found: {bundle_path}")

        env = Environment(
            loader=FileSystemLoader(str(bundle_path)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            auto_reload=False,
        )
        env.filters['b64encode'] = _b64encode
        env.filters['to_json'] = json.dumps

        templates = sorted(p.name for p in bundle_path.iterdir() if p.name.endswith(TEMPLATE_SUFFIX))
        if not templates:
            raise BundleError(f"Bundle {bundle_path} contains no {TEMPLATE_SUFFIX} templates")

        context = {
            'values': values,
            'release': {'name': name, 'namespace': namespace},
        }
        manifests: list[dict] = []
        for template_name in templates:
            try:
                text = env.get_template(template_name).render(**context)
                documents = list(yaml.safe_load_all(text))
            except TemplateError as e:
                raise BundleError(f"Failed to render {bundle_path.name}/{template_name}: {e}") from e
            except yaml.YAMLError as e:
                raise BundleError(f"Invalid YAML from {bundle_path.name}/{template_name}: {e}") from e

            for doc in documents:
                if not doc:
                    continue
                if not isinstance(doc, dict):
                    raise BundleError(f"{bundle_path.name}/{template_name} produced a non-object document")
                doc.setdefault('metadata', {}).setdefault('namespace', namespace)
                manifests.append(doc)

        logger.debug("Rendered %d manifests from bundle %s", len(manifests), bundle_path.name)
        return manifests


def apply_bundle(
    client,
    renderer: BundleRenderer,
    bundle_path: Path,
    name: str,
    namespace: str,
    default_values: Optional[dict],
    additional_values: Optional[dict],
    exclude: Optional[Callable[[dict], bool]] = None
) -> None:
    """Render a bundle with merged values and submit its manifests.

    Args:
        client: Object API client providing apply_manifests()
        renderer: Renderer producing the manifests
        bundle_path: Bundle directory
        name: Release name passed to the templates
        namespace: Target namespace
        default_values: Base values
        additional_values: Values overriding the defaults
        exclude: Predicate; manifests for which it returns True are dropped
    """
    values = merge_maps(default_values, additional_values)
    manifests = renderer.render(bundle_path, name, namespace, values)
    if exclude is not None:
        kept = [m for m in manifests if not exclude(m)]
        if len(kept) != len(manifests):
            logger.debug("Skipping %d manifests of bundle %s", len(manifests) - len(kept), name)
        manifests = kept
    client.apply_manifests(manifests)
