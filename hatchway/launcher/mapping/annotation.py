"""Ambassador v1 mapper that writes the route as a service annotation.

The ``Mapping`` YAML is rendered with Jinja2 and stored in the
``getambassador.io/config`` annotation, which Ambassador v1 reads straight
off the service.  No extra API call is made, so ``stop`` has nothing to do.

Template variables available:

- ``resource_name`` : str -- service name, reused as mapping name
- ``user_name``     : str -- value of the ``remote_user`` header to match
- ``service_name``  : str
- ``namespace``     : str
- ``host_domain``   : str
- ``path_rewrite``  : str
- ``use_tls``       : str
"""

from __future__ import annotations

from typing import Any

import jinja2
import yaml

from hatchway.launcher.mapping.base import DEFAULT_HOST_DOMAIN, MAPPING_ANNOTATION

DEFAULT_MAPPING_TEMPLATE = """\
---
apiVersion: ambassador/v1
kind:  Mapping
name:  {{ resource_name }}
prefix: /
headers:
  remote_user: {{ user_name }}
service: {{ service_name }}.{{ namespace }}.{{ host_domain }}
bypass_auth: true
timeout_ms: 300000
use_websocket: true
rewrite: {{ path_rewrite }}
tls: {{ use_tls }}
"""


class AnnotationServiceMapper:
    """Annotation-based implementation of the ServiceMapper protocol.

    *mapping_template* optionally replaces the default ``Mapping`` with a
    custom document; its string values may use the template variables
    listed in the module docstring.
    """

    def __init__(self, host_domain: str = "", mapping_template: dict[str, Any] | None = None) -> None:
        self._host_domain = host_domain or DEFAULT_HOST_DOMAIN
        source = DEFAULT_MAPPING_TEMPLATE
        if mapping_template is not None:
            source = "---\n" + yaml.safe_dump(mapping_template, sort_keys=False)
        env = jinja2.Environment(autoescape=False, undefined=jinja2.StrictUndefined)  # noqa: S701
        self._template = env.from_string(source)

    def render(self, namespace: str, service_name: str, user: str, path_rewrite: str, use_tls: str) -> str:
        return self._template.render(
            resource_name=service_name,
            user_name=user,
            service_name=service_name,
            namespace=namespace,
            host_domain=self._host_domain,
            path_rewrite=path_rewrite,
            use_tls=use_tls,
        )

    async def start(
        self,
        namespace: str,
        service_name: str,
        user: str,
        path_rewrite: str,
        use_tls: str,
        service: Any,
    ) -> None:
        if service.metadata.annotations is None:
            service.metadata.annotations = {}
        # Rendering is deterministic, so repeated starts write the same value.
        service.metadata.annotations[MAPPING_ANNOTATION] = self.render(
            namespace, service_name, user, path_rewrite, use_tls
        )

    async def stop(self, namespace: str, service_name: str) -> None:
        return None

    async def get_url(self, namespace: str, service_name: str) -> str:
        return f"{service_name}.{self._host_domain}"
