"""Service mapper interface.

A mapper tells the public proxy how to reach a workspace service.  It is
called with the service object *before* the service is submitted, so
implementations may either mutate it (annotations) or register a
separate routing resource.  ``start`` and ``stop`` must be idempotent.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

MAPPING_ANNOTATION = "getambassador.io/config"
DEFAULT_HOST_DOMAIN = "svc.cluster.local:80"


@runtime_checkable
class ServiceMapper(Protocol):
    async def start(
        self,
        namespace: str,
        service_name: str,
        user: str,
        path_rewrite: str,
        use_tls: str,
        service: Any,
    ) -> None:
        """Register a route to *service* (a ``V1Service``) for *user*."""
        ...

    async def stop(self, namespace: str, service_name: str) -> None:
        """Remove the route; a missing route is not an error."""
        ...

    async def get_url(self, namespace: str, service_name: str) -> str:
        """Return the in-cluster URL the proxy uses for the service."""
        ...
