"""Ambassador v2 mapper backed by ``Mapping`` custom resources.

Each workspace gets a ``mappings.getambassador.io/v2`` object named after
its service.  Create conflicts and delete misses are treated as success
so both calls are idempotent.
"""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException
from loguru import logger

from hatchway.launcher.drivers.kube import HTTP_CONFLICT, HTTP_NOT_FOUND, KubeConnector, wrap_api_error
from hatchway.launcher.mapping.base import DEFAULT_HOST_DOMAIN

GROUP = "getambassador.io"
VERSION = "v2"
PLURAL = "mappings"


class MappingResourceServiceMapper:
    """CRD-based implementation of the ServiceMapper protocol."""

    def __init__(self, connector: KubeConnector, host_domain: str = "") -> None:
        self._connector = connector
        self._host_domain = host_domain or DEFAULT_HOST_DOMAIN

    @staticmethod
    def build_mapping(namespace: str, service_name: str, user: str, path_rewrite: str) -> dict[str, Any]:
        return {
            "apiVersion": f"{GROUP}/{VERSION}",
            "kind": "Mapping",
            "metadata": {"name": service_name, "namespace": namespace},
            "spec": {
                "prefix": path_rewrite,
                "service": service_name,
                "headers": {"remote_user": user},
            },
        }

    async def start(
        self,
        namespace: str,
        service_name: str,
        user: str,
        path_rewrite: str,
        use_tls: str,
        service: Any,
    ) -> None:
        body = self.build_mapping(namespace, service_name, user, path_rewrite)
        async with self._connector.connect() as kube:
            try:
                await kube.custom.create_namespaced_custom_object(GROUP, VERSION, namespace, PLURAL, body)
            except ApiException as exc:
                if exc.status == HTTP_CONFLICT:
                    logger.debug("Mapping {}/{} already exists", namespace, service_name)
                    return
                raise wrap_api_error(exc, f"create mapping {service_name}") from exc
        logger.info("Created mapping {}/{}", namespace, service_name)

    async def stop(self, namespace: str, service_name: str) -> None:
        async with self._connector.connect() as kube:
            try:
                await kube.custom.delete_namespaced_custom_object(GROUP, VERSION, namespace, PLURAL, service_name)
            except ApiException as exc:
                if exc.status == HTTP_NOT_FOUND:
                    return
                raise wrap_api_error(exc, f"delete mapping {service_name}") from exc
        logger.info("Deleted mapping {}/{}", namespace, service_name)

    async def get_url(self, namespace: str, service_name: str) -> str:
        return f"{service_name}.{namespace}.{self._host_domain}"
