"""Fence API keys mounted into workspaces.

A key is minted with the user's bearer token at launch and deleted at
termination using the ``API_KEY_ID`` recorded in the workspace env.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx
from loguru import logger

from hatchway.launcher.errors import BackendError


@dataclass(frozen=True)
class ApiKey:
    api_key: str
    key_id: str


@runtime_checkable
class CredentialIssuer(Protocol):
    async def create_api_key(self, token: str) -> ApiKey: ...

    async def delete_api_key(self, token: str, key_id: str) -> None: ...


class FenceCredentials:
    """Client for Fence's ``/credentials/api`` endpoints."""

    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self, token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def create_api_key(self, token: str) -> ApiKey:
        if not token:
            msg = "No valid access token"
            raise BackendError(msg)
        try:
            async with self._client(token) as client:
                resp = await client.post("/credentials/api/", json={"scope": ["data", "user"]})
        except httpx.HTTPError as exc:
            raise BackendError(str(exc)) from exc
        if resp.status_code != httpx.codes.OK:
            logger.warning("Fence refused API key creation: {}", resp.text)
            msg = f"Error occurred when creating API key with error code {resp.status_code}"
            raise BackendError(msg)
        body = resp.json()
        return ApiKey(api_key=body["api_key"], key_id=body["key_id"])

    async def delete_api_key(self, token: str, key_id: str) -> None:
        if not token:
            msg = "No valid access token"
            raise BackendError(msg)
        try:
            async with self._client(token) as client:
                resp = await client.delete(f"/credentials/api/{key_id}")
        except httpx.HTTPError as exc:
            raise BackendError(str(exc)) from exc
        if resp.status_code != httpx.codes.NO_CONTENT:
            msg = f"Error occurred when deleting API key with error code {resp.status_code}"
            raise BackendError(msg)
