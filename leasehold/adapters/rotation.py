"""Rotation services for Leasehold resources.

Rotation refreshes a resource between attempts. A resource without a
rotation handle is never passed here; the attempt executor skips it.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from leasehold.core.config import ResourceConfig, RotationConfig
from leasehold.core.exceptions import RotationError

logger = logging.getLogger("leasehold.adapters.rotation")


@runtime_checkable
class RotationService(Protocol):
    async def rotate(self, resource: ResourceConfig) -> None:
        ...


class NoopRotationService:
    """Rotation that always succeeds without doing anything."""

    async def rotate(self, resource: ResourceConfig) -> None:
        logger.debug("No-op rotation for %s", resource.label)


class HttpRotationService:
    """Triggers rotation with a GET on the resource's rotate_url.

    The endpoint must answer ``{"success": true}``. Anything else is a
    RotationError carrying the reason reported by the endpoint.
    """

    def __init__(self, config: Optional[RotationConfig] = None):
        self.config = config or RotationConfig()
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.timeout_seconds))
        return self._client

    async def rotate(self, resource: ResourceConfig) -> None:
        if not resource.rotate_url:
            raise RotationError(f"{resource.label} has no rotate_url")

        try:
            resp = await self.client.get(resource.rotate_url)
        except httpx.HTTPError as e:
            raise RotationError(f"Rotation request failed: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code < 400 and isinstance(body, dict) and body.get("success"):
            logger.debug("Rotation accepted for %s", resource.label)
            return

        reason = None
        if isinstance(body, dict):
            reason = body.get("reason") or body.get("error") or body.get("message")
        raise RotationError(reason or f"Rotation endpoint returned {resp.status_code}")

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
