"""Provisioning client for Leasehold.

The orchestrator needs four calls from a provisioning backend: create a
context bound to a resource, open it, close it, and destroy it.
HttpProvisioningClient speaks to a REST backend over httpx with retry on
transient errors.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from leasehold.core.config import ProvisioningConfig, ResourceConfig
from leasehold.core.exceptions import OpenError, ProvisionAuthError, ProvisionError

logger = logging.getLogger("leasehold.adapters.provisioning")


@runtime_checkable
class ProvisioningClient(Protocol):
    async def create(self, resource: ResourceConfig) -> str:
        ...

    async def open(self, context_id: str, visible: bool = True) -> Any:
        ...

    async def close(self, context_id: str) -> None:
        ...

    async def destroy(self, context_id: str) -> None:
        ...


class LocalProvisioningClient:
    """In-process backend for stages that need no external context.

    The handle is a plain dict carrying the context id, the resource's
    connection params and the visibility flag.
    """

    def __init__(self):
        self._contexts: dict[str, dict[str, Any]] = {}

    async def create(self, resource: ResourceConfig) -> str:
        context_id = uuid.uuid4().hex[:12]
        self._contexts[context_id] = {
            "context_id": context_id,
            "resource": resource.connection_params(),
            "open": False,
        }
        return context_id

    async def open(self, context_id: str, visible: bool = True) -> Any:
        context = self._contexts.get(context_id)
        if context is None:
            raise OpenError(f"Unknown context {context_id}")
        context["open"] = True
        context["visible"] = visible
        return context

    async def close(self, context_id: str) -> None:
        context = self._contexts.get(context_id)
        if context is not None:
            context["open"] = False

    async def destroy(self, context_id: str) -> None:
        self._contexts.pop(context_id, None)

    @property
    def live_contexts(self) -> int:
        return len(self._contexts)


class HttpProvisioningClient:
    """Async REST client for a context-provisioning backend.

    Endpoint paths come from ProvisioningConfig so the client fits any
    backend exposing the create/open/close/destroy shape.
    """

    def __init__(self, config: Optional[ProvisioningConfig] = None):
        self.config = config or ProvisioningConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers=headers,
            )
        return self._client

    async def create(self, resource: ResourceConfig) -> str:
        payload: dict[str, Any] = {"name": f"lh_{uuid.uuid4().hex[:12]}"}
        params = resource.connection_params()
        if params:
            payload["resource"] = params

        data = await self._request("POST", self.config.create_path, ProvisionError, json=payload)
        context_id = _extract_context_id(data)
        if not context_id:
            raise ProvisionError(f"Context created but response had no id: {str(data)[:300]}")
        logger.debug("Created context %s (%s)", context_id, resource.label)
        return context_id

    async def open(self, context_id: str, visible: bool = True) -> Any:
        path = self.config.open_path.format(context_id=context_id)
        data = await self._request("POST", path, OpenError, json={"visible": visible})
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data

    async def close(self, context_id: str) -> None:
        path = self.config.close_path.format(context_id=context_id)
        await self._request("POST", path, ProvisionError)

    async def destroy(self, context_id: str) -> None:
        path = self.config.destroy_path.format(context_id=context_id)
        await self._request("DELETE", path, ProvisionError)

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: type[ProvisionError],
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Execute a request with exponential backoff on 5xx and network errors."""
        max_attempts = self.config.retries + 1
        last_error: Optional[str] = None

        for attempt in range(max_attempts):
            try:
                resp = await self.client.request(method, f"{self.base_url}{path}", json=json)
            except httpx.TransportError as e:
                last_error = f"network error: {e}"
                await self._backoff(attempt, max_attempts, last_error)
                continue

            if resp.status_code == 401:
                raise ProvisionAuthError("Provisioning backend rejected API key")
            if resp.status_code >= 500:
                last_error = f"server error {resp.status_code}"
                await self._backoff(attempt, max_attempts, last_error)
                continue
            if resp.status_code >= 400:
                raise error_cls(f"{method} {path} failed ({resp.status_code}): {_error_message(resp)}")

            if not resp.content:
                return {}
            try:
                data = resp.json()
            except ValueError as e:
                raise error_cls(f"{method} {path} returned non-JSON body") from e
            if isinstance(data, dict) and data.get("success") is False:
                raise error_cls(f"{method} {path} failed: {data.get('message') or data.get('msg') or 'unknown'}")
            return data

        raise error_cls(f"{method} {path} failed after {max_attempts} attempts: {last_error}")

    async def _backoff(self, attempt: int, max_attempts: int, reason: str) -> None:
        if attempt >= max_attempts - 1:
            return
        delay = _backoff_delay(attempt, self.config.backoff_seconds)
        logger.warning("Provisioning %s. Waiting %.1fs before retry %d", reason, delay, attempt + 1)
        await asyncio.sleep(delay)


def _backoff_delay(attempt: int, base_seconds: float = 1.0) -> float:
    """Exponential backoff: 1s, 2s, 4s, ..."""
    return min(base_seconds * (2 ** attempt), 30)


def _extract_context_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    candidates = [data]
    if isinstance(data.get("data"), dict):
        candidates.insert(0, data["data"])
    for source in candidates:
        for key in ("context_id", "id"):
            value = source.get(key)
            if value:
                return str(value)
    return None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("msg") or body.get("error") or body)[:200]
    return str(body)[:200]
