"""Tests for leasehold/adapters/rotation.py using httpx.MockTransport."""

import asyncio

import httpx
import pytest

from leasehold.adapters.rotation import HttpRotationService, NoopRotationService, RotationService
from leasehold.core.config import ResourceConfig
from leasehold.core.exceptions import RotationError


RESOURCE = ResourceConfig(name="mobile-1", rotate_url="https://rotate.test/mobile-1?key=abc")


def _service_with_handler(handler) -> HttpRotationService:
    service = HttpRotationService()
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return service


def _rotate(service: HttpRotationService, resource: ResourceConfig = RESOURCE):
    async def _go():
        try:
            await service.rotate(resource)
        finally:
            await service.aclose()

    asyncio.run(_go())


class TestHttpRotationService:
    def test_success(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"success": True})

        _rotate(_service_with_handler(handler))
        assert seen["method"] == "GET"
        assert seen["url"] == "https://rotate.test/mobile-1?key=abc"

    def test_success_false_uses_reason(self):
        service = _service_with_handler(
            lambda request: httpx.Response(200, json={"success": False, "reason": "modem busy"})
        )
        with pytest.raises(RotationError, match="modem busy"):
            _rotate(service)

    def test_http_error_status(self):
        service = _service_with_handler(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(RotationError, match="returned 502"):
            _rotate(service)

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RotationError, match="request failed"):
            _rotate(_service_with_handler(handler))

    def test_missing_rotate_url(self):
        with pytest.raises(RotationError, match="no rotate_url"):
            _rotate(HttpRotationService(), ResourceConfig(name="static"))


class TestNoopRotationService:
    def test_always_succeeds(self):
        asyncio.run(NoopRotationService().rotate(RESOURCE))

    def test_satisfies_protocol(self):
        assert isinstance(NoopRotationService(), RotationService)
        assert isinstance(HttpRotationService(), RotationService)
