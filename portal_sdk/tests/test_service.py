"""Tests for the PortalService composition root."""
from __future__ import annotations

import pytest
import structlog

from portal_sdk.service import PortalService
from portal_sdk.tier0_core.errors import AuthError, ConfigurationError, ForbiddenError
from portal_sdk.tier2_reliability.storage import UploadFile

PDF = b"%PDF-1.4\n" + b"0" * 200


class TestPortalServiceOffline:
    @pytest.mark.asyncio
    async def test_create_without_credentials_has_no_backend(self, config):
        service = await PortalService.create(config)
        assert not service.backend_available
        await service.aclose()

    @pytest.mark.asyncio
    async def test_offline_reads_and_uploads(self, config, clock):
        async with PortalService(config, clock=clock) as portal:
            assert await portal.resolve_current_principal() is None
            outcome = await portal.records.opportunities()
            assert outcome.degraded
            result = await portal.upload(UploadFile(PDF, "a.pdf"), folder="reports", name="a.pdf")
            assert result.public_url == "https://mock-storage.charusat.edu.in/reports/a.pdf"

    @pytest.mark.asyncio
    async def test_actions_require_sign_in(self, config, clock):
        async with PortalService(config, clock=clock) as portal:
            with pytest.raises(AuthError):
                await portal.submit_noc_request({"company_name": "Acme"})

    @pytest.mark.asyncio
    async def test_aclose_disposes_cache(self, config, clock):
        portal = PortalService(config, clock=clock)
        await portal.open()
        await portal.aclose()
        await portal.aclose()
        with pytest.raises(ConfigurationError):
            await portal.get_or_fetch("k", None, lambda: 1)

    @pytest.mark.asyncio
    async def test_open_binds_log_context_and_close_clears_it(self, config, clock):
        portal = PortalService(config, clock=clock)
        await portal.open()
        assert structlog.contextvars.get_contextvars()["environment"] == "test"
        assert structlog.contextvars.get_contextvars()["app"] == config.app_name
        await portal.aclose()
        assert "environment" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_metrics_server_starts_only_when_port_configured(self, config, clock, monkeypatch):
        started = []
        monkeypatch.setattr("portal_sdk.service.start_metrics_server", started.append)

        async with PortalService(config, clock=clock):
            pass
        assert started == []

        with_port = config.model_copy(update={"metrics_port": 9464})
        async with PortalService(with_port, clock=clock):
            pass
        assert started == [9464]


class TestPortalServiceWithGateway:
    @pytest.mark.asyncio
    async def test_student_flow(self, config, clock, signed_in_gateway):
        async with PortalService(config, gateway=signed_in_gateway, clock=clock) as portal:
            principal = await portal.resolve_current_principal()
            assert principal.id == "stu-1"

            created = await portal.submit_noc_request(
                {"company_name": "Acme", "position": "Intern", "start_date": "2024-06-01"}
            )
            assert created["student_id"] == "stu-1"

            with pytest.raises(ForbiddenError) as exc_info:
                await portal.review("noc-requests", created["id"], "approved")
            assert exc_info.value.redirect_to == "/dashboard/student"

    @pytest.mark.asyncio
    async def test_generic_cache_surface(self, config, clock, signed_in_gateway):
        async with PortalService(config, gateway=signed_in_gateway, clock=clock) as portal:
            calls = []

            async def fetch():
                calls.append(1)
                return {"n": len(calls)}

            assert await portal.get_or_fetch("custom:1", None, fetch) == {"n": 1}
            assert await portal.get_or_fetch("custom:1", None, fetch) == {"n": 1}
            portal.invalidate("custom:1")
            assert await portal.get_or_fetch("custom:1", None, fetch) == {"n": 2}
            portal.invalidate_all()
            assert len(portal.cache) == 0

    @pytest.mark.asyncio
    async def test_zero_ttl_always_refetches(self, config, clock, signed_in_gateway):
        async with PortalService(config, gateway=signed_in_gateway, clock=clock) as portal:
            calls = []

            async def fetch():
                calls.append(1)
                return len(calls)

            assert await portal.get_or_fetch("custom:live", 0, fetch) == 1
            assert await portal.get_or_fetch("custom:live", 0, fetch) == 2

    @pytest.mark.asyncio
    async def test_gateway_sign_out_event_reaches_service(self, config, clock, signed_in_gateway):
        async with PortalService(config, gateway=signed_in_gateway, clock=clock) as portal:
            await portal.resolve_current_principal()
            await portal.sign_out()
            await portal.sessions.drain()
            assert await portal.resolve_current_principal() is None
