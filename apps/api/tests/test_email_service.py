"""Invitation email dispatch and the outbound retry helper."""

import httpx
import pytest

from tenant_access.core.config import settings
from tenant_access.services import email_service, http_service


def _send_kwargs(**overrides):
    kwargs = {
        "invitation_id": "inv-1",
        "to_email": "someone@test.com",
        "org_name": "Acme <Corp>",
        "role": "guest",
        "token": "tok",
        "inviter_name": None,
    }
    kwargs.update(overrides)
    return kwargs


def test_payload_escapes_html():
    payload = email_service.build_invitation_payload(
        to_email="someone@test.com", org_name="Acme <Corp>", role="guest", token="tok"
    )
    assert "Acme &lt;Corp&gt;" in payload["html"]
    assert payload["to"] == ["someone@test.com"]
    assert payload["text"].endswith("/invite/tok")


@pytest.mark.asyncio
async def test_send_skipped_without_provider(monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_PROVIDER_API_KEY", "")
    assert await email_service.send_invitation_email(**_send_kwargs()) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code,expected", [(200, True), (409, True), (400, False)])
async def test_send_result_follows_provider_status(monkeypatch, status_code, expected):
    monkeypatch.setattr(settings, "EMAIL_PROVIDER_API_KEY", "re_test")

    async def fake_request(request_fn, **kwargs):
        return httpx.Response(status_code)

    monkeypatch.setattr(email_service, "request_with_retries", fake_request)
    assert await email_service.send_invitation_email(**_send_kwargs()) is expected


@pytest.mark.asyncio
async def test_send_swallows_transport_errors(monkeypatch):
    monkeypatch.setattr(settings, "EMAIL_PROVIDER_API_KEY", "re_test")

    async def fake_request(request_fn, **kwargs):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(email_service, "request_with_retries", fake_request)
    assert await email_service.send_invitation_email(**_send_kwargs()) is False


@pytest.mark.asyncio
async def test_retries_until_success():
    statuses = iter([503, 429, 200])
    calls = []

    async def request_fn():
        calls.append(1)
        return httpx.Response(next(statuses))

    response = await http_service.request_with_retries(request_fn, base_delay=0)
    assert response.status_code == 200
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_last_retryable_status_is_returned():
    async def request_fn():
        return httpx.Response(502)

    response = await http_service.request_with_retries(request_fn, max_attempts=2, base_delay=0)
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_transport_error_raised_after_last_attempt():
    async def request_fn():
        raise httpx.ConnectTimeout("slow")

    with pytest.raises(httpx.ConnectTimeout):
        await http_service.request_with_retries(request_fn, max_attempts=2, base_delay=0)
