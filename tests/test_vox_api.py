from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from config.settings import Settings
from integrations.vox_api import VoxCredentialExchange
from session.errors import CredentialExchangeError
from session.schemas import ConnectParams


def _exchange(settings, handler):
    return VoxCredentialExchange(settings, transport=httpx.MockTransport(handler))


def test_exchange_posts_agent_and_returns_connection_detail(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "serverUrl": "wss://rtc.vox.test",
                "roomName": "room-9",
                "participantName": "web-caller",
                "participantToken": "jwt",
            },
        )

    params = ConnectParams(
        agent_id="agent-7",
        api_key="sk-test",
        dynamic_variables={"customer_name": "Kim"},
        metadata={"ticket": 42},
    )
    detail = asyncio.run(_exchange(settings, handler).exchange(params))

    assert detail.server_url == "wss://rtc.vox.test"
    assert detail.room_name == "room-9"
    assert detail.participant_token == "jwt"
    assert seen["url"] == "https://api.vox.test/v2/call/web"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {
        "agent_id": "agent-7",
        "metadata": {
            "runtime_context": {"source": {"type": "python-sdk", "version": "9.9.9"}},
            "call_web": {
                "dynamic_variables": {"customer_name": "Kim"},
                "metadata": {"ticket": 42},
            },
        },
    }


def test_non_success_status_raises_with_reason(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="invalid api key")

    with pytest.raises(CredentialExchangeError) as excinfo:
        asyncio.run(_exchange(settings, handler).exchange(ConnectParams(agent_id="a", api_key="bad")))

    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Connection failed (401): invalid api key"


def test_network_fault_raises_credential_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CredentialExchangeError) as excinfo:
        asyncio.run(_exchange(settings, handler).exchange(ConnectParams(agent_id="a", api_key="k")))

    assert excinfo.value.status_code is None
    assert "connection refused" in excinfo.value.detail


def test_unexpected_body_raises_credential_error(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"serverUrl": "wss://x"})

    with pytest.raises(CredentialExchangeError):
        asyncio.run(_exchange(settings, handler).exchange(ConnectParams(agent_id="a", api_key="k")))


def test_missing_endpoint_is_a_configuration_error():
    with pytest.raises(ValueError):
        VoxCredentialExchange(Settings(vox_api_url=None))
