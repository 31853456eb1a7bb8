"""Credential exchange against the vox.ai web-call endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from config.settings import Settings, get_settings
from session.errors import CredentialExchangeError
from session.schemas import ConnectionDetail, ConnectParams

LOGGER = logging.getLogger(__name__)


class VoxCredentialExchange:
    """Exchange an API key for transport connection details."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        if not settings.vox_api_url:
            raise ValueError("Vox API endpoint is not configured.")
        self._endpoint = settings.vox_api_url
        self._timeout = settings.vox_http_timeout_seconds
        self._source = {"type": settings.sdk_source_type, "version": settings.sdk_version}
        self._transport = transport

    def build_payload(self, params: ConnectParams) -> dict[str, Any]:
        return {
            "agent_id": params.agent_id,
            "metadata": {
                "runtime_context": {"source": dict(self._source)},
                "call_web": {
                    "dynamic_variables": params.dynamic_variables,
                    "metadata": params.metadata,
                },
            },
        }

    async def exchange(self, params: ConnectParams) -> ConnectionDetail:
        headers = {
            "Authorization": f"Bearer {params.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._endpoint,
                    json=self.build_payload(params),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            LOGGER.error("Credential exchange request failed: %s", exc)
            raise CredentialExchangeError(f"Connection failed: {exc}") from exc

        if not response.is_success:
            raise CredentialExchangeError(
                f"Connection failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        try:
            return ConnectionDetail.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise CredentialExchangeError(
                f"Unexpected connection details: {exc}",
                status_code=response.status_code,
            ) from exc
