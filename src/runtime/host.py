"""Mounts the runtime adapter for one session and tears it down afterwards."""

from __future__ import annotations

import logging
from collections.abc import Callable

from bridge.channel import RuntimeEndpoint
from bridge.fence import Clock
from bridge.messages import WaveformConfig
from config.settings import Settings
from runtime.adapter import SandboxedRuntimeAdapter
from runtime.base import LiveSession
from session.errors import SessionSetupError
from session.schemas import ConnectionDetail

LOGGER = logging.getLogger(__name__)

LiveSessionFactory = Callable[[ConnectionDetail], LiveSession]


class RuntimeHost:
    """Owns the live session and its adapter; the controller only holds the host."""

    def __init__(
        self,
        session_factory: LiveSessionFactory,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._factory = session_factory
        self._settings = settings
        self._clock = clock
        self._session: LiveSession | None = None
        self._adapter: SandboxedRuntimeAdapter | None = None

    @property
    def mounted(self) -> bool:
        return self._adapter is not None

    @property
    def adapter(self) -> SandboxedRuntimeAdapter | None:
        return self._adapter

    async def mount(
        self,
        detail: ConnectionDetail,
        endpoint: RuntimeEndpoint,
        initial_config: WaveformConfig | None = None,
    ) -> None:
        if self.mounted:
            await self.unmount()

        try:
            session = self._factory(detail)
        except Exception as exc:
            raise SessionSetupError(f"Could not create live session: {exc}") from exc

        adapter = SandboxedRuntimeAdapter(
            endpoint,
            session,
            initial_config=initial_config,
            settings=self._settings,
            clock=self._clock,
        )
        self._session, self._adapter = session, adapter
        adapter.attach()
        LOGGER.info("Joining room %s as %s", detail.room_name, detail.participant_name)

        try:
            await session.connect()
        except Exception as exc:
            LOGGER.error("Live session connection error: %s", exc)
            if self._session is session:
                await self.unmount()
            raise SessionSetupError(f"Live session connection error: {exc}") from exc

        if self._session is not session:
            # unmount() already closed it.
            LOGGER.info("Live session for %s was unmounted while connecting", detail.room_name)

    async def unmount(self) -> None:
        adapter, session = self._adapter, self._session
        self._adapter = self._session = None
        if adapter is not None:
            await adapter.detach()
        if session is not None:
            try:
                await session.close()
            except Exception:
                LOGGER.exception("Failed to close live session")
