from __future__ import annotations

import asyncio
import json

import pytest

from fakes import PARAMS, FakeExchange, FakeLiveSession, ManualClock, settle
from runtime.base import LiveSegment
from runtime.host import RuntimeHost
from session.controller import VoxController
from session.errors import (
    ConnectionRejectedError,
    CredentialExchangeError,
    SessionSetupError,
    TransportError,
)


class ClosingLiveSession(FakeLiveSession):
    """Reports a lost transport from inside connect(), then finishes connecting."""

    def __init__(self, detail, *, fail_connect=False):
        super().__init__(detail, fail_connect=fail_connect)
        self.released = asyncio.Event()

    async def connect(self) -> None:
        self.listener.on_disconnected(RuntimeError("ice failed"))
        await self.released.wait()
        await super().connect()

    async def close(self) -> None:
        await super().close()
        self.released.set()


class Harness:
    def __init__(
        self,
        settings,
        clock,
        *,
        exchange=None,
        fail_connect=False,
        runtime_clock=None,
        session_cls=FakeLiveSession,
    ):
        self.sessions: list[FakeLiveSession] = []
        self.exchange = exchange or FakeExchange()

        def factory(detail):
            session = session_cls(detail, fail_connect=fail_connect)
            self.sessions.append(session)
            return session

        self.host = RuntimeHost(factory, settings=settings, clock=runtime_clock or clock)
        self.controller = VoxController(self.exchange, self.host, clock=clock)
        self.events: list[tuple] = []
        for name in ("phase", "message", "error", "connect", "disconnect"):
            self.controller.on(name, lambda *args, name=name: self.events.append((name, *args)))

    @property
    def live(self) -> FakeLiveSession:
        return self.sessions[-1]

    async def settle(self):
        await settle(self.controller, self.host)

    def named(self, name):
        return [event[1:] for event in self.events if event[0] == name]


def test_connect_mounts_runtime_and_relays_phase(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        assert h.controller.phase == "connecting"
        assert h.host.mounted
        assert h.live.connected
        assert h.live.detail.participant_token == "token-abc"

        h.live.listener.on_phase("initializing")
        h.live.listener.on_phase("listening")
        await h.settle()
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "listening"
    assert h.named("phase") == [("connecting",), ("initializing",), ("listening",)]
    assert h.named("connect") == [()]
    assert h.exchange.requests == [PARAMS]


def test_revised_segment_settles_into_single_entry(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("listening")

        clock.now = 2000.0
        h.live.listener.on_transcription("agent", [LiveSegment("seg-1", "hel", False)])
        await h.settle()
        clock.now = 2500.0
        h.live.listener.on_transcription("agent", [LiveSegment("seg-1", "hello", True)])
        await h.settle()
        clock.now = 2600.0
        h.live.listener.on_transcription("agent", [LiveSegment("seg-1", "hello", True)])
        await h.settle()
        return h

    h = asyncio.run(scenario())
    transcript = h.controller.transcript
    assert len(transcript) == 1
    assert transcript[0].text == "hello"
    assert transcript[0].timestamp == 2000.0
    assert transcript[0].speaker == "agent"
    messages = h.named("message")
    assert len(messages) == 1
    assert messages[0][0].id == "seg-1"


def test_second_connect_is_rejected_without_disturbing_first(settings, clock):
    async def scenario():
        gate = asyncio.Event()
        h = Harness(settings, clock, exchange=FakeExchange(gate=gate))
        first = asyncio.create_task(h.controller.connect(PARAMS))
        await asyncio.sleep(0)
        assert h.controller.phase == "connecting"

        with pytest.raises(ConnectionRejectedError):
            await h.controller.connect(PARAMS)

        gate.set()
        await first
        return h

    h = asyncio.run(scenario())
    assert len(h.exchange.requests) == 1
    assert h.host.mounted
    assert h.controller.phase == "connecting"
    assert h.named("connect") == [()]
    errors = h.named("error")
    assert len(errors) == 1
    assert isinstance(errors[0][0], ConnectionRejectedError)
    assert "(connecting)" in errors[0][0].detail


def test_credential_failure_resets_to_disconnected(settings, clock):
    failure = CredentialExchangeError("Connection failed (403): forbidden", status_code=403)

    async def scenario():
        h = Harness(settings, clock, exchange=FakeExchange(error=failure))
        with pytest.raises(CredentialExchangeError):
            await h.controller.connect(PARAMS)
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "disconnected"
    assert h.controller.transcript == []
    assert not h.host.mounted
    assert h.sessions == []
    assert h.named("error") == [(failure,)]
    assert h.named("phase") == [("connecting",), ("disconnected",)]


def test_live_session_setup_failure_is_reported(settings, clock):
    async def scenario():
        h = Harness(settings, clock, fail_connect=True)
        with pytest.raises(SessionSetupError):
            await h.controller.connect(PARAMS)
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "disconnected"
    assert not h.host.mounted
    assert h.live.closed
    assert h.controller.channel is None
    assert isinstance(h.named("error")[0][0], SessionSetupError)


@pytest.mark.parametrize("fail_connect", [True, False])
def test_transport_lost_while_connecting_fails_connect(settings, clock, fail_connect):
    async def scenario():
        h = Harness(settings, clock, fail_connect=fail_connect, session_cls=ClosingLiveSession)
        with pytest.raises(SessionSetupError):
            await h.controller.connect(PARAMS)
        await asyncio.sleep(0)
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "disconnected"
    assert h.controller.channel is None
    assert not h.host.mounted
    assert h.live.close_count == 1
    assert h.named("phase") == [("connecting",), ("disconnected",)]
    assert h.named("connect") == []
    assert h.named("disconnect") == []
    errors = h.named("error")
    assert len(errors) == 1
    assert isinstance(errors[0][0], SessionSetupError)


def test_disconnect_during_exchange_discards_late_result(settings, clock):
    async def scenario():
        gate = asyncio.Event()
        h = Harness(settings, clock, exchange=FakeExchange(gate=gate))
        pending = asyncio.create_task(h.controller.connect(PARAMS))
        await asyncio.sleep(0)
        await h.controller.disconnect()
        gate.set()
        await pending
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "disconnected"
    assert not h.host.mounted
    assert h.sessions == []
    assert h.named("connect") == []
    assert h.named("disconnect") == [()]


def test_stale_transcription_is_dropped(settings, clock):
    async def scenario():
        # The runtime stamps segments with a clock that lags the fence.
        h = Harness(settings, clock, runtime_clock=lambda: 500.0)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("listening")
        h.live.listener.on_transcription("user", [LiveSegment("late", "from before", True)])
        await h.settle()
        return h

    h = asyncio.run(scenario())
    assert h.controller.fence.value == 1000.0
    assert h.controller.transcript == []
    assert h.named("message") == []


def test_send_while_disconnected_is_rejected(settings, clock):
    h = Harness(settings, clock)
    results = h.controller.send(text="hello", digit=1)

    assert [r.ok for r in results] == [False, False]
    assert h.controller.transcript == []
    assert h.controller.toggle_microphone(False).ok is False
    assert h.controller.microphone_enabled is True
    assert h.controller.set_volume(0.3).ok is False


def test_commands_reach_live_session(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("listening")
        await h.settle()

        results = h.controller.send(text="what's the weather", digit="9")
        assert all(r.ok for r in results)
        assert h.controller.toggle_microphone(False).ok
        assert h.controller.set_volume(-2).ok
        await h.settle()
        return h

    h = asyncio.run(scenario())
    assert h.live.calls == [
        ("text", "what's the weather"),
        ("dtmf", 101, "9"),
        ("mic", False),
        ("volume", 0.0),
    ]
    assert h.controller.microphone_enabled is False
    transcript = h.controller.transcript
    assert [(e.speaker, e.text, e.is_final) for e in transcript] == [("user", "what's the weather", True)]
    assert h.named("message")[0][0].text == "what's the weather"


def test_audio_waveform_reads_cached_samples(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        before = h.controller.audio_waveform(speaker="agent", bar_count=5)
        await h.controller.connect(PARAMS)
        h.live.listener.on_audio_levels("agent", [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8])
        await h.settle()
        after = h.controller.audio_waveform(speaker="agent", bar_count=5)
        user = h.controller.audio_waveform(speaker="user", bar_count=3)
        return h, before, after, user

    h, before, after, user = asyncio.run(scenario())
    assert before == [0, 0, 0, 0, 0]
    assert after == [0.1, 0.2, 0.3, 0.4, 0.5]
    assert user == [0.0, 0.0, 0.0]


def test_invalid_waveform_and_volume_requests_are_harmless(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        idle = h.controller.audio_waveform(speaker="agent", bar_count=0)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("listening")
        await h.settle()
        empty = h.controller.audio_waveform(speaker="user", bar_count=0, update_interval=0)
        volume = h.controller.set_volume(float("nan"))
        await h.settle()
        return h, idle, empty, volume

    h, idle, empty, volume = asyncio.run(scenario())
    assert idle == []
    assert empty == []
    assert volume.ok is False
    assert h.live.calls == []
    assert h.live.sampling == {"agent": (10, 20), "user": (120, 20)}
    assert h.controller.phase == "listening"


def test_waveform_config_is_forwarded_and_survives_reconnect(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        h.controller.audio_waveform(speaker="user", bar_count=16, update_interval=40)
        await h.controller.connect(PARAMS)
        first = dict(h.live.sampling)

        h.controller.audio_waveform(speaker="agent", bar_count=24, update_interval=30)
        await h.settle()
        updated = dict(h.live.sampling)

        await h.controller.disconnect()
        await h.controller.connect(PARAMS)
        second = dict(h.live.sampling)
        return first, updated, second

    first, updated, second = asyncio.run(scenario())
    assert first == {"agent": (120, 20), "user": (16, 40)}
    assert updated == {"agent": (24, 30), "user": (120, 20)}
    assert second == updated


def test_tool_batches_appear_in_transcript(settings, clock):
    payload = {
        "function_calls": [{"id": "f1", "call_id": "c1", "name": "lookup", "arguments": "{}"}],
        "function_call_outputs": [{"id": "o1", "call_id": "c1", "name": "lookup", "output": "found"}],
    }

    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("thinking")
        h.live.listener.on_data("function_calls_collected", b"{broken")
        clock.now = 1500.0
        h.live.listener.on_data("function_tools_executed", json.dumps(payload).encode())
        await h.settle()
        return h

    h = asyncio.run(scenario())
    transcript = h.controller.transcript
    assert len(transcript) == 1
    assert transcript[0].speaker == "tool"
    assert transcript[0].tool.results[0].output == "found"
    assert h.controller.phase == "thinking"


def test_transport_closure_ends_session(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("speaking")
        h.live.listener.on_transcription("agent", [LiveSegment("s1", "bye", True)])
        await h.settle()
        h.live.listener.on_disconnected(RuntimeError("ice failed"))
        await h.settle()
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "disconnected"
    assert h.controller.transcript == []
    assert h.controller.channel is None
    assert not h.host.mounted
    assert h.live.closed
    assert h.named("disconnect") == [()]
    errors = h.named("error")
    assert len(errors) == 1
    assert isinstance(errors[0][0], TransportError)
    assert "ice failed" in errors[0][0].detail


def test_clean_transport_closure_is_not_an_error(settings, clock):
    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        h.live.listener.on_disconnected()
        await h.settle()
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "disconnected"
    assert h.named("error") == []
    assert h.named("disconnect") == [()]


def test_reconnect_starts_with_empty_state(settings):
    clock = ManualClock(1000.0)

    async def scenario():
        h = Harness(settings, clock)
        await h.controller.connect(PARAMS)
        old = h.live
        old.listener.on_phase("listening")
        old.listener.on_transcription("agent", [LiveSegment("s1", "first call", True)])
        old.listener.on_audio_levels("agent", [0.9, 0.9])
        await h.settle()

        clock.now = 3000.0
        await h.controller.disconnect()
        # The old runtime is detached; anything it still produces goes nowhere.
        old.listener.on_transcription("agent", [LiveSegment("s2", "late", True)])

        clock.now = 4000.0
        await h.controller.connect(PARAMS)
        h.live.listener.on_transcription("user", [LiveSegment("s3", "second call", False)])
        await h.settle()
        waveform = h.controller.audio_waveform("agent", 2)
        return h, old, waveform

    h, old, waveform = asyncio.run(scenario())
    assert old.closed
    assert len(h.sessions) == 2
    assert [e.text for e in h.controller.transcript] == ["second call"]
    assert waveform == [0.0, 0.0]
    assert h.controller.fence.value == 4000.0


def test_listener_errors_are_contained(settings, clock):
    async def scenario():
        h = Harness(settings, clock)

        def explode(*_args):
            raise RuntimeError("listener bug")

        h.controller.on("phase", explode)
        await h.controller.connect(PARAMS)
        h.live.listener.on_phase("listening")
        await h.settle()
        return h

    h = asyncio.run(scenario())
    assert h.controller.phase == "listening"


def test_unknown_event_name_is_rejected(settings, clock):
    h = Harness(settings, clock)
    with pytest.raises(ValueError):
        h.controller.on("transcript", print)
