"""Closed message vocabulary for both directions of the bridge channel.

Each direction is a tagged union discriminated on ``type``. Messages cross the
channel as JSON-compatible dicts and are validated again on receipt, so a
payload that does not match one of the known shapes never reaches a handler.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

SessionPhase = Literal[
    "disconnected",
    "connecting",
    "initializing",
    "listening",
    "thinking",
    "speaking",
]
Speaker = Literal["agent", "user"]


class BridgeMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class FunctionCallInfo(BaseModel):
    """One function invocation requested by the agent."""

    id: str
    type: str = "function_call"
    call_id: str
    arguments: str = ""
    name: str


class FunctionCallResult(BaseModel):
    """Output of one function invocation."""

    id: str
    name: str
    type: str = "function_call_output"
    call_id: str
    output: str = ""
    is_error: bool = False


class TranscriptionSegment(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    text: str
    is_final: bool = Field(alias="isFinal")
    timestamp: float
    speaker: Speaker


# Runtime -> controller


class StateUpdate(BridgeMessage):
    type: Literal["state_update"] = "state_update"
    phase: SessionPhase


class TranscriptionUpdate(BridgeMessage):
    type: Literal["transcription_update"] = "transcription_update"
    segments: list[TranscriptionSegment]


class WaveformUpdate(BridgeMessage):
    type: Literal["waveform_update"] = "waveform_update"
    speaker: Speaker
    samples: list[float]


class FunctionCallsCollected(BridgeMessage):
    type: Literal["function_calls_collected"] = "function_calls_collected"
    calls: list[FunctionCallInfo]


class FunctionCallsFinished(BridgeMessage):
    type: Literal["function_calls_finished"] = "function_calls_finished"
    calls: list[FunctionCallInfo] = Field(default_factory=list)
    results: list[FunctionCallResult]


class TransportClosed(BridgeMessage):
    type: Literal["transport_closed"] = "transport_closed"
    error: str | None = None


RuntimeEvent = Annotated[
    Union[
        StateUpdate,
        TranscriptionUpdate,
        WaveformUpdate,
        FunctionCallsCollected,
        FunctionCallsFinished,
        TransportClosed,
    ],
    Field(discriminator="type"),
]


# Controller -> runtime


class SendText(BridgeMessage):
    type: Literal["send_text"] = "send_text"
    text: str = Field(min_length=1)


class SendDtmf(BridgeMessage):
    type: Literal["send_dtmf"] = "send_dtmf"
    digit: Literal["0", "1", "2", "3", "4", "5", "6", "7", "8", "9", "*", "#"]


class ToggleMic(BridgeMessage):
    type: Literal["toggle_mic"] = "toggle_mic"
    enabled: bool


class SetVolume(BridgeMessage):
    type: Literal["set_volume"] = "set_volume"
    value: float = Field(ge=0.0, le=1.0)


class WaveformConfig(BridgeMessage):
    type: Literal["waveform_config"] = "waveform_config"
    speaker: Speaker = "agent"
    bar_count: int = Field(default=10, ge=1, alias="barCount")
    update_interval: int = Field(default=20, ge=1, alias="updateInterval")


Command = Annotated[
    Union[SendText, SendDtmf, ToggleMic, SetVolume, WaveformConfig],
    Field(discriminator="type"),
]

RUNTIME_EVENT_ADAPTER: TypeAdapter[RuntimeEvent] = TypeAdapter(RuntimeEvent)
COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)
