"""Pydantic schemas for controller-visible session data."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from bridge.messages import FunctionCallInfo, FunctionCallResult

Role = Literal["agent", "user", "tool"]


class ToolBatch(BaseModel):
    """Function invocations and/or their results surfaced as one transcript entry."""

    calls: list[FunctionCallInfo] = Field(default_factory=list)
    results: list[FunctionCallResult] = Field(default_factory=list)


class ConversationEntry(BaseModel):
    """One turn or event in the transcript."""

    id: str
    speaker: Role
    text: str | None = None
    timestamp: float
    is_final: bool = False
    tool: ToolBatch | None = None


class ConnectParams(BaseModel):
    """Caller-supplied parameters for a connect attempt."""

    agent_id: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    dynamic_variables: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectionDetail(BaseModel):
    """Transport parameters returned by the credential exchange."""

    model_config = ConfigDict(populate_by_name=True)

    server_url: str = Field(alias="serverUrl")
    room_name: str = Field(alias="roomName")
    participant_name: str = Field(alias="participantName")
    participant_token: str = Field(alias="participantToken")


class DispatchResult(BaseModel):
    """Outcome of a controller command; rejections are reported, not raised."""

    ok: bool
    command: str
    reason: str | None = None

    @classmethod
    def sent(cls, command: str) -> DispatchResult:
        return cls(ok=True, command=command)

    @classmethod
    def rejected(cls, command: str, reason: str) -> DispatchResult:
        return cls(ok=False, command=command, reason=reason)
