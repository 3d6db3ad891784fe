"""Pydantic schemas for the mix job queue."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MixJob(BaseModel):
    """A finished call awaiting mixing and transcription.

    Serialized with the camelCase keys the worker contract uses.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    call_sid: str = Field(alias="callSid")
    stream_sid: str = Field(alias="streamSid")
    caller_path: str = Field(alias="callerPath")
    agent_path: str = Field(alias="agentPath")
    output_path: str = Field(alias="outputPath")

    def to_message(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_message(cls, body: bytes | str) -> MixJob:
        return cls.model_validate_json(body)
