"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int


class OutboundCallRequest(BaseModel):
    to_number: str = Field(description="E.164 phone number, e.g. +1415...")


class OutboundCallResponse(BaseModel):
    call_sid: str
    to_number: str


class TranscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    call_sid: str
    stream_sid: str
    output_path: str
    transcript: dict[str, Any]
    created_at: datetime
