"""FastAPI routes for service status and stored transcripts."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_registry
from api.schemas import HealthResponse, TranscriptionResponse
from api.twilio_routes import router as twilio_router
from calls.registry import SessionRegistry
from db.repository import TranscriptionRepository

router = APIRouter()
router.include_router(twilio_router)


def get_repository() -> TranscriptionRepository:
    return TranscriptionRepository()


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(active_calls=len(registry))


@router.get(
    "/calls/{call_sid}/transcriptions",
    response_model=list[TranscriptionResponse],
)
async def list_transcriptions(
    call_sid: str,
    repo: TranscriptionRepository = Depends(get_repository),
) -> list[TranscriptionResponse]:
    rows = await repo.list_for_call(call_sid)
    return [TranscriptionResponse.model_validate(row) for row in rows]
