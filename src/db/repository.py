"""Repository utilities for persisting call transcripts."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from db.base import AsyncSessionFactory
from db.models import Transcription


class TranscriptionRepository:
    """Async repository encapsulating storage operations."""

    async def save_transcription(
        self,
        call_sid: str,
        stream_sid: str,
        output_path: str,
        transcript: dict[str, Any],
    ) -> int:
        async with AsyncSessionFactory() as session:
            row = Transcription(
                call_sid=call_sid,
                stream_sid=stream_sid,
                output_path=output_path,
                transcript=transcript,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row.id

    async def list_for_call(self, call_sid: str) -> list[Transcription]:
        async with AsyncSessionFactory() as session:
            query = (
                select(Transcription)
                .where(Transcription.call_sid == call_sid)
                .order_by(Transcription.created_at, Transcription.id)
            )
            result = await session.execute(query)
            return list(result.scalars().all())
