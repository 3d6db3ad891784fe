"""Mix job consumer: mix both tracks, transcribe, persist.

Run with ``python -m jobs.worker`` from ``src/``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol

import aio_pika
from pydantic import ValidationError

from config.settings import get_settings
from jobs.schemas import MixJob

LOGGER = logging.getLogger(__name__)


class Mixer(Protocol):
    async def mix(self, caller: Path, agent: Path, output: Path) -> Path: ...


class Transcriber(Protocol):
    async def transcribe(self, path: Path) -> dict[str, Any]: ...


class Repository(Protocol):
    async def save_transcription(
        self, call_sid: str, stream_sid: str, output_path: str, transcript: dict[str, Any]
    ) -> int: ...


class MixWorker:
    """Consumes one job at a time; acks on success, requeues on failure."""

    def __init__(
        self,
        amqp_url: str,
        queue_name: str,
        *,
        mixer: Mixer,
        transcriber: Transcriber,
        repository: Repository,
    ) -> None:
        self._url = amqp_url
        self._queue_name = queue_name
        self._mixer = mixer
        self._transcriber = transcriber
        self._repository = repository

    async def run_forever(self) -> None:
        connection = await aio_pika.connect_robust(self._url)
        async with connection:
            channel = await connection.channel()
            await channel.set_qos(prefetch_count=1)
            queue = await channel.declare_queue(self._queue_name, durable=True)
            LOGGER.info("Audio worker listening on queue: %s", self._queue_name)

            async with queue.iterator() as messages:
                async for message in messages:
                    await self.handle(message)

    async def handle(self, message: Any) -> None:
        try:
            job = MixJob.from_message(message.body)
        except ValidationError:
            LOGGER.error("Discarding unreadable mix job: %r", message.body[:200])
            await message.reject(requeue=False)
            return

        try:
            await self.process(job)
        except Exception:
            LOGGER.exception("Worker job failed for call=%s; requeueing", job.call_sid)
            await message.nack(requeue=True)
            return

        await message.ack()

    async def process(self, job: MixJob) -> int:
        output = await self._mixer.mix(
            Path(job.caller_path),
            Path(job.agent_path),
            Path(job.output_path),
        )
        transcript = await self._transcriber.transcribe(output)
        row_id = await self._repository.save_transcription(
            job.call_sid,
            job.stream_sid,
            job.output_path,
            transcript,
        )
        LOGGER.info("Stored transcription id=%s for call=%s", row_id, job.call_sid)
        return row_id


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Mix and transcribe finished calls")
    parser.add_argument("--amqp-url", default=settings.amqp_url)
    parser.add_argument("--queue", default=settings.mix_queue_name)
    return parser.parse_args()


async def _amain() -> None:
    from db.base import init_db
    from db.repository import TranscriptionRepository
    from speech.mixer import AudioMixer
    from speech.transcriber import CallTranscriber

    args = _parse_args()
    settings = get_settings()
    await init_db()
    worker = MixWorker(
        args.amqp_url,
        args.queue,
        mixer=AudioMixer(settings.ffmpeg_path),
        transcriber=CallTranscriber(),
        repository=TranscriptionRepository(),
    )
    await worker.run_forever()


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_amain())


if __name__ == "__main__":
    main()
