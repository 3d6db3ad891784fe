"""Hands finished calls to the durable mix job queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aio_pika
from aio_pika.exceptions import AMQPError

from jobs.outbox import JobOutbox
from jobs.schemas import MixJob

LOGGER = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "audio_mix_jobs"


class JobDispatcher:
    """Publishes one persistent message per finished call.

    There is no retry here; broker-side redelivery is the queue's concern. A job
    that cannot be handed off is logged as lost and written to the outbox so it
    can be replayed.
    """

    def __init__(
        self,
        amqp_url: str,
        outbox: JobOutbox,
        *,
        queue_name: str = DEFAULT_QUEUE_NAME,
        timeout: float = 10.0,
        connect: Callable[..., Awaitable[Any]] = aio_pika.connect,
    ) -> None:
        self._url = amqp_url
        self._outbox = outbox
        self._queue_name = queue_name
        self._timeout = timeout
        self._connect = connect

    async def publish(self, job: MixJob) -> bool:
        try:
            await asyncio.wait_for(self._send(job), timeout=self._timeout)
        except (AMQPError, OSError, asyncio.TimeoutError) as exc:
            LOGGER.error(
                "Mix job lost for call=%s stream=%s: %s (outbox %s)",
                job.call_sid,
                job.stream_sid,
                exc,
                self._outbox.path,
            )
            try:
                self._outbox.record(job)
            except OSError:
                LOGGER.exception("Could not record mix job for call=%s in %s", job.call_sid, self._outbox.path)
            return False

        LOGGER.info("Mix job queued for call=%s stream=%s", job.call_sid, job.stream_sid)
        return True

    async def replay_outbox(self) -> int:
        """Republish outbox entries; returns how many were handed off."""

        pending = self._outbox.pending()
        if not pending:
            return 0

        failed: list[MixJob] = []
        for job in pending:
            try:
                await asyncio.wait_for(self._send(job), timeout=self._timeout)
            except (AMQPError, OSError, asyncio.TimeoutError) as exc:
                LOGGER.warning("Outbox replay failed for call=%s: %s", job.call_sid, exc)
                failed.append(job)

        try:
            self._outbox.replace(failed)
        except OSError:
            LOGGER.exception("Could not rewrite outbox %s", self._outbox.path)
        delivered = len(pending) - len(failed)
        LOGGER.info("Outbox replay delivered %d of %d mix jobs", delivered, len(pending))
        return delivered

    async def _send(self, job: MixJob) -> None:
        connection = await self._connect(self._url)
        async with connection:
            channel = await connection.channel()
            await channel.declare_queue(self._queue_name, durable=True)
            await channel.default_exchange.publish(
                aio_pika.Message(
                    body=job.to_message(),
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=self._queue_name,
            )
