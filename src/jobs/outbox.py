from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from jobs.schemas import MixJob

LOGGER = logging.getLogger(__name__)


class JobOutbox:
    """JSON-lines file of mix jobs that could not be handed to the queue.

    The recordings stay on disk, so a job recorded here can be replayed later.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def record(self, job: MixJob) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("ab") as handle:
            handle.write(job.to_message() + b"\n")

    def pending(self) -> list[MixJob]:
        if not self._path.exists():
            return []

        jobs: list[MixJob] = []
        for line_no, line in enumerate(self._path.read_bytes().splitlines(), start=1):
            if not line.strip():
                continue
            try:
                jobs.append(MixJob.from_message(line))
            except ValidationError:
                LOGGER.warning("Skipping unreadable outbox entry %s:%d", self._path, line_no)
        return jobs

    def replace(self, jobs: list[MixJob]) -> None:
        """Rewrite the outbox to hold exactly ``jobs``."""

        if not jobs:
            self._path.unlink(missing_ok=True)
            return
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(b"".join(job.to_message() + b"\n" for job in jobs))
        tmp.replace(self._path)
