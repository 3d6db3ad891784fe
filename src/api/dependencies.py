"""Shared FastAPI dependencies.

The registry and dispatcher are process-wide singletons owned by the event loop
that serves every call.
"""

from __future__ import annotations

from functools import lru_cache

from calls.registry import SessionRegistry
from calls.session import SessionFactory, build_session_factory
from config.settings import get_settings
from jobs.dispatcher import JobDispatcher
from jobs.outbox import JobOutbox


@lru_cache(maxsize=1)
def get_registry() -> SessionRegistry:
    return SessionRegistry()


@lru_cache(maxsize=1)
def get_dispatcher() -> JobDispatcher:
    settings = get_settings()
    return JobDispatcher(
        settings.amqp_url,
        JobOutbox(settings.outbox_path),
        queue_name=settings.mix_queue_name,
    )


def get_session_factory() -> SessionFactory:
    return build_session_factory(get_settings(), get_registry(), get_dispatcher())
