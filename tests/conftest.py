"""Shared fixtures and test doubles."""

from __future__ import annotations

import asyncio
import os
import sqlite3
import tempfile

import pytest

from chatstream.chat.models import StreamEvent
from chatstream.providers.base import CompletionProvider, ProviderSettings
from chatstream.store import ChatStore, SQLiteBackend


class FakeProvider(CompletionProvider):
    """Provider variant that yields scripted fragments instead of calling a vendor."""

    def __init__(self, name="openai", fragments=("Hi", " there"), fail_at=None, error=None):
        super().__init__(ProviderSettings(model=f"{name}-test-model"))
        self.name = name
        self.fragments = list(fragments)
        self.fail_at = fail_at
        self.error = error
        self.calls = []
        self.closed = False

    def _create_client(self, secret):
        return None

    async def stream(self, turns, secret, model=None):
        self.calls.append((list(turns), secret))
        try:
            for i, fragment in enumerate(self.fragments):
                if self.fail_at == i:
                    raise self.error
                yield fragment
            if self.fail_at == len(self.fragments):
                raise self.error
        finally:
            self.closed = True


class ScriptedDispatcher:
    """Dispatcher double that replays the same events for every call.

    If ``gate`` is given, the stream pauses on it after the first event.
    Exceptions in ``events`` are raised from the iterator at that point.
    """

    def __init__(self, events=(), error=None, gate: asyncio.Event | None = None):
        self.events = list(events)
        self.error = error
        self.gate = gate
        self.calls = []
        self.closed = False

    def stream_completion(self, history, credential, cancel_token=None):
        self.calls.append((list(history), credential))
        if self.error is not None:
            raise self.error
        return self._replay()

    async def _replay(self):
        try:
            for i, event in enumerate(self.events):
                if isinstance(event, Exception):
                    raise event
                yield event
                if self.gate is not None and i == 0:
                    await self.gate.wait()
        finally:
            self.closed = True


def hi_there_events():
    return [StreamEvent.delta("Hi"), StreamEvent.delta(" there"), StreamEvent.done()]


class FailingBackend(SQLiteBackend):
    """SQLite backend that fails statements containing ``fail_on``.

    The first ``allow`` matching statements still succeed.
    """

    def __init__(self, db_path, fail_on: str, allow: int = 0):
        super().__init__(db_path=db_path)
        self.fail_on = fail_on
        self.allow = allow

    def execute(self, query, params=()):
        if self.fail_on in query:
            if self.allow <= 0:
                raise sqlite3.OperationalError("disk I/O error")
            self.allow -= 1
        return super().execute(query, params)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "chatstream.db")


@pytest.fixture
def store(db_path):
    """A store on a temporary SQLite file."""
    backend = SQLiteBackend(db_path=db_path)
    yield ChatStore(backend)
    backend.close()
