"""Shared fixtures: the real app with an in-memory session store."""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bltnm_edge.sessions import MemorySessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app():
    """Real app with a swapped-in lifespan that skips logging setup."""
    from bltnm_edge.app import create_app

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        app.state.sessions = MemorySessionStore()
        yield

    app = create_app()
    app.router.lifespan_context = test_lifespan
    return app


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
