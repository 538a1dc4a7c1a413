"""Shared fixtures for the gh_activity test suite."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
import structlog

from gh_activity import Envelope

T0 = dt.datetime(2025, 3, 3, 9, 0, tzinfo=dt.UTC)


@pytest.fixture(autouse=True)
def _reset_structlog() -> typ.Iterator[None]:
    """Undo configure_logging() so later tests never log to a closed stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_envelope() -> typ.Callable[..., Envelope]:
    """Build envelopes with sensible defaults."""

    def _make(
        at: dt.datetime = T0,
        *,
        repo: str = "octo/reef",
        event_type: str = "WatchEvent",
        payload: dict[str, typ.Any] | None = None,
    ) -> Envelope:
        return Envelope(type=event_type, created_at=at, project_name=repo, payload=payload or {})

    return _make


@pytest.fixture
def api_event() -> typ.Callable[..., dict[str, typ.Any]]:
    """Build raw events the way the GitHub events listing returns them."""

    def _make(
        created_at: str,
        *,
        repo: str = "octo/reef",
        event_type: str = "PushEvent",
        payload: dict[str, typ.Any] | None = None,
    ) -> dict[str, typ.Any]:
        return {
            "id": "1",
            "type": event_type,
            "created_at": created_at,
            "repo": {"id": 1, "name": repo},
            "payload": payload if payload is not None else {"ref": "refs/heads/main", "distinct_size": 1},
        }

    return _make
