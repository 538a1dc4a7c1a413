"""End-to-end tests for run() and the typer command."""

from __future__ import annotations

import datetime as dt
import typing as typ

import httpx
import pytest
from typer.testing import CliRunner

import gh_activity
from gh_activity import Config, GitHubClient, run

if typ.TYPE_CHECKING:
    import collections.abc as cabc

NOW = dt.datetime(2025, 3, 5, 15, 30, tzinfo=dt.UTC)


def _iso(at: dt.datetime) -> str:
    return at.astimezone(dt.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class FeedServer:
    """A MockTransport handler for /user and paged /users/{login}/events."""

    def __init__(self, events: list[dict[str, typ.Any]], *, fail_page: int | None = None) -> None:
        self.events = events
        self.fail_page = fail_page
        self.pages: list[int] = []
        self.user_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user":
            self.user_calls += 1
            return httpx.Response(200, json={"login": "octocat"})
        page = int(request.url.params["page"])
        per_page = int(request.url.params["per_page"])
        self.pages.append(page)
        if page == self.fail_page:
            return httpx.Response(500, text="oops")
        start = (page - 1) * per_page
        return httpx.Response(200, json=self.events[start : start + per_page])


@pytest.fixture
def feed(api_event: cabc.Callable[..., dict[str, typ.Any]]) -> list[dict[str, typ.Any]]:
    """Newest-first feed spanning two days and two repositories."""
    return [
        api_event(_iso(NOW - dt.timedelta(hours=1)), repo="octo/kelp", event_type="WatchEvent", payload={}),
        api_event(_iso(NOW - dt.timedelta(hours=2)), payload={"ref": "refs/heads/main", "distinct_size": 3}),
        api_event(_iso(NOW - dt.timedelta(days=1)), event_type="SponsorshipEvent", payload={}),
        api_event(_iso(NOW - dt.timedelta(days=20)), event_type="PublicEvent", payload={}),
    ]


class TestRun:
    """run() wires cutoff, identity, traversal and printer together."""

    @pytest.fixture
    def client_for(self) -> cabc.Iterator[cabc.Callable[[FeedServer], GitHubClient]]:
        """Build clients against a FeedServer and close them afterwards."""
        clients: list[GitHubClient] = []

        def _make(server: FeedServer) -> GitHubClient:
            client = GitHubClient("t", "https://api.example.test", transport=httpx.MockTransport(server))
            clients.append(client)
            return client

        try:
            yield _make
        finally:
            for client in clients:
                client.close()

    def test_prints_oldest_first(
        self, feed: list[dict[str, typ.Any]], client_for: cabc.Callable[[FeedServer], GitHubClient]
    ) -> None:
        """Events inside the window print oldest-first; older ones are dropped."""
        server = FeedServer(feed)
        client = client_for(server)
        lines: list[str] = []

        result = run(Config(token="t", since="3 days ago", per_page=2), client, echo=lines.append, now=NOW)

        messages = [line.strip().split("  ", 1)[1] for line in lines if line.startswith("  ")]
        assert messages == ["SponsorshipEvent", "pushed 3 commits to refs/heads/main", "starred repository"]
        assert result.reached_cutoff is True
        assert server.pages == [1, 2]
        assert server.user_calls == 1

    def test_user_override_skips_identity(
        self, feed: list[dict[str, typ.Any]], client_for: cabc.Callable[[FeedServer], GitHubClient]
    ) -> None:
        """--user means no GET /user."""
        server = FeedServer(feed)
        client = client_for(server)

        run(Config(token="t", since="3 days ago", user="hubot"), client, echo=lambda line: None, now=NOW)

        assert server.user_calls == 0

    def test_exhausted_feed_still_prints(
        self, feed: list[dict[str, typ.Any]], client_for: cabc.Callable[[FeedServer], GitHubClient]
    ) -> None:
        """Running out of events before the cutoff is not an error."""
        server = FeedServer(feed)
        client = client_for(server)
        lines: list[str] = []

        result = run(Config(token="t", since="2025-01-01", per_page=3), client, echo=lines.append, now=NOW)

        assert result.exhausted is True
        assert sum(1 for line in lines if line.startswith("  ")) == 4


class TestCommand:
    """The typer entry point."""

    @pytest.fixture(autouse=True)
    def _env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITHUB_TOKEN", "t0ken")
        monkeypatch.delenv("GITHUB_API_URL", raising=False)

    def _patch_client(self, monkeypatch: pytest.MonkeyPatch, server: FeedServer) -> None:
        def factory(token: str, base_url: str) -> GitHubClient:
            return GitHubClient(token, base_url, transport=httpx.MockTransport(server))

        monkeypatch.setattr(gh_activity, "GitHubClient", factory)

    def test_report(self, monkeypatch: pytest.MonkeyPatch, api_event: cabc.Callable[..., dict[str, typ.Any]]) -> None:
        """A recent event is printed and the run exits zero."""
        recent = dt.datetime.now(dt.UTC) - dt.timedelta(minutes=5)
        server = FeedServer([api_event(_iso(recent), repo="octo/kelp")])
        self._patch_client(monkeypatch, server)

        result = CliRunner().invoke(gh_activity.app, ["--since", "2 days ago", "--no-color", "--no-links"])

        assert result.exit_code == 0, result.output
        assert "octo/kelp" in result.output
        assert "pushed 1 commits to refs/heads/main" in result.output

    def test_transport_failure_exits_nonzero(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A failed page fetch aborts with status 1."""
        self._patch_client(monkeypatch, FeedServer([], fail_page=1))

        result = CliRunner().invoke(gh_activity.app, ["--no-color"])

        assert result.exit_code == 1
        assert "error:" in result.output

    def test_bad_since_exits_nonzero(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unparseable cutoff aborts before any fetch."""
        server = FeedServer([])
        self._patch_client(monkeypatch, server)

        result = CliRunner().invoke(gh_activity.app, ["--since", "whenever"])

        assert result.exit_code == 1
        assert server.pages == []

    def test_missing_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """No token anywhere is a usage error."""
        monkeypatch.delenv("GITHUB_TOKEN")
        monkeypatch.delenv("GH_TOKEN", raising=False)
        monkeypatch.setenv("GH_PATH", "/nonexistent/gh")

        result = CliRunner().invoke(gh_activity.app, [])

        assert result.exit_code == 2
        assert "no GitHub token" in result.output
