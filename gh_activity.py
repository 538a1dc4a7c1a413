#!/usr/bin/env -S uv run -s
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "httpx>=0.27",
#   "typer>=0.12",
#   "structlog>=24.1",
# ]
# ///
"""
Print your recent GitHub activity as a per-day, per-repository report.

Walks the public events feed for the authenticated user newest-first, stops at
the --since cutoff, then prints oldest-first:

  Monday, March 3
  ------------------------------------------------
  octo/reef
    09:14  pushed 2 commits to refs/heads/main
    09:40  opened PR "Tidy up the parser" (#12)

Env:
  GITHUB_TOKEN / GH_TOKEN  (optional; falls back to `gh auth token`)
  GH_PATH                  (optional, default: 'gh')
  GITHUB_API_URL           (optional, default: https://api.github.com)

Example:
  gh_activity.py --since yesterday
  gh_activity.py --since 2025-03-01 --no-links
"""
from __future__ import annotations

import dataclasses as dc
import json
import logging
import os
import re
import shlex
import subprocess
import sys
from datetime import UTC, date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable, Optional, Sequence, assert_never

import httpx
import structlog
import typer

app = typer.Typer(add_completion=False)
log = structlog.get_logger("gh_activity")

API_BASE = "https://api.github.com"
API_VERSION = "2022-11-28"
DEFAULT_SINCE = "7 days ago"
MAX_PER_PAGE = 100
# GitHub only serves the most recent 300 events for a user.
EVENTS_LIMIT = 300

TIME_FORMAT = "%H:%M"
RULE = "-" * 48

# ---------- errors ----------

class ActivityError(Exception):
    """Base for every failure that aborts a report run."""


class TransportError(ActivityError):
    def __init__(self, message: str, *, page: Optional[int] = None):
        super().__init__(message)
        self.page = page


class TimeParseError(ActivityError):
    def __init__(self, value: str, reason: str = ""):
        msg = f"cannot parse time {value!r}"
        super().__init__(f"{msg}: {reason}" if reason else msg)
        self.value = value


class DecodeError(ActivityError):
    def __init__(self, event_type: str, cause: Exception):
        super().__init__(f"cannot decode {event_type} payload: {cause}")
        self.event_type = event_type
        self.cause = cause

# ---------- models ----------

def _parse_timestamp(s: Any) -> datetime:
    if not isinstance(s, str):
        raise TimeParseError(repr(s), "not a string")
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as e:
        raise TimeParseError(s, str(e)) from e
    if dt.tzinfo is None:
        raise TimeParseError(s, "no UTC offset")
    return dt.astimezone(UTC)


@dc.dataclass(frozen=True)
class Envelope:
    type: str
    created_at: datetime  # always UTC
    project_name: str
    payload: dict[str, Any]

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Envelope:
        """Build from one element of the events listing; raises KeyError/TypeError on a bad shape."""
        if not isinstance(raw, dict):
            raise TypeError(f"event is {type(raw).__name__}, not an object")
        event_type = raw["type"]
        project = raw["repo"]["name"]
        if not isinstance(event_type, str) or not isinstance(project, str):
            raise TypeError("event type and repo name must be strings")
        return cls(
            type=event_type,
            created_at=_parse_timestamp(raw["created_at"]),
            project_name=project,
            payload=raw.get("payload") or {},
        )


@dc.dataclass(frozen=True)
class IssueRef:
    number: int
    title: str
    html_url: str
    is_pull_request: bool  # issues API reports PRs as issues with a pull_request link


@dc.dataclass(frozen=True)
class PullRequestRef:
    number: int
    title: str
    html_url: str


@dc.dataclass(frozen=True)
class PushPayload:
    ref: str
    distinct_size: int


@dc.dataclass(frozen=True)
class CreatePayload:
    ref: Optional[str]  # null when a whole repository was created
    ref_type: str


@dc.dataclass(frozen=True)
class DeletePayload:
    ref: str
    ref_type: str


@dc.dataclass(frozen=True)
class ForkPayload:
    forkee: str


@dc.dataclass(frozen=True)
class IssuesPayload:
    action: str
    issue: IssueRef


@dc.dataclass(frozen=True)
class IssueCommentPayload:
    action: str
    issue: IssueRef


@dc.dataclass(frozen=True)
class PullRequestPayload:
    action: str
    pull_request: PullRequestRef


@dc.dataclass(frozen=True)
class PullRequestReviewPayload:
    pull_request: PullRequestRef
    state: str


@dc.dataclass(frozen=True)
class PullRequestReviewCommentPayload:
    pull_request: PullRequestRef


@dc.dataclass(frozen=True)
class ReleasePayload:
    name: str


@dc.dataclass(frozen=True)
class PublicPayload:
    pass


@dc.dataclass(frozen=True)
class WatchPayload:
    pass


@dc.dataclass(frozen=True)
class UnknownPayload:
    event_type: str


Payload = (
    PushPayload
    | CreatePayload
    | DeletePayload
    | ForkPayload
    | IssuesPayload
    | IssueCommentPayload
    | PullRequestPayload
    | PullRequestReviewPayload
    | PullRequestReviewCommentPayload
    | ReleasePayload
    | PublicPayload
    | WatchPayload
    | UnknownPayload
)

# ---------- decoding ----------

class _FieldError(ValueError):
    pass


def _obj(parent: Any, key: str) -> dict[str, Any]:
    return _field(parent, key, dict)


def _field(obj: Any, key: str, kind: type, *, nullable: bool = False) -> Any:
    if not isinstance(obj, dict):
        raise _FieldError(f"expected an object holding {key!r}, got {type(obj).__name__}")
    if key not in obj:
        raise _FieldError(f"missing field {key!r}")
    v = obj[key]
    if v is None and nullable:
        return None
    # bool is an int subclass; a flag is never a count or a number
    if not isinstance(v, kind) or (kind is int and isinstance(v, bool)):
        raise _FieldError(f"field {key!r} should be {kind.__name__}, got {type(v).__name__}")
    return v


def _issue(p: dict[str, Any]) -> IssueRef:
    issue = _obj(p, "issue")
    return IssueRef(
        number=_field(issue, "number", int),
        title=_field(issue, "title", str),
        html_url=issue.get("html_url") or "",
        is_pull_request=issue.get("pull_request") is not None,
    )


def _pull_request(p: dict[str, Any]) -> PullRequestRef:
    pr = _obj(p, "pull_request")
    return PullRequestRef(
        number=_field(pr, "number", int),
        title=_field(pr, "title", str),
        html_url=pr.get("html_url") or "",
    )


def decode_payload(event_type: str, payload: Any) -> Payload:
    """
    Decode an envelope payload into the variant for its type tag.

    Unrecognised tags decode to UnknownPayload and PublicEvent/WatchEvent never
    look at the payload. Anything else with a missing or mistyped field raises
    DecodeError carrying the tag.
    """
    p = payload
    try:
        match event_type:
            case "PushEvent":
                return PushPayload(ref=_field(p, "ref", str), distinct_size=_field(p, "distinct_size", int))
            case "CreateEvent":
                return CreatePayload(ref=_field(p, "ref", str, nullable=True), ref_type=_field(p, "ref_type", str))
            case "DeleteEvent":
                return DeletePayload(ref=_field(p, "ref", str), ref_type=_field(p, "ref_type", str))
            case "ForkEvent":
                return ForkPayload(forkee=_field(_obj(p, "forkee"), "full_name", str))
            case "IssuesEvent":
                return IssuesPayload(action=_field(p, "action", str), issue=_issue(p))
            case "IssueCommentEvent":
                return IssueCommentPayload(action=_field(p, "action", str), issue=_issue(p))
            case "PullRequestEvent":
                return PullRequestPayload(action=_field(p, "action", str), pull_request=_pull_request(p))
            case "PullRequestReviewEvent":
                return PullRequestReviewPayload(
                    pull_request=_pull_request(p),
                    state=_field(_obj(p, "review"), "state", str),
                )
            case "PullRequestReviewCommentEvent":
                return PullRequestReviewCommentPayload(pull_request=_pull_request(p))
            case "ReleaseEvent":
                release = _obj(p, "release")
                name = _field(release, "name", str, nullable=True) or _field(release, "tag_name", str)
                return ReleasePayload(name=name)
            case "PublicEvent":
                return PublicPayload()
            case "WatchEvent":
                return WatchPayload()
            case _:
                return UnknownPayload(event_type)
    except _FieldError as e:
        raise DecodeError(event_type, e) from e

# ---------- formatting ----------

def format_link(text: str, url: str) -> str:
    """Wrap text in an OSC 8 terminal hyperlink."""
    return f"\x1b]8;;{url}\x1b\\{text}\x1b]8;;\x1b\\"


def _ref(title: str, number: int, url: str, links: bool) -> str:
    text = f'"{title}" (#{number})'
    return format_link(text, url) if links and url else text


def format_payload(p: Payload, *, links: bool = False) -> str:
    match p:
        case PushPayload(ref=ref, distinct_size=n):
            return f"pushed {n} commits to {ref}"
        case CreatePayload(ref=ref, ref_type=kind):
            return f"created {kind} {ref}" if ref else f"created {kind}"
        case DeletePayload(ref=ref, ref_type=kind):
            return f"deleted {kind} {ref}"
        case ForkPayload(forkee=forkee):
            return f"forked repository (creating {forkee})"
        case IssuesPayload(action=action, issue=issue):
            return f"{action} issue {_ref(issue.title, issue.number, issue.html_url, links)}"
        case IssueCommentPayload(issue=issue):
            kind = "PR" if issue.is_pull_request else "issue"
            return f"commented on {kind} {_ref(issue.title, issue.number, issue.html_url, links)}"
        case PullRequestPayload(action=action, pull_request=pr):
            return f"{action} PR {_ref(pr.title, pr.number, pr.html_url, links)}"
        case PullRequestReviewPayload(pull_request=pr, state=state):
            return f"reviewed PR {_ref(pr.title, pr.number, pr.html_url, links)} ({state})"
        case PullRequestReviewCommentPayload(pull_request=pr):
            return f"left review comment on PR {_ref(pr.title, pr.number, pr.html_url, links)}"
        case ReleasePayload(name=name):
            return f"released {name}"
        case PublicPayload():
            return "made repository public"
        case WatchPayload():
            return "starred repository"
        case UnknownPayload(event_type=event_type):
            return event_type
        case _:
            assert_never(p)


def format_event(event_type: str, payload: Any, *, links: bool = False) -> str:
    return format_payload(decode_payload(event_type, payload), links=links)

# ---------- cutoff ----------

_RELATIVE = re.compile(r"^(?P<n>\d+|an?)\s+(?P<unit>minute|min|hour|day|week)s?\s+ago$")
_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _uses_system_zone(now: datetime) -> bool:
    """True when now only carries the system zone's offset at that instant."""
    return isinstance(now.tzinfo, timezone) and now.astimezone().utcoffset() == now.utcoffset()


def _start_of_day(d: date, tz: Optional[tzinfo], *, system: bool = False) -> datetime:
    # a fixed offset taken from now is wrong for a day on the other side of a DST change
    if system:
        return datetime.combine(d, time(0, 0, 0)).astimezone()
    return datetime.combine(d, time(0, 0, 0), tzinfo=tz)


def resolve_cutoff(text: str, *, now: Optional[datetime] = None) -> datetime:
    """
    Turn a --since value into an aware datetime.

    Accepts now/today/yesterday, YYYY-MM-DD, ISO 8601 (naïve => local time),
    "N minutes|hours|days|weeks ago" and "last <weekday>". Phrases naming a
    whole day resolve to local midnight of that day.
    """
    now = now or datetime.now().astimezone()
    tz = now.tzinfo
    system = _uses_system_zone(now)
    s = " ".join(text.strip().lower().split())
    today = now.date()

    if s == "now":
        return now
    if s == "today":
        return _start_of_day(today, tz, system=system)
    if s == "yesterday":
        return _start_of_day(today - timedelta(days=1), tz, system=system)

    m = _RELATIVE.match(s)
    if m:
        n = 1 if m["n"] in ("a", "an") else int(m["n"])
        unit = m["unit"]
        if unit in ("minute", "min"):
            return now - timedelta(minutes=n)
        if unit == "hour":
            return now - timedelta(hours=n)
        days = n * 7 if unit == "week" else n
        return _start_of_day(today - timedelta(days=days), tz, system=system)

    if s.startswith("last ") and s[5:] in _WEEKDAYS:
        back = (today.weekday() - _WEEKDAYS.index(s[5:])) % 7 or 7
        return _start_of_day(today - timedelta(days=back), tz, system=system)

    raw = text.strip()
    if len(raw) == 10 and raw[4] == "-" and raw[7] == "-":
        try:
            return _start_of_day(date.fromisoformat(raw), tz, system=system)
        except ValueError as e:
            raise TimeParseError(text, str(e)) from e
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise TimeParseError(text, "expected a date, an ISO 8601 time or a phrase like '3 days ago'") from None
    if dt.tzinfo is None:
        dt = dt.astimezone() if system else dt.replace(tzinfo=tz)
    return dt

# ---------- traversal ----------

@dc.dataclass
class Traversal:
    """Events at or after the cutoff, newest-first, and why fetching stopped."""
    envelopes: list[Envelope]
    reached_cutoff: bool
    exhausted: bool = False
    pages: int = 0

    @property
    def oldest(self) -> Optional[Envelope]:
        return self.envelopes[-1] if self.envelopes else None


def fetch_until(
    fetch: Callable[[int], Sequence[Envelope]],
    *,
    cutoff: datetime,
    per_page: int,
    max_pages: Optional[int] = None,
) -> Traversal:
    """
    Fetch pages (newest-first) until an event older than the cutoff shows up
    or the feed runs dry. Events exactly at the cutoff are kept.
    """
    collected: list[Envelope] = []
    page = 1
    while True:
        events = fetch(page)
        log.debug("page_fetched", page=page, count=len(events))
        for ev in events:
            if ev.created_at < cutoff:
                log.debug("cutoff_reached", page=page, at=ev.created_at.isoformat())
                return Traversal(collected, reached_cutoff=True, pages=page)
            collected.append(ev)

        # the page ended right on the cutoff: stop here. Events sharing that same
        # second at the top of the next page are not fetched, an accepted loss.
        if collected and collected[-1].created_at == cutoff:
            return Traversal(collected, reached_cutoff=True, pages=page)

        if len(events) < per_page or (max_pages is not None and page >= max_pages):
            result = Traversal(collected, reached_cutoff=False, exhausted=True, pages=page)
            oldest = result.oldest
            log.warning(
                "feed_exhausted",
                cutoff=cutoff.isoformat(),
                oldest_at=oldest.created_at.isoformat() if oldest else None,
                oldest_type=oldest.type if oldest else None,
                oldest_repo=oldest.project_name if oldest else None,
                pages=page,
            )
            return result
        page += 1

# ---------- report ----------

@dc.dataclass(frozen=True)
class PrinterState:
    last_day: Optional[date] = None
    last_project: Optional[str] = None


def day_header(d: date) -> str:
    return f"{d:%A, %B} {d.day}"


def advance(
    state: PrinterState,
    ev: Envelope,
    *,
    tz: Optional[tzinfo] = None,
    links: bool = False,
    color: bool = False,
) -> tuple[PrinterState, list[str]]:
    """
    Render one envelope against the running day/project state.

    Returns the next state and the lines to print. Nothing is returned for an
    envelope whose payload fails to decode; the DecodeError propagates.
    """
    local = ev.created_at.astimezone(tz)
    message = format_event(ev.type, ev.payload, links=links)

    lines: list[str] = []
    day = local.date()
    last_project = state.last_project
    if day != state.last_day:
        if state.last_day is not None:
            lines.append("")
        lines.append(typer.style(day_header(day), bold=True) if color else day_header(day))
        lines.append(RULE)
        last_project = None
    if ev.project_name != last_project:
        if last_project is not None:
            lines.append("")
        lines.append(typer.style(ev.project_name, fg=typer.colors.CYAN) if color else ev.project_name)
    lines.append(f"  {local.strftime(TIME_FORMAT)}  {message}")
    return PrinterState(last_day=day, last_project=ev.project_name), lines


def print_report(
    envelopes: Iterable[Envelope],
    *,
    echo: Callable[[str], Any] = typer.echo,
    tz: Optional[tzinfo] = None,
    links: bool = False,
    color: bool = False,
) -> PrinterState:
    """Print envelopes, which must already be oldest-first."""
    state = PrinterState()
    for ev in envelopes:
        state, lines = advance(state, ev, tz=tz, links=links, color=color)
        for line in lines:
            echo(line)
    return state

# ---------- GitHub via httpx ----------

def gh_cmd(*args: str, gh_path: Optional[str] = None, timeout: int = 30) -> str:
    exe = gh_path or os.environ.get("GH_PATH") or "gh"
    cmd = [exe, *args]
    p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout)
    if p.returncode != 0:
        raise RuntimeError(f"gh failed: {shlex.join(cmd)} :: {p.stderr.strip()}")
    return p.stdout


def resolve_token(explicit: Optional[str], gh_path: Optional[str]) -> Optional[str]:
    token = explicit or os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")
    if token:
        return token.strip()
    try:
        return gh_cmd("auth", "token", gh_path=gh_path).strip() or None
    except (RuntimeError, OSError, subprocess.SubprocessError) as e:
        log.debug("gh_token_unavailable", error=str(e))
        return None


class GitHubClient:
    def __init__(self, token: str, base_url: str = API_BASE, *, transport: Optional[httpx.BaseTransport] = None):
        self.base = base_url.rstrip("/")
        self.h = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }
        self.cli = httpx.Client(timeout=30, transport=transport)

    def _get(self, path: str, *, params: Optional[dict[str, Any]] = None, page: Optional[int] = None) -> Any:
        where = f"GET {path}" + (f" (page {page})" if page is not None else "")
        try:
            r = self.cli.get(f"{self.base}{path}", headers=self.h, params=params)
            r.raise_for_status()
            return r.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"{where} failed: HTTP {e.response.status_code} {e.response.text[:200]}", page=page) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{where} failed: {e}", page=page) from e
        except ValueError as e:
            raise TransportError(f"{where} returned invalid JSON: {e}", page=page) from e

    def current_login(self) -> str:
        data = self._get("/user")
        login = data.get("login") if isinstance(data, dict) else None
        if not isinstance(login, str) or not login:
            raise TransportError("GET /user returned no login")
        return login

    def events_page(self, login: str, page: int, per_page: int) -> list[Envelope]:
        data = self._get(f"/users/{login}/events", params={"per_page": per_page, "page": page}, page=page)
        if not isinstance(data, list):
            raise TransportError(f"events page {page} is not a list", page=page)
        try:
            return [Envelope.from_api(item) for item in data]
        except (KeyError, TypeError) as e:
            raise TransportError(f"malformed event on page {page}: {e!r}", page=page) from e

    def close(self) -> None:
        self.cli.close()

# ---------- run ----------

@dc.dataclass
class Config:
    token: str
    since: str = DEFAULT_SINCE
    user: Optional[str] = None
    per_page: int = MAX_PER_PAGE
    links: bool = False
    color: bool = False
    base_url: str = API_BASE


def run(cfg: Config, client: GitHubClient, *, echo: Callable[[str], Any] = typer.echo, now: Optional[datetime] = None) -> Traversal:
    cutoff = resolve_cutoff(cfg.since, now=now)
    login = cfg.user or client.current_login()
    log.info("identity_resolved", login=login, cutoff=cutoff.isoformat())

    per_page = max(1, min(cfg.per_page, MAX_PER_PAGE))
    result = fetch_until(
        lambda page: client.events_page(login, page, per_page),
        cutoff=cutoff,
        per_page=per_page,
        max_pages=-(-EVENTS_LIMIT // per_page),
    )
    print_report(reversed(result.envelopes), echo=echo, links=cfg.links, color=cfg.color)
    return result

# ---------- logging setup ----------

def configure_logging(verbosity: int) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
        ),
        # stdout is the report
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )

# ---------- CLI ----------

@app.command()
def report(
    since: str = typer.Option(DEFAULT_SINCE, "--since", "-s", help="Cutoff: date, ISO time, or phrase like '3 days ago'"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="GitHub login (default: the authenticated user)"),
    per_page: int = typer.Option(MAX_PER_PAGE, "--per-page", min=1, max=MAX_PER_PAGE, clamp=True, help="Events per API page"),
    links: Optional[bool] = typer.Option(None, "--links/--no-links", help="Hyperlink issue and PR titles (default: on a terminal)"),
    color: Optional[bool] = typer.Option(None, "--color/--no-color", help="Colour headers (default: on a terminal)"),
    token: Optional[str] = typer.Option(None, "--token", help="GitHub token; defaults to $GITHUB_TOKEN, $GH_TOKEN or `gh auth token`"),
    gh: Optional[str] = typer.Option(None, "--gh", help="Path to gh(1); defaults to $GH_PATH or 'gh'"),
    verbose: int = typer.Option(0, "-v", count=True, help="-v or -vv for more logs"),
):
    """Print your GitHub activity since a cutoff, grouped by day and repository."""
    configure_logging(verbose)

    tok = resolve_token(token, gh)
    if not tok:
        typer.echo("ERROR: no GitHub token (set GITHUB_TOKEN or run `gh auth login`)", err=True)
        raise typer.Exit(2)

    tty = sys.stdout.isatty()
    cfg = Config(
        token=tok,
        since=since,
        user=user,
        per_page=per_page,
        links=tty if links is None else links,
        color=tty if color is None else color,
        base_url=os.environ.get("GITHUB_API_URL") or API_BASE,
    )

    client = GitHubClient(cfg.token, cfg.base_url)
    try:
        run(cfg, client, echo=lambda line: typer.echo(line, color=cfg.color or cfg.links))
    except ActivityError as e:
        log.error("fatal", error=str(e), kind=type(e).__name__)
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        client.close()


def main() -> None:
    app()

# ---------- entry ----------

if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        # last-ditch log
        print(json.dumps({
            "ts": datetime.now(UTC).isoformat(),
            "level": "error",
            "event": "fatal",
            "error": str(e),
        }), file=sys.stderr)
        sys.exit(1)
