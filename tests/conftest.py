"""Pytest fixtures and configuration."""

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from teams_proxy.graph.auth import StaticTokenProvider
from teams_proxy.graph.client import GraphClient
from teams_proxy.graph.retry import RetryPolicy
from teams_proxy.main import app
from teams_proxy.stats.aggregator import MessageStatsAggregator

GRAPH_BASE = "https://graph.test/v1.0"
NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def graph_message(
    message_id: str,
    created: datetime,
    modified: datetime | None = None,
    human: bool = True,
    text: str = "<p>hello team</p>",
) -> dict[str, Any]:
    """Build a chatMessage payload the way Graph returns it."""
    sender = (
        {"user": {"id": f"user-{message_id}", "displayName": "Pat"}, "application": None}
        if human
        else {"user": None, "application": {"id": "bot", "displayName": "Workflow Bot"}}
    )
    return {
        "id": message_id,
        "messageType": "message",
        "createdDateTime": iso(created),
        "lastModifiedDateTime": iso(modified) if modified else None,
        "from": sender,
        "body": {"contentType": "html", "content": text},
    }


class FakeGraph:
    """In-memory Graph upstream served through httpx.MockTransport.

    Collections are lists of pages; page N>0 is reached through an
    ``@odata.nextLink`` carrying ``page=N``. ``failures`` maps a path to the
    status code every request to it answers with.
    """

    def __init__(self, team_id: str = "team-1", channel_id: str = "chan-1"):
        self.team_id = team_id
        self.channel_id = channel_id
        self.channels: list[dict[str, Any]] = [{"id": channel_id, "displayName": "General"}]
        self.message_pages: list[list[dict[str, Any]]] = [[]]
        self.reply_pages: dict[str, list[list[dict[str, Any]]]] = {}
        self.failures: dict[str, int] = {}
        self.visits: Counter = Counter()
        self.requests: list[httpx.Request] = []

    @property
    def messages_path(self) -> str:
        return f"/teams/{self.team_id}/channels/{self.channel_id}/messages"

    def replies_path(self, message_id: str) -> str:
        return f"{self.messages_path}/{message_id}/replies"

    def _page(self, path: str, pages: list[list[dict[str, Any]]], index: int) -> httpx.Response:
        body: dict[str, Any] = {"value": pages[index] if index < len(pages) else []}
        if index + 1 < len(pages):
            body["@odata.nextLink"] = f"{GRAPH_BASE}{path}?page={index + 1}"
        return httpx.Response(200, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1.0")
        index = int(request.url.params.get("page", 0))
        self.visits[(path, index)] += 1

        if path in self.failures:
            return httpx.Response(self.failures[path], json={"error": {"code": "Failure"}})

        if path == f"/teams/{self.team_id}/channels":
            return httpx.Response(200, json={"value": self.channels})
        if path == self.messages_path:
            return self._page(path, self.message_pages, index)
        if path.startswith(self.messages_path) and path.endswith("/replies"):
            message_id = path.split("/")[-2]
            return self._page(path, self.reply_pages.get(message_id, [[]]), index)
        return httpx.Response(404, json={"error": {"code": "NotFound"}})

    def message_page_visits(self) -> int:
        return sum(n for (path, _), n in self.visits.items() if path == self.messages_path)

    def calls_to(self, suffix: str) -> int:
        return sum(n for (path, _), n in self.visits.items() if path.endswith(suffix))


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with tiny delays and no jitter."""
    return RetryPolicy(
        max_retries=2,
        base_delay_ms=10,
        max_delay_ms=40,
        timeout_ms=1000,
        max_jitter_ms=0,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Records requested waits instead of sleeping."""

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def fake_graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture
def make_graph_client(fast_policy, fake_sleep):
    """Build a GraphClient wired to a MockTransport handler."""

    def _make(handler, policy: RetryPolicy | None = None) -> GraphClient:
        return GraphClient(
            token_provider=StaticTokenProvider("test-token"),
            policy=policy or fast_policy,
            base_url=GRAPH_BASE,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            page_size=50,
            sleep=fake_sleep,
        )

    return _make


@pytest.fixture
def make_aggregator(make_graph_client):
    """Build an aggregator over a FakeGraph with a fixed clock."""

    def _make(graph: FakeGraph, **kwargs: Any) -> MessageStatsAggregator:
        options: dict[str, Any] = {
            "channel_allow_list": ["general", "main"],
            "recent_days": 30,
            "reply_concurrency": 5,
            "count_questions": True,
            "clock": lambda: NOW,
        }
        options.update(kwargs)
        return MessageStatsAggregator(make_graph_client(graph.handler), **options)

    return _make


@pytest.fixture
def days_ago():
    def _days_ago(days: float) -> datetime:
        return NOW - timedelta(days=days)

    return _days_ago


# Lifespan is not run: Graph and Redis are never contacted
@pytest.fixture
def client() -> Generator:
    """Create test client."""
    yield TestClient(app)

