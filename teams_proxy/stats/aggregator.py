"""Team message statistics over channel messages and their reply threads.

A run resolves the team's channel against an allow-list, walks the
top-level message pages strictly in cursor order, then walks every
message's reply thread under a concurrency bound. Each thread folds into its
own accumulator; all of them merge into the run's accumulator once the
limiter returns, so no counter is shared between concurrent units.

Upstream flakiness never escapes a run. A page that fails permanently stops
that walk and marks the result partial, keeping everything counted so far.
Only credential and input errors propagate.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Awaitable, Callable

import structlog

from teams_proxy.config import settings
from teams_proxy.graph.budget import RequestBudget
from teams_proxy.graph.client import GraphClient, graph_client
from teams_proxy.graph.concurrency import Rejected, run_bounded
from teams_proxy.graph.errors import (
    BudgetExhausted,
    CredentialError,
    InputValidationError,
    PermanentFetchError,
)
from teams_proxy.graph.schemas import Channel, ChatMessage, GraphPage
from teams_proxy.stats.schemas import TeamMessageStats
from teams_proxy.stats.text import is_question, strip_markup

logger = structlog.get_logger()

PageFetcher = Callable[[str | None], Awaitable[GraphPage[ChatMessage]]]


def _utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StatsAccumulator:
    """Running totals for one run or one reply thread.

    Counts only grow, ``latest`` only moves forward and ``partial`` never
    resets once set.
    """

    total_count: int = 0
    recent_count: int = 0
    question_count: int = 0
    latest: datetime | None = None
    partial: bool = False
    budget_exhausted: bool = False

    def record(self, message: ChatMessage, cutoff: datetime, count_questions: bool) -> None:
        """Fold one message or reply; non-human authors are skipped."""
        if not message.author_is_human:
            return

        timestamp = _utc(message.effective_timestamp)
        self.total_count += 1
        if timestamp >= cutoff:
            self.recent_count += 1
        if self.latest is None or timestamp > self.latest:
            self.latest = timestamp
        if count_questions and is_question(strip_markup(message.body_text)):
            self.question_count += 1

    def merge(self, other: "StatsAccumulator") -> None:
        """Commutative merge of another accumulator into this one."""
        self.total_count += other.total_count
        self.recent_count += other.recent_count
        self.question_count += other.question_count
        if other.latest is not None and (self.latest is None or other.latest > self.latest):
            self.latest = other.latest
        self.partial = self.partial or other.partial
        self.budget_exhausted = self.budget_exhausted or other.budget_exhausted

    def mark_partial(self, budget_exhausted: bool = False) -> None:
        self.partial = True
        if budget_exhausted:
            self.budget_exhausted = True


class MessageStatsAggregator:
    """Computes TeamMessageStats for one team at a time."""

    def __init__(
        self,
        client: GraphClient,
        channel_allow_list: list[str] | None = None,
        recent_days: int | None = None,
        reply_concurrency: int | None = None,
        count_questions: bool | None = None,
        request_budget: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        allow_list = channel_allow_list if channel_allow_list is not None else settings.stats_channel_allow_list
        self.client = client
        self.channel_allow_list = [name.lower() for name in allow_list]
        self.recent_days = recent_days if recent_days is not None else settings.stats_recent_days
        self.reply_concurrency = reply_concurrency if reply_concurrency is not None else settings.stats_reply_concurrency
        self.count_questions = count_questions if count_questions is not None else settings.stats_count_questions
        self.request_budget = request_budget if request_budget is not None else settings.stats_request_budget
        self.clock = clock

        if self.reply_concurrency < 1:
            raise InputValidationError(f"reply_concurrency must be >= 1, got {self.reply_concurrency}")
        if self.recent_days < 0:
            raise InputValidationError(f"recent_days must be >= 0, got {self.recent_days}")

    def select_channel(self, channels: list[Channel]) -> Channel | None:
        """First channel whose name is on the allow-list, ignoring case."""
        for channel in channels:
            if channel.display_name.lower() in self.channel_allow_list:
                return channel
        return None

    async def compute(self, team_id: str, budget: RequestBudget | None = None) -> TeamMessageStats:
        """Run the full traversal for ``team_id``."""
        if not team_id or not team_id.strip():
            raise InputValidationError("team_id is required")

        if budget is None and self.request_budget is not None:
            budget = RequestBudget(self.request_budget)

        log = logger.bind(team_id=team_id)
        started_at = self.clock()
        cutoff = started_at - timedelta(days=self.recent_days)
        acc = StatsAccumulator()

        try:
            channels = await self.client.list_channels(team_id, budget=budget)
        except CredentialError:
            raise
        except BudgetExhausted as e:
            log.warning("Budget exhausted listing channels", error=str(e))
            acc.mark_partial(budget_exhausted=True)
            return self._result(team_id, None, acc, started_at)
        except PermanentFetchError as e:
            log.warning("Channel listing failed", error=str(e))
            acc.mark_partial()
            return self._result(team_id, None, acc, started_at)

        channel = self.select_channel(channels)
        if channel is None:
            log.info("No allow-listed channel found", channels=len(channels))
            return self._result(team_id, None, acc, started_at)

        log = log.bind(channel_id=channel.id)

        async def fetch_messages(cursor: str | None) -> GraphPage[ChatMessage]:
            return await self.client.get_messages_page(team_id, channel.id, cursor, budget=budget)

        messages = await self._walk(fetch_messages, acc, log)
        for message in messages:
            acc.record(message, cutoff, self.count_questions)

        if messages and not acc.budget_exhausted:
            units = [
                partial(self._walk_thread, team_id, channel.id, message.id, cutoff, budget)
                for message in messages
            ]
            outcomes = await run_bounded(units, self.reply_concurrency)

            for message, outcome in zip(messages, outcomes):
                if isinstance(outcome, Rejected):
                    if isinstance(outcome.error, CredentialError):
                        raise outcome.error
                    log.error(
                        "Reply thread walk failed",
                        message_id=message.id,
                        error=str(outcome.error),
                    )
                    acc.mark_partial()
                else:
                    acc.merge(outcome.value)

        log.info(
            "Message stats computed",
            messages=len(messages),
            total=acc.total_count,
            recent=acc.recent_count,
            questions=acc.question_count,
            partial=acc.partial,
        )
        return self._result(team_id, channel, acc, started_at)

    async def _walk(
        self,
        fetch_page: PageFetcher,
        acc: StatsAccumulator,
        log: structlog.stdlib.BoundLogger,
    ) -> list[ChatMessage]:
        """Follow cursors until exhausted or a page fails permanently."""
        items: list[ChatMessage] = []
        cursor: str | None = None
        pages = 0

        while True:
            try:
                page = await fetch_page(cursor)
            except CredentialError:
                raise
            except BudgetExhausted as e:
                log.warning("Budget exhausted during page walk", pages=pages, error=str(e))
                acc.mark_partial(budget_exhausted=True)
                break
            except PermanentFetchError as e:
                log.warning("Page fetch failed", pages=pages, status=e.status, error=str(e))
                acc.mark_partial()
                break

            pages += 1
            items.extend(page.items)
            cursor = page.next_cursor
            if not cursor:
                break

        return items

    async def _walk_thread(
        self,
        team_id: str,
        channel_id: str,
        message_id: str,
        cutoff: datetime,
        budget: RequestBudget | None,
    ) -> StatsAccumulator:
        """Walk one reply thread into its own accumulator."""
        thread = StatsAccumulator()

        async def fetch_replies(cursor: str | None) -> GraphPage[ChatMessage]:
            return await self.client.get_replies_page(
                team_id, channel_id, message_id, cursor, budget=budget
            )

        log = logger.bind(team_id=team_id, channel_id=channel_id, message_id=message_id)
        replies = await self._walk(fetch_replies, thread, log)
        for reply in replies:
            thread.record(reply, cutoff, self.count_questions)
        return thread

    @staticmethod
    def _result(
        team_id: str,
        channel: Channel | None,
        acc: StatsAccumulator,
        computed_at: datetime,
    ) -> TeamMessageStats:
        return TeamMessageStats(
            team_id=team_id,
            channel_id=channel.id if channel else None,
            channel_name=channel.display_name if channel else None,
            total_count=acc.total_count,
            recent_count=acc.recent_count,
            question_count=acc.question_count,
            latest_activity=acc.latest.astimezone(timezone.utc).date() if acc.latest else None,
            partial=acc.partial,
            budget_exhausted=acc.budget_exhausted,
            computed_at=computed_at,
        )


# Singleton instance
message_stats_aggregator = MessageStatsAggregator(graph_client)
