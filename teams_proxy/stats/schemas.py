"""Message statistics result record."""

from datetime import date, datetime

from pydantic import BaseModel, Field


class TeamMessageStats(BaseModel):
    """Consolidated message statistics for one team.

    When ``partial`` is set, at least one fetch failed permanently and the
    counts are a lower bound.
    """

    team_id: str
    channel_id: str | None = None
    channel_name: str | None = None
    total_count: int = Field(default=0, ge=0)
    recent_count: int = Field(default=0, ge=0)
    question_count: int = Field(default=0, ge=0)
    latest_activity: date | None = None
    partial: bool = False
    budget_exhausted: bool = False
    computed_at: datetime
