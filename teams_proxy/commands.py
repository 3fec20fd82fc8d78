"""Proxy commands.

Each operation is its own command type. A request body is decoded once, at
the boundary, into exactly one variant (tagged by ``action``), and the variant
executes itself against the Graph client.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, model_validator

from teams_proxy.config import settings
from teams_proxy.graph.client import GraphClient
from teams_proxy.graph.concurrency import Rejected, run_bounded
from teams_proxy.graph.errors import CredentialError, GraphError, InputValidationError
from teams_proxy.graph.retry import Sleeper
from teams_proxy.graph.schemas import GraphUser, JoinedTeam, TeamMemberCounts, TeamSummary
from teams_proxy.stats.aggregator import MessageStatsAggregator
from teams_proxy.stats.schemas import TeamMessageStats

logger = structlog.get_logger()

MEMBERSHIP_CONCURRENCY = 4


@dataclass
class CommandContext:
    """Collaborators available to a running command."""

    client: GraphClient
    aggregator: MessageStatsAggregator
    sleep: Sleeper = asyncio.sleep


class MemberInfo(BaseModel):
    email: str | None = None
    display_name: str | None = None
    role: str


class UserTeamsResult(BaseModel):
    email: str
    found: bool
    teams: list[JoinedTeam] = Field(default_factory=list)


class TeamMembersResult(BaseModel):
    team_id: str | None = None
    found: bool
    members: list[MemberInfo] = Field(default_factory=list)


class ChangeOutcome(BaseModel):
    success: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class MembershipChangeResult(BaseModel):
    email: str
    found: bool
    add: ChangeOutcome = Field(default_factory=ChangeOutcome)
    remove: ChangeOutcome = Field(default_factory=ChangeOutcome)


class GetUserTeams(BaseModel):
    """Teams the user with ``email`` has joined."""

    action: Literal["get_user_teams"] = "get_user_teams"
    email: str = Field(min_length=3)

    async def execute(self, ctx: CommandContext) -> UserTeamsResult:
        user = await ctx.client.find_user(self.email)
        if user is None:
            return UserTeamsResult(email=self.email, found=False)
        teams = await ctx.client.get_joined_teams(user.id)
        return UserTeamsResult(email=self.email, found=True, teams=teams)


class GetTeamMembers(BaseModel):
    """Members of a team, addressed by id or display name."""

    action: Literal["get_team_members"] = "get_team_members"
    team_id: str | None = None
    team_name: str | None = None

    @model_validator(mode="after")
    def _require_team(self) -> "GetTeamMembers":
        if not self.team_id and not self.team_name:
            raise ValueError("team_id or team_name is required")
        return self

    async def execute(self, ctx: CommandContext) -> TeamMembersResult:
        team_id = self.team_id
        if not team_id:
            team = await ctx.client.find_team_by_name(self.team_name)
            if team is None:
                return TeamMembersResult(found=False)
            team_id = team.id

        members = await ctx.client.get_team_members(team_id)
        return TeamMembersResult(
            team_id=team_id,
            found=True,
            members=[
                MemberInfo(email=m.email, display_name=m.display_name, role=m.role)
                for m in members
            ],
        )


class UpdateUserTeams(BaseModel):
    """Add a user to some teams and remove them from others."""

    action: Literal["update_user_teams"] = "update_user_teams"
    email: str = Field(min_length=3)
    add: list[str] = Field(default_factory=list)
    remove: list[str] = Field(default_factory=list)

    async def execute(self, ctx: CommandContext) -> MembershipChangeResult:
        user = await ctx.client.find_user(self.email)
        if user is None:
            return MembershipChangeResult(email=self.email, found=False)

        added = await self._apply(
            [partial(ctx.client.add_member, team_id, user.id) for team_id in self.add],
            self.add,
            "add",
        )
        removed = await self._apply(
            [partial(ctx.client.remove_member, team_id, user.id) for team_id in self.remove],
            self.remove,
            "remove",
        )
        return MembershipChangeResult(email=self.email, found=True, add=added, remove=removed)

    async def _apply(self, units: list, team_ids: list[str], operation: str) -> ChangeOutcome:
        outcome = ChangeOutcome()
        results = await run_bounded(units, MEMBERSHIP_CONCURRENCY)
        for team_id, result in zip(team_ids, results):
            if isinstance(result, Rejected):
                if isinstance(result.error, CredentialError):
                    raise result.error
                logger.error(
                    "Membership change failed",
                    operation=operation,
                    team_id=team_id,
                    email=self.email,
                    error=str(result.error),
                )
                outcome.failed.append(team_id)
            else:
                outcome.success.append(team_id)
        return outcome


class ComputeTeamStats(BaseModel):
    """Live message statistics for one team."""

    action: Literal["compute_team_stats"] = "compute_team_stats"
    team_id: str = Field(min_length=1)

    async def execute(self, ctx: CommandContext) -> TeamMessageStats:
        return await ctx.aggregator.compute(self.team_id)


class TeamCreationResult(BaseModel):
    name: str
    description: str
    created: bool
    team_id: str | None = None
    photo_set: bool = False
    owners_added: list[str] = Field(default_factory=list)
    owners_failed: list[str] = Field(default_factory=list)


class CreateTeam(BaseModel):
    """Create a public team owned by the tenant's admin accounts.

    The primary owner is attached at creation; the photo and the remaining
    owners are applied after the provisioning delay, and their failures are
    reported rather than raised.
    """

    action: Literal["create_team"] = "create_team"
    name: str = Field(min_length=1)
    description: str = ""

    def _primary_owner(self, owners: list[GraphUser]) -> GraphUser:
        prefix = settings.team_primary_owner_mail_prefix.lower()
        for owner in owners:
            if (owner.mail or "").lower().startswith(prefix):
                return owner
        return owners[0]

    async def execute(self, ctx: CommandContext) -> TeamCreationResult:
        owners = await ctx.client.find_owner_candidates()
        if not owners:
            logger.error("No team owners found", name=self.name)
            return TeamCreationResult(name=self.name, description=self.description, created=False)

        primary = self._primary_owner(owners)
        team_id = await ctx.client.create_team(self.name, self.description, primary.id)
        logger.info("Team created", name=self.name, team_id=team_id)
        result = TeamCreationResult(
            name=self.name, description=self.description, created=True, team_id=team_id
        )

        # The new group is not addressable until provisioning catches up
        await ctx.sleep(settings.team_provisioning_delay_seconds)

        if settings.team_photo_path:
            try:
                await ctx.client.set_team_photo(team_id, Path(settings.team_photo_path).read_bytes())
                result.photo_set = True
            except CredentialError:
                raise
            except (GraphError, OSError) as e:
                logger.warning("Failed to set team photo", team_id=team_id, error=str(e))

        remaining = [owner.id for owner in owners if owner.id != primary.id]
        if remaining:
            try:
                await ctx.client.add_team_members(team_id, remaining, role="owner")
                result.owners_added = remaining
            except CredentialError:
                raise
            except GraphError as e:
                logger.error("Failed to add team owners", team_id=team_id, error=str(e))
                result.owners_failed = remaining

        return result


class TeamDirectoryEntry(BaseModel):
    team_id: str
    name: str
    description: str = ""
    created_at: datetime | None = None
    web_url: str | None = None
    member_count: int = 0
    guest_count: int = 0


class TeamDirectoryResult(BaseModel):
    teams: list[TeamDirectoryEntry] = Field(default_factory=list)
    partial: bool = False


class ListTeams(BaseModel):
    """Public teams matching the filters, with member and guest counts."""

    action: Literal["list_teams"] = "list_teams"
    name_filter: str = ""
    description_filter: str = ""

    def matches(self, team: TeamSummary) -> bool:
        if team.visibility is not None and team.visibility.lower() != "public":
            return False
        if self.name_filter.lower() not in (team.display_name or "").lower():
            return False
        return self.description_filter.lower() in (team.description or "").lower()

    async def execute(self, ctx: CommandContext) -> TeamDirectoryResult:
        teams = [team for team in await ctx.client.list_teams() if self.matches(team)]
        outcomes = await run_bounded(
            [partial(ctx.client.get_team, team.id) for team in teams],
            MEMBERSHIP_CONCURRENCY,
        )

        result = TeamDirectoryResult()
        for team, outcome in zip(teams, outcomes):
            if isinstance(outcome, Rejected):
                if isinstance(outcome.error, CredentialError):
                    raise outcome.error
                logger.warning("Team details unavailable", team_id=team.id, error=str(outcome.error))
                result.partial = True
                continue

            details = outcome.value
            counts = details.summary or TeamMemberCounts()
            result.teams.append(
                TeamDirectoryEntry(
                    team_id=team.id,
                    name=details.display_name or team.display_name or "",
                    description=details.description or "",
                    created_at=details.created_at,
                    web_url=details.web_url,
                    member_count=counts.members_count + counts.guests_count,
                    guest_count=counts.guests_count,
                )
            )
        return result


Command = Annotated[
    Union[GetUserTeams, GetTeamMembers, UpdateUserTeams, ComputeTeamStats, CreateTeam, ListTeams],
    Field(discriminator="action"),
]

_command_adapter = TypeAdapter(Command)


def decode_command(payload: Any) -> Command:
    """Decode a request body into one command variant."""
    try:
        return _command_adapter.validate_python(payload)
    except ValidationError as e:
        raise InputValidationError(f"Invalid command: {e}") from e
