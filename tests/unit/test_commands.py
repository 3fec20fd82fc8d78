"""Unit tests for proxy commands."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import NOW
from teams_proxy.commands import (
    CommandContext,
    ComputeTeamStats,
    CreateTeam,
    GetTeamMembers,
    GetUserTeams,
    ListTeams,
    UpdateUserTeams,
    decode_command,
)
from teams_proxy.config import settings
from teams_proxy.graph.errors import CredentialError, InputValidationError, NonRetryableStatusError
from teams_proxy.graph.schemas import GraphUser, JoinedTeam, TeamMember, TeamMemberCounts, TeamSummary
from teams_proxy.stats.schemas import TeamMessageStats


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.find_user = AsyncMock(return_value=GraphUser(id="u1", mail="pat@example.com"))
    client.get_joined_teams = AsyncMock(return_value=[JoinedTeam(id="t1", display_name="Ops")])
    client.find_team_by_name = AsyncMock(return_value=TeamSummary(id="t9", display_name="Ops"))
    client.get_team_members = AsyncMock(return_value=[
        TeamMember(email="a@example.com", display_name="A", roles=["owner"]),
        TeamMember(email="b@example.com", display_name="B"),
    ])
    client.add_member = AsyncMock(return_value=None)
    client.remove_member = AsyncMock(return_value=None)
    return client


@pytest.fixture
def mock_aggregator():
    aggregator = MagicMock()
    aggregator.compute = AsyncMock(
        return_value=TeamMessageStats(team_id="t1", total_count=3, recent_count=1, computed_at=NOW)
    )
    return aggregator


@pytest.fixture
def ctx(mock_client, mock_aggregator, fake_sleep):
    return CommandContext(client=mock_client, aggregator=mock_aggregator, sleep=fake_sleep)


class TestDecodeCommand:
    """Tests for decoding request bodies into command variants."""

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"action": "get_user_teams", "email": "pat@example.com"}, GetUserTeams),
            ({"action": "get_team_members", "team_name": "Ops"}, GetTeamMembers),
            ({"action": "update_user_teams", "email": "pat@example.com", "add": ["t1"]}, UpdateUserTeams),
            ({"action": "compute_team_stats", "team_id": "t1"}, ComputeTeamStats),
            ({"action": "create_team", "name": "Ops"}, CreateTeam),
            ({"action": "list_teams", "name_filter": "ops"}, ListTeams),
        ],
    )
    def test_decodes_each_variant(self, payload, expected):
        assert isinstance(decode_command(payload), expected)

    @pytest.mark.parametrize(
        "payload",
        [
            {"action": "delete_everything"},
            {"email": "pat@example.com"},
            {"action": "get_user_teams"},
            {"action": "get_team_members"},
            {"action": "compute_team_stats", "team_id": ""},
            {"action": "create_team", "name": ""},
            "not an object",
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(InputValidationError):
            decode_command(payload)


class TestGetUserTeams:
    @pytest.mark.asyncio
    async def test_returns_joined_teams(self, ctx, mock_client):
        result = await GetUserTeams(email="pat@example.com").execute(ctx)

        assert result.found is True
        assert [t.id for t in result.teams] == ["t1"]
        mock_client.get_joined_teams.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_unknown_user(self, ctx, mock_client):
        mock_client.find_user.return_value = None

        result = await GetUserTeams(email="ghost@example.com").execute(ctx)

        assert result.found is False
        assert result.teams == []
        mock_client.get_joined_teams.assert_not_awaited()


class TestGetTeamMembers:
    @pytest.mark.asyncio
    async def test_by_id(self, ctx, mock_client):
        result = await GetTeamMembers(team_id="t1").execute(ctx)

        assert result.team_id == "t1"
        assert [m.role for m in result.members] == ["owner", "unknown"]
        mock_client.find_team_by_name.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_by_name(self, ctx, mock_client):
        result = await GetTeamMembers(team_name="Ops").execute(ctx)

        assert result.team_id == "t9"
        mock_client.get_team_members.assert_awaited_once_with("t9")

    @pytest.mark.asyncio
    async def test_unknown_name(self, ctx, mock_client):
        mock_client.find_team_by_name.return_value = None

        result = await GetTeamMembers(team_name="Nope").execute(ctx)

        assert result.found is False
        mock_client.get_team_members.assert_not_awaited()


class TestUpdateUserTeams:
    @pytest.mark.asyncio
    async def test_reports_each_change(self, ctx, mock_client):
        async def add_member(team_id, user_id):
            if team_id == "t2":
                raise NonRetryableStatusError("forbidden", status=403)

        mock_client.add_member.side_effect = add_member

        result = await UpdateUserTeams(
            email="pat@example.com", add=["t1", "t2", "t3"], remove=["t4"]
        ).execute(ctx)

        assert result.found is True
        assert result.add.success == ["t1", "t3"]
        assert result.add.failed == ["t2"]
        assert result.remove.success == ["t4"]
        mock_client.remove_member.assert_awaited_once_with("t4", "u1")

    @pytest.mark.asyncio
    async def test_credential_error_propagates(self, ctx, mock_client):
        mock_client.remove_member.side_effect = CredentialError("expired", status=401)

        with pytest.raises(CredentialError):
            await UpdateUserTeams(email="pat@example.com", remove=["t1"]).execute(ctx)

    @pytest.mark.asyncio
    async def test_unknown_user_changes_nothing(self, ctx, mock_client):
        mock_client.find_user.return_value = None

        result = await UpdateUserTeams(email="ghost@example.com", add=["t1"]).execute(ctx)

        assert result.found is False
        mock_client.add_member.assert_not_awaited()


class TestComputeTeamStats:
    @pytest.mark.asyncio
    async def test_delegates_to_aggregator(self, ctx, mock_aggregator):
        result = await ComputeTeamStats(team_id="t1").execute(ctx)

        assert result.total_count == 3
        mock_aggregator.compute.assert_awaited_once_with("t1")


@pytest.fixture
def owners():
    return [
        GraphUser(id="o1", mail="admin_ops@example.com"),
        GraphUser(id="o2", mail="ADMIN_AC@example.com"),
        GraphUser(id="o3", mail="admin_it@example.com"),
    ]


class TestCreateTeam:
    @pytest.fixture(autouse=True)
    def creation_calls(self, mock_client, owners):
        mock_client.find_owner_candidates = AsyncMock(return_value=owners)
        mock_client.create_team = AsyncMock(return_value="team-42")
        mock_client.set_team_photo = AsyncMock(return_value=None)
        mock_client.add_team_members = AsyncMock(return_value=None)

    @pytest.mark.asyncio
    async def test_primary_owner_then_remaining_owners(self, ctx, mock_client, sleeps):
        with patch.object(settings, "team_photo_path", None):
            result = await CreateTeam(name="Ops", description="Operations").execute(ctx)

        assert result.created is True
        assert result.team_id == "team-42"
        mock_client.create_team.assert_awaited_once_with("Ops", "Operations", "o2")
        mock_client.add_team_members.assert_awaited_once_with("team-42", ["o1", "o3"], role="owner")
        assert result.owners_added == ["o1", "o3"]
        assert sleeps == [settings.team_provisioning_delay_seconds]
        mock_client.set_team_photo.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_owners_creates_nothing(self, ctx, mock_client):
        mock_client.find_owner_candidates.return_value = []

        result = await CreateTeam(name="Ops").execute(ctx)

        assert result.created is False
        mock_client.create_team.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_uploads_configured_photo(self, ctx, mock_client, tmp_path):
        photo = tmp_path / "team.png"
        photo.write_bytes(b"\x89PNG")

        with patch.object(settings, "team_photo_path", str(photo)):
            result = await CreateTeam(name="Ops").execute(ctx)

        assert result.photo_set is True
        mock_client.set_team_photo.assert_awaited_once_with("team-42", b"\x89PNG")

    @pytest.mark.asyncio
    async def test_photo_failure_is_tolerated(self, ctx, mock_client, tmp_path):
        photo = tmp_path / "team.png"
        photo.write_bytes(b"\x89PNG")
        mock_client.set_team_photo.side_effect = NonRetryableStatusError("not ready", status=404)

        with patch.object(settings, "team_photo_path", str(photo)):
            result = await CreateTeam(name="Ops").execute(ctx)

        assert result.created is True
        assert result.photo_set is False
        assert result.owners_added == ["o1", "o3"]

    @pytest.mark.asyncio
    async def test_failed_owner_add_is_reported(self, ctx, mock_client):
        mock_client.add_team_members.side_effect = NonRetryableStatusError("forbidden", status=403)

        with patch.object(settings, "team_photo_path", None):
            result = await CreateTeam(name="Ops").execute(ctx)

        assert result.created is True
        assert result.owners_added == []
        assert result.owners_failed == ["o1", "o3"]

    @pytest.mark.asyncio
    async def test_first_owner_is_primary_without_preferred_prefix(self, ctx, mock_client):
        mock_client.find_owner_candidates.return_value = [
            GraphUser(id="o5", mail="admin_hr@example.com"),
            GraphUser(id="o6", mail=None),
        ]

        with patch.object(settings, "team_photo_path", None):
            await CreateTeam(name="Ops").execute(ctx)

        mock_client.create_team.assert_awaited_once_with("Ops", "", "o5")
        mock_client.add_team_members.assert_awaited_once_with("team-42", ["o6"], role="owner")


def team_details(team_id: str, name: str, members: int, guests: int) -> TeamSummary:
    return TeamSummary(
        id=team_id,
        display_name=name,
        description=f"{name} team",
        web_url=f"https://teams.test/{team_id}",
        summary=TeamMemberCounts(owners_count=1, members_count=members, guests_count=guests),
    )


class TestListTeams:
    @pytest.fixture(autouse=True)
    def directory_calls(self, mock_client):
        mock_client.list_teams = AsyncMock(return_value=[
            TeamSummary(id="t1", display_name="Ops Europe", description="Operations", visibility="public"),
            TeamSummary(id="t2", display_name="Ops US", description="Operations"),
            TeamSummary(id="t3", display_name="Ops Private", description="Operations", visibility="private"),
            TeamSummary(id="t4", display_name="Finance", description="Money"),
        ])
        details = {
            "t1": team_details("t1", "Ops Europe", members=10, guests=2),
            "t2": team_details("t2", "Ops US", members=4, guests=0),
            "t4": team_details("t4", "Finance", members=3, guests=1),
        }

        async def get_team(team_id):
            return details[team_id]

        mock_client.get_team = AsyncMock(side_effect=get_team)

    @pytest.mark.asyncio
    async def test_lists_public_teams_with_counts(self, ctx):
        result = await ListTeams().execute(ctx)

        assert [t.team_id for t in result.teams] == ["t1", "t2", "t4"]
        assert result.teams[0].member_count == 12
        assert result.teams[0].guest_count == 2
        assert result.teams[0].web_url == "https://teams.test/t1"
        assert result.partial is False

    @pytest.mark.asyncio
    async def test_filters_ignore_case(self, ctx, mock_client):
        result = await ListTeams(name_filter="OPS", description_filter="operat").execute(ctx)

        assert [t.team_id for t in result.teams] == ["t1", "t2"]
        assert mock_client.get_team.await_count == 2

    @pytest.mark.asyncio
    async def test_unreadable_team_is_skipped(self, ctx, mock_client):
        async def get_team(team_id):
            if team_id == "t2":
                raise NonRetryableStatusError("forbidden", status=403)
            return team_details(team_id, team_id, members=1, guests=0)

        mock_client.get_team.side_effect = get_team

        result = await ListTeams().execute(ctx)

        assert [t.team_id for t in result.teams] == ["t1", "t4"]
        assert result.partial is True

    @pytest.mark.asyncio
    async def test_credential_error_propagates(self, ctx, mock_client):
        mock_client.get_team.side_effect = CredentialError("expired", status=401)

        with pytest.raises(CredentialError):
            await ListTeams().execute(ctx)
