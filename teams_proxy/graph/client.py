"""Microsoft Graph API client.

Every outbound call goes through ``fetch_with_retry`` and every response body
is decoded into a typed record before it leaves this module.
"""

import asyncio
import re
from typing import Any, AsyncIterator, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from teams_proxy.config import settings
from teams_proxy.graph.auth import TokenProvider, token_provider_from_settings
from teams_proxy.graph.budget import RequestBudget
from teams_proxy.graph.errors import InputValidationError, ResponseDecodeError
from teams_proxy.graph.retry import GraphRequest, RetryPolicy, Sleeper, fetch_with_retry
from teams_proxy.graph.schemas import (
    Channel,
    ChatMessage,
    GraphPage,
    GraphUser,
    JoinedTeam,
    TeamMember,
    TeamSummary,
)

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

_TEAM_LOCATION_RE = re.compile(r"teams\('([^']+)'\)")


def _odata_quote(value: str) -> str:
    """Escape a value for use inside an OData string literal."""
    return value.replace("'", "''")


def _team_id_from_location(location: str) -> str | None:
    """Extract the team id from a Location like ``/teams('id')/operations('op')``."""
    match = _TEAM_LOCATION_RE.search(location)
    return match.group(1) if match else None


class GraphClient:
    """Async client for the subset of Graph used by the proxy."""

    def __init__(
        self,
        token_provider: TokenProvider | None = None,
        policy: RetryPolicy | None = None,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        page_size: int | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.graph_base_url).rstrip("/")
        self.policy = policy or RetryPolicy.from_settings()
        self.page_size = page_size or settings.stats_page_size
        self._token_provider = token_provider
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    async def connect(self) -> None:
        """Create the HTTP client and resolve the token provider."""
        if self._token_provider is None:
            self._token_provider = token_provider_from_settings()
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.policy.timeout_ms / 1000,
            )
            self._owns_client = True
        logger.info("Graph client connected", base_url=self.base_url)

    async def disconnect(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the underlying HTTP client."""
        if not self._client:
            raise RuntimeError("Graph client not initialized. Call connect() first.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._token_provider is not None

    def _url(self, path_or_url: str) -> str:
        # Continuation cursors are absolute URLs and are used verbatim
        if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    async def request(
        self,
        method: str,
        path_or_url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        budget: RequestBudget | None = None,
    ) -> httpx.Response:
        """Send an authenticated request under the retry policy."""
        if self._token_provider is None:
            raise RuntimeError("Graph client not initialized. Call connect() first.")

        token = await self._token_provider.get_token()
        request_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            request_headers.update(headers)

        return await fetch_with_retry(
            self.client,
            GraphRequest(
                method=method,
                url=self._url(path_or_url),
                headers=request_headers,
                params=params,
                json=json,
                content=content,
            ),
            self.policy,
            budget=budget,
            sleep=self._sleep,
        )

    @staticmethod
    def _decode(model: type[ModelT], response: httpx.Response) -> ModelT:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ResponseDecodeError(
                f"Unexpected response shape for {model.__name__}: {e}",
                status=response.status_code,
                body=response.text[:500],
            ) from e

    async def get_page(
        self,
        item_model: type[ModelT],
        path: str,
        cursor: str | None = None,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        budget: RequestBudget | None = None,
    ) -> GraphPage[ModelT]:
        """Fetch one page; ``cursor`` replaces ``path`` and ``params`` when set."""
        if cursor:
            response = await self.request("GET", cursor, headers=headers, budget=budget)
        else:
            response = await self.request("GET", path, params=params, headers=headers, budget=budget)
        return self._decode(GraphPage[item_model], response)

    async def iter_pages(
        self,
        item_model: type[ModelT],
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        budget: RequestBudget | None = None,
    ) -> AsyncIterator[GraphPage[ModelT]]:
        """Yield pages in cursor order until no continuation remains."""
        cursor: str | None = None
        while True:
            page = await self.get_page(
                item_model, path, cursor, params=params, headers=headers, budget=budget
            )
            yield page
            cursor = page.next_cursor
            if not cursor:
                return

    async def list_all(
        self,
        item_model: type[ModelT],
        path: str,
        **kwargs: Any,
    ) -> list[ModelT]:
        """Collect every item of a paginated collection."""
        items: list[ModelT] = []
        async for page in self.iter_pages(item_model, path, **kwargs):
            items.extend(page.items)
        return items

    # Message statistics

    async def list_channels(
        self, team_id: str, budget: RequestBudget | None = None
    ) -> list[Channel]:
        """List every channel of a team."""
        return await self.list_all(
            Channel,
            f"/teams/{team_id}/channels",
            params={"$select": "id,displayName"},
            budget=budget,
        )

    async def get_messages_page(
        self,
        team_id: str,
        channel_id: str,
        cursor: str | None = None,
        budget: RequestBudget | None = None,
    ) -> GraphPage[ChatMessage]:
        """Fetch one page of top-level channel messages."""
        return await self.get_page(
            ChatMessage,
            f"/teams/{team_id}/channels/{channel_id}/messages",
            cursor,
            params={"$top": self.page_size},
            budget=budget,
        )

    async def get_replies_page(
        self,
        team_id: str,
        channel_id: str,
        message_id: str,
        cursor: str | None = None,
        budget: RequestBudget | None = None,
    ) -> GraphPage[ChatMessage]:
        """Fetch one page of replies to a channel message."""
        return await self.get_page(
            ChatMessage,
            f"/teams/{team_id}/channels/{channel_id}/messages/{message_id}/replies",
            cursor,
            params={"$top": self.page_size},
            budget=budget,
        )

    async def list_teams(self) -> list[TeamSummary]:
        """List every team in the tenant."""
        return await self.list_all(TeamSummary, "/teams")

    # Users and membership

    def is_allowed_email(self, email: str) -> bool:
        """Only addresses in configured domains may be looked up."""
        lowered = email.lower()
        return any(lowered.endswith(f"@{domain.lower()}") for domain in settings.allowed_user_domains)

    async def find_user(self, email: str) -> GraphUser | None:
        """Look a user up by mail address."""
        if not email:
            raise InputValidationError("email is required")
        if not self.is_allowed_email(email):
            logger.info("User lookup outside allowed domains", email=email)
            return None

        page = await self.get_page(
            GraphUser,
            "/users",
            params={
                "$filter": f"endsWith(mail,'{_odata_quote(email)}')",
                "$select": "id,mail,displayName",
                "$count": "true",
            },
            headers={"ConsistencyLevel": "eventual"},
        )
        return page.items[0] if page.items else None

    async def get_joined_teams(self, user_id: str) -> list[JoinedTeam]:
        return await self.list_all(JoinedTeam, f"/users/{user_id}/joinedTeams")

    async def find_team_by_name(self, name: str) -> TeamSummary | None:
        page = await self.get_page(
            TeamSummary,
            "/groups",
            params={
                "$filter": f"(displayName eq '{_odata_quote(name)}')",
                "$select": "id,displayName,createdDateTime",
            },
            headers={"ConsistencyLevel": "eventual"},
        )
        return page.items[0] if page.items else None

    async def get_team(self, team_id: str) -> TeamSummary:
        response = await self.request("GET", f"/teams/{team_id}")
        return self._decode(TeamSummary, response)

    async def get_team_members(self, team_id: str) -> list[TeamMember]:
        return await self.list_all(TeamMember, f"/teams/{team_id}/members")

    async def add_member(self, team_id: str, user_id: str) -> None:
        """Add a directory user to the team's backing group."""
        await self.request(
            "POST",
            f"/groups/{team_id}/members/$ref",
            json={"@odata.id": f"{self.base_url}/directoryObjects/{user_id}"},
        )

    async def remove_member(self, team_id: str, user_id: str) -> None:
        """Remove a directory user from the team's backing group."""
        await self.request("DELETE", f"/groups/{team_id}/members/{user_id}/$ref")

    # Team creation

    def _user_bind(self, user_id: str) -> str:
        return f"{self.base_url}/users('{user_id}')"

    async def find_owner_candidates(self) -> list[GraphUser]:
        """Directory users whose mail carries the configured owner prefix."""
        return await self.list_all(
            GraphUser,
            "/users",
            params={
                "$filter": f"startsWith(mail,'{_odata_quote(settings.team_owner_mail_prefix)}')",
                "$select": "id,mail,displayName",
                "$count": "true",
            },
            headers={"ConsistencyLevel": "eventual"},
        )

    async def create_team(self, display_name: str, description: str, owner_id: str) -> str:
        """Create a public team from the standard template and return its id.

        Graph accepts a single member in the creation request; further owners
        are added once the team is provisioned.
        """
        response = await self.request(
            "POST",
            "/teams",
            json={
                "template@odata.bind": f"{self.base_url}/teamsTemplates('standard')",
                "visibility": "public",
                "displayName": display_name,
                "description": description,
                "guestSettings": {"allowCreateUpdateChannels": True},
                "members": [
                    {
                        "@odata.type": "#microsoft.graph.aadUserConversationMember",
                        "roles": ["owner"],
                        "user@odata.bind": self._user_bind(owner_id),
                    }
                ],
            },
        )
        location = response.headers.get("Location") or response.headers.get("Content-Location") or ""
        team_id = _team_id_from_location(location)
        if not team_id:
            raise ResponseDecodeError(
                "Team creation response carried no team location",
                status=response.status_code,
                body=location,
            )
        return team_id

    async def set_team_photo(self, team_id: str, photo: bytes, content_type: str = "image/png") -> None:
        await self.request(
            "PUT",
            f"/groups/{team_id}/photo/$value",
            content=photo,
            headers={"Content-Type": content_type},
        )

    async def add_team_members(self, team_id: str, user_ids: list[str], role: str = "owner") -> None:
        """Add several users to a team in one request."""
        if not user_ids:
            return
        await self.request(
            "POST",
            f"/teams/{team_id}/members/add",
            json={
                "values": [
                    {
                        "@odata.type": "microsoft.graph.aadUserConversationMember",
                        "roles": [role] if role else [],
                        "user@odata.bind": self._user_bind(user_id),
                    }
                    for user_id in user_ids
                ]
            },
        )


# Singleton instance
graph_client = GraphClient()
