"""Typed Microsoft Graph response records."""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

ItemT = TypeVar("ItemT")


class GraphModel(BaseModel):
    """Base for Graph records: camelCase aliases, unknown fields ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GraphPage(GraphModel, Generic[ItemT]):
    """One page of a Graph collection."""

    items: list[ItemT] = Field(alias="value")
    next_cursor: str | None = Field(default=None, alias="@odata.nextLink")


class Identity(GraphModel):
    """User or application identity."""

    id: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")


class IdentitySet(GraphModel):
    """Sender of a chat message. Exactly one member is usually set."""

    user: Identity | None = None
    application: Identity | None = None
    device: Identity | None = None


class ItemBody(GraphModel):
    """Message body with its content type."""

    content_type: str = Field(default="text", alias="contentType")
    content: str | None = None


class Channel(GraphModel):
    """Team channel."""

    id: str
    display_name: str = Field(alias="displayName")


class ChatMessage(GraphModel):
    """Top-level channel message or a reply to one."""

    id: str
    created_at: datetime = Field(alias="createdDateTime")
    last_modified_at: datetime | None = Field(default=None, alias="lastModifiedDateTime")
    sender: IdentitySet | None = Field(default=None, alias="from")
    body: ItemBody | None = None
    message_type: str | None = Field(default=None, alias="messageType")

    @property
    def author_is_human(self) -> bool:
        """True only when a person account sent the message."""
        return self.sender is not None and self.sender.user is not None

    @property
    def effective_timestamp(self) -> datetime:
        return self.last_modified_at or self.created_at

    @property
    def body_text(self) -> str:
        if self.body is None or self.body.content is None:
            return ""
        return self.body.content


class GraphUser(GraphModel):
    """Directory user."""

    id: str
    mail: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")


class JoinedTeam(GraphModel):
    """Team a user belongs to."""

    id: str
    display_name: str | None = Field(default=None, alias="displayName")
    description: str | None = None


class TeamMember(GraphModel):
    """Conversation member of a team."""

    id: str | None = None
    email: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    roles: list[str] = Field(default_factory=list)

    @property
    def role(self) -> str:
        return self.roles[0] if self.roles else "unknown"


class TeamMemberCounts(GraphModel):
    """Membership summary Graph embeds in a team."""

    owners_count: int = Field(default=0, alias="ownersCount")
    members_count: int = Field(default=0, alias="membersCount")
    guests_count: int = Field(default=0, alias="guestsCount")


class TeamSummary(GraphModel):
    """Team or group entry from a listing, or a single team's details."""

    id: str
    display_name: str | None = Field(default=None, alias="displayName")
    description: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdDateTime")
    visibility: str | None = None
    web_url: str | None = Field(default=None, alias="webUrl")
    summary: TeamMemberCounts | None = None
