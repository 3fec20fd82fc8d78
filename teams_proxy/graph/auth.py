"""Bearer token providers for Microsoft Graph."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import httpx
import structlog

from teams_proxy.config import settings
from teams_proxy.graph.errors import CredentialError

logger = structlog.get_logger()


class TokenProvider(ABC):
    """Supplies the bearer token attached to every Graph request."""

    @abstractmethod
    async def get_token(self) -> str:
        """Return a currently valid access token."""
        pass


class StaticTokenProvider(TokenProvider):
    """Hands out a pre-issued token unchanged."""

    def __init__(self, token: str):
        if not token:
            raise CredentialError("No bearer token configured")
        self._token = token

    async def get_token(self) -> str:
        return self._token


class ClientCredentialsTokenProvider(TokenProvider):
    """OAuth2 client-credentials flow with an in-memory cached token.

    The token is refreshed ``expiry_skew`` before it actually expires.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str,
        http_client: httpx.AsyncClient | None = None,
        expiry_skew: timedelta = timedelta(minutes=5),
    ):
        if not (token_url and client_id and client_secret):
            raise CredentialError("Client credentials are not configured")
        self.token_url = token_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.scope = scope
        self._http = http_client
        self._expiry_skew = expiry_skew
        self._token: str | None = None
        self._expires_at: datetime | None = None
        self._lock = asyncio.Lock()

    def _is_valid(self) -> bool:
        return (
            self._token is not None
            and self._expires_at is not None
            and datetime.now(timezone.utc) < self._expires_at
        )

    async def get_token(self) -> str:
        async with self._lock:
            if not self._is_valid():
                await self._refresh()
            return self._token

    async def _refresh(self) -> None:
        data = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
            "scope": self.scope,
        }
        if self._http is not None:
            response = await self._http.post(self.token_url, data=data)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(self.token_url, data=data)

        if response.status_code != 200:
            logger.error("Token acquisition failed", status=response.status_code)
            raise CredentialError(
                "Token acquisition failed",
                status=response.status_code,
                body=response.text,
            )

        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise CredentialError("Token response did not contain access_token")

        expires_in = int(payload.get("expires_in", 3600))
        self._token = token
        self._expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in) - self._expiry_skew
        logger.info("Graph token acquired", expires_in=expires_in)


def token_provider_from_settings() -> TokenProvider:
    """Build the provider configured by environment."""
    static_token = settings.graph_static_token.get_secret_value()
    if static_token:
        return StaticTokenProvider(static_token)
    return ClientCredentialsTokenProvider(
        token_url=settings.graph_token_url,
        client_id=settings.graph_client_id,
        client_secret=settings.graph_client_secret.get_secret_value(),
        scope=settings.graph_scope,
        expiry_skew=timedelta(seconds=settings.graph_token_expiry_skew_seconds),
    )
