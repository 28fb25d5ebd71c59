"""OAuth token refresh."""

from __future__ import annotations

from datetime import timedelta
from typing import Mapping, Protocol

import requests

from localdex.core.config import OAuthClientSettings
from localdex.core.errors import TokenRefreshFailedError
from localdex.core.logging import get_logger
from localdex.models.entities import Credentials, OAuthCredentials, Source
from localdex.utils.time import utc_now

logger = get_logger(__name__)


class TokenRefresher(Protocol):
    def refresh(self, credentials: Credentials, source: Source) -> OAuthCredentials: ...


class OAuthTokenRefresher:
    """Exchanges refresh tokens at the token endpoint configured per connector type."""

    def __init__(
        self,
        clients: Mapping[str, OAuthClientSettings],
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.clients = dict(clients)
        self.timeout = timeout
        self._session = session or requests.Session()

    def refresh(self, credentials: Credentials, source: Source) -> OAuthCredentials:
        current = credentials.oauth
        if current is None or not current.refresh_token:
            raise TokenRefreshFailedError(f"credentials {credentials.id} have no refresh token")
        client = self.clients.get(source.type)
        if client is None:
            raise TokenRefreshFailedError(f"no OAuth client configured for {source.type}")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": current.refresh_token,
            "client_id": client.client_id,
        }
        if client.client_secret:
            data["client_secret"] = client.client_secret
        try:
            response = self._session.post(
                client.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TokenRefreshFailedError(f"token request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code != 200:
            error = payload.get("error") if isinstance(payload, dict) else None
            if error:
                description = payload.get("error_description", "")
                raise TokenRefreshFailedError(f"token error: {error} - {description}".rstrip(" -"))
            raise TokenRefreshFailedError(f"token request failed with status {response.status_code}")
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenRefreshFailedError("token response carries no access_token")

        expiry = None
        expires_in = payload.get("expires_in")
        if expires_in:
            try:
                expiry = utc_now() + timedelta(seconds=float(expires_in))
            except (TypeError, ValueError, OverflowError) as exc:
                raise TokenRefreshFailedError(f"token response has invalid expires_in {expires_in!r}") from exc
        logger.debug("Refreshed OAuth token", extra={"ctx_source_id": source.id})
        return OAuthCredentials(
            access_token=payload["access_token"],
            # providers may omit the refresh token when it is not rotated
            refresh_token=payload.get("refresh_token") or current.refresh_token,
            token_type=payload.get("token_type") or current.token_type,
            expiry=expiry,
        )


__all__ = ["TokenRefresher", "OAuthTokenRefresher"]
