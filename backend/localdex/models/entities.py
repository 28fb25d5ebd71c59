"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from localdex.utils.time import utc_now


@dataclass(slots=True)
class Source:
    id: str
    type: str
    name: str
    config: dict[str, str] = field(default_factory=dict)
    authorization_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def display_name(self, account_identifier: str | None = None) -> str:
        """Source name with the account appended unless the name already mentions it."""
        if account_identifier and account_identifier not in self.name:
            return f"{self.name} - {account_identifier}"
        return self.name


@dataclass(slots=True)
class SyncState:
    source_id: str
    cursor: str
    last_sync: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class Exclusion:
    id: str
    source_id: str
    document_id: str
    uri: str
    reason: str = ""
    excluded_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class Document:
    id: str
    source_id: str
    uri: str
    title: str
    content: str
    parent_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class Chunk:
    id: str
    document_id: str
    content: str
    position: int
    embedding: list[float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class OAuthCredentials:
    access_token: str
    refresh_token: str = ""
    token_type: str = "Bearer"
    expiry: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        return (now or utc_now()) > self.expiry


@dataclass(slots=True)
class PATCredentials:
    token: str


@dataclass(slots=True)
class Credentials:
    """User tokens for one source: either OAuth or a personal access token."""

    id: str
    source_id: str
    account_identifier: str = ""
    oauth: OAuthCredentials | None = None
    pat: PATCredentials | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.oauth is not None and self.pat is not None:
            raise ValueError("credentials hold either OAuth tokens or a PAT, not both")

    def is_authenticated(self) -> bool:
        if self.oauth is not None and self.oauth.access_token:
            return True
        return self.pat is not None and bool(self.pat.token)

    def needs_refresh(self, now: datetime | None = None) -> bool:
        if self.oauth is None:
            return False
        return self.oauth.is_expired(now) and bool(self.oauth.refresh_token)

    def access_token(self) -> str:
        if self.oauth is not None and self.oauth.access_token:
            return self.oauth.access_token
        if self.pat is not None and self.pat.token:
            return self.pat.token
        return ""

    def has_refresh_token(self) -> bool:
        return self.oauth is not None and bool(self.oauth.refresh_token)


class AuthMethod(str, enum.Enum):
    NONE = "none"
    PAT = "pat"
    OAUTH = "oauth"


class AuthCapability(enum.Flag):
    """Authentication methods a connector accepts."""

    NONE = 0
    PAT = enum.auto()
    OAUTH = enum.auto()

    def supports_pat(self) -> bool:
        return bool(self & AuthCapability.PAT)

    def supports_oauth(self) -> bool:
        return bool(self & AuthCapability.OAUTH)

    def supports_multiple_methods(self) -> bool:
        return self.supports_pat() and self.supports_oauth()

    def requires_auth(self) -> bool:
        return self != AuthCapability.NONE

    def supported_methods(self) -> list[AuthMethod]:
        methods: list[AuthMethod] = []
        if self.supports_pat():
            methods.append(AuthMethod.PAT)
        if self.supports_oauth():
            methods.append(AuthMethod.OAUTH)
        return methods

    def __str__(self) -> str:
        if not self.requires_auth():
            return "none"
        return ",".join(method.value for method in self.supported_methods())


@dataclass(slots=True)
class ConfigKey:
    key: str
    label: str
    description: str = ""
    default: str = ""
    required: bool = False
    secret: bool = False


@dataclass(slots=True)
class ConnectorType:
    """Describes a supported connector and the configuration it needs."""

    id: str
    name: str
    description: str = ""
    auth_capability: AuthCapability = AuthCapability.NONE
    config_keys: list[ConfigKey] = field(default_factory=list)

    def requires_auth(self) -> bool:
        return self.auth_capability.requires_auth()


@dataclass(slots=True)
class RawDocument:
    """Bytes fetched by a connector, before normalisation."""

    source_id: str
    uri: str
    mime_type: str = "text/plain"
    content: bytes = b""
    parent_uri: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ChangeType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(slots=True)
class RawDocumentChange:
    """A change event; ``cursor`` is the resume token once this change is applied."""

    type: ChangeType
    document: RawDocument
    cursor: str | None = None


@dataclass(slots=True)
class SyncCheckpoint:
    """Advances the cursor without a document change."""

    cursor: str


__all__ = [
    "Source",
    "SyncState",
    "Exclusion",
    "Document",
    "Chunk",
    "OAuthCredentials",
    "PATCredentials",
    "Credentials",
    "AuthMethod",
    "AuthCapability",
    "ConfigKey",
    "ConnectorType",
    "RawDocument",
    "ChangeType",
    "RawDocumentChange",
    "SyncCheckpoint",
]
