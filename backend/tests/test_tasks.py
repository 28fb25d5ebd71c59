"""Tests for the built-in scheduled tasks and token refresh."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest
import requests

from helpers import Harness, change
from localdex.auth.refresh import OAuthTokenRefresher
from localdex.core.config import OAuthClientSettings
from localdex.core.errors import TaskFailedError, TokenRefreshFailedError
from localdex.models.entities import Credentials, OAuthCredentials, Source
from localdex.scheduler import DocumentSyncTask, OAuthRefreshTask
from localdex.utils.time import utc_now


def _oauth(source_id: str, refresh_token: str = "r-1", expired: bool = True) -> Credentials:
    delta = timedelta(minutes=-5) if expired else timedelta(hours=1)
    return Credentials(
        id=f"cred-{source_id}",
        source_id=source_id,
        oauth=OAuthCredentials(access_token="old", refresh_token=refresh_token, expiry=utc_now() + delta),
    )


class FakeRefresher:
    def __init__(self, failing: set[str], crashing: set[str] | None = None) -> None:
        self.failing = failing
        self.crashing = crashing or set()
        self.seen: list[str] = []

    def refresh(self, credentials: Credentials, source: Source) -> OAuthCredentials:
        self.seen.append(source.id)
        if source.id in self.failing:
            raise TokenRefreshFailedError("invalid_grant")
        if source.id in self.crashing:
            raise ValueError("invalid literal for int()")
        return OAuthCredentials(access_token=f"new-{source.id}", refresh_token="r-2", expiry=utc_now() + timedelta(hours=1))


class FakeResponse:
    def __init__(self, status_code: int, payload: object) -> None:
        self.status_code = status_code
        self.payload = payload

    def json(self) -> object:
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse | Exception) -> None:
        self.response = response
        self.calls: list[dict] = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_oauth_refresh_task_counts_partial_failures(stores) -> None:
    for source_id in ("good", "bad", "fresh"):
        stores.sources.save(Source(id=source_id, type="drive", name=source_id))
    stores.credentials.save(_oauth("good"))
    stores.credentials.save(_oauth("bad"))
    stores.credentials.save(_oauth("fresh", expired=False))
    refresher = FakeRefresher(failing={"bad"})
    task = OAuthRefreshTask(stores.credentials, refresher, stores.sources)

    with pytest.raises(TaskFailedError) as info:
        task.run(threading.Event())

    assert info.value.items_processed == 1
    assert str(info.value).startswith("1 of 2 token refreshes failed")
    assert sorted(refresher.seen) == ["bad", "good"]
    assert stores.credentials.get_by_source("good").oauth.access_token == "new-good"
    assert stores.credentials.get_by_source("bad").oauth.access_token == "old"


def test_oauth_refresh_task_isolates_unexpected_errors(stores) -> None:
    for source_id in ("a", "b"):
        stores.sources.save(Source(id=source_id, type="drive", name=source_id))
        stores.credentials.save(_oauth(source_id))
    refresher = FakeRefresher(failing=set(), crashing={"a"})

    with pytest.raises(TaskFailedError) as info:
        OAuthRefreshTask(stores.credentials, refresher, stores.sources).run(threading.Event())

    assert sorted(refresher.seen) == ["a", "b"]
    assert "1 of 2 token refreshes failed" in str(info.value)
    assert "ValueError" in str(info.value)
    assert info.value.items_processed == 1
    assert stores.credentials.get_by_source("a").oauth.access_token == "old"
    assert stores.credentials.get_by_source("b").oauth.access_token == "new-b"


def test_cancelled_oauth_refresh_is_not_a_success(stores) -> None:
    stores.sources.save(Source(id="a", type="drive", name="a"))
    stores.credentials.save(_oauth("a"))
    cancel = threading.Event()
    cancel.set()
    refresher = FakeRefresher(failing=set())

    with pytest.raises(TaskFailedError, match="cancelled after 0 of 1"):
        OAuthRefreshTask(stores.credentials, refresher, stores.sources).run(cancel)
    assert refresher.seen == []


def test_oauth_refresh_task_with_nothing_to_do(stores) -> None:
    task = OAuthRefreshTask(stores.credentials, FakeRefresher(failing=set()), stores.sources)
    assert task.run(threading.Event()) == 0


def test_document_sync_task_reports_failing_sources(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.stores.sources.save(Source(id="odd", type="carrier-pigeon", name="odd"))
    harness.script(change("/a.txt", "hello"), change("/b.txt", "world"))
    task = DocumentSyncTask(harness.orchestrator, harness.stores.sources, concurrency=1)

    with pytest.raises(TaskFailedError) as info:
        task.run(threading.Event())

    assert info.value.items_processed == 2
    assert "1 of 2 sources failed" in str(info.value)
    assert len(harness.stores.documents.list_documents("fs-1")) == 2


def test_document_sync_task_success(harness: Harness) -> None:
    harness.add_source("fs-1")
    harness.script(change("/a.txt", "hello"))

    assert DocumentSyncTask(harness.orchestrator, harness.stores.sources).run(threading.Event()) == 1


def test_cancelled_document_sync_is_not_a_success(harness: Harness) -> None:
    harness.add_source("fs-1")
    cancel = threading.Event()
    harness.script(change("/a.txt", "hello"), cancel.set, change("/b.txt", "world"))
    task = DocumentSyncTask(harness.orchestrator, harness.stores.sources, concurrency=1)

    with pytest.raises(TaskFailedError, match="fs-1: cancelled") as info:
        task.run(cancel)

    assert info.value.items_processed == 1
    assert [doc.uri for doc in harness.stores.documents.list_documents("fs-1")] == ["/a.txt"]


CLIENTS = {"drive": OAuthClientSettings(token_url="https://auth.example/token", client_id="cid", client_secret="shh")}


def test_refresher_exchanges_refresh_token() -> None:
    session = FakeSession(FakeResponse(200, {"access_token": "a-2", "expires_in": 3600}))
    refresher = OAuthTokenRefresher(CLIENTS, session=session)

    tokens = refresher.refresh(_oauth("s1"), Source(id="s1", type="drive", name="Drive"))

    assert tokens.access_token == "a-2"
    assert tokens.refresh_token == "r-1"
    assert tokens.token_type == "Bearer"
    assert tokens.expiry is not None and tokens.expiry > utc_now() + timedelta(minutes=50)
    call = session.calls[0]
    assert call["url"] == "https://auth.example/token"
    assert call["data"] == {
        "grant_type": "refresh_token",
        "refresh_token": "r-1",
        "client_id": "cid",
        "client_secret": "shh",
    }


@pytest.mark.parametrize(
    "response, message",
    [
        (FakeResponse(400, {"error": "invalid_grant", "error_description": "revoked"}), "token error: invalid_grant - revoked"),
        (FakeResponse(502, None), "token request failed with status 502"),
        (FakeResponse(200, {"token_type": "Bearer"}), "no access_token"),
        (requests.ConnectionError("refused"), "token request failed: refused"),
    ],
)
def test_refresher_errors(response, message: str) -> None:
    refresher = OAuthTokenRefresher(CLIENTS, session=FakeSession(response))

    with pytest.raises(TokenRefreshFailedError) as info:
        refresher.refresh(_oauth("s1"), Source(id="s1", type="drive", name="Drive"))

    assert message in str(info.value)


def test_refresher_requires_client_and_refresh_token() -> None:
    refresher = OAuthTokenRefresher(CLIENTS, session=FakeSession(FakeResponse(200, {})))

    with pytest.raises(TokenRefreshFailedError, match="no OAuth client"):
        refresher.refresh(_oauth("s1"), Source(id="s1", type="wiki", name="Wiki"))
    with pytest.raises(TokenRefreshFailedError, match="no refresh token"):
        refresher.refresh(_oauth("s1", refresh_token=""), Source(id="s1", type="drive", name="Drive"))


def test_refresher_expires_in_handling() -> None:
    fractional = OAuthTokenRefresher(
        CLIENTS, session=FakeSession(FakeResponse(200, {"access_token": "a-2", "expires_in": "3600.5"}))
    )
    tokens = fractional.refresh(_oauth("s1"), Source(id="s1", type="drive", name="Drive"))
    assert tokens.expiry is not None and tokens.expiry > utc_now() + timedelta(minutes=59)

    garbled = OAuthTokenRefresher(
        CLIENTS, session=FakeSession(FakeResponse(200, {"access_token": "a-2", "expires_in": "soon"}))
    )
    with pytest.raises(TokenRefreshFailedError, match="invalid expires_in"):
        garbled.refresh(_oauth("s1"), Source(id="s1", type="drive", name="Drive"))
