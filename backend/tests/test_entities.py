"""Tests for entity helpers."""

from datetime import timedelta

import pytest

from localdex.models.entities import (
    AuthCapability,
    AuthMethod,
    Credentials,
    OAuthCredentials,
    PATCredentials,
    Source,
)
from localdex.models.scheduling import ScheduledTask
from localdex.models.search import SearchMode
from localdex.utils.time import utc_now


def test_auth_capability() -> None:
    both = AuthCapability.PAT | AuthCapability.OAUTH

    assert str(AuthCapability.NONE) == "none"
    assert str(both) == "pat,oauth"
    assert both.supports_multiple_methods()
    assert both.supported_methods() == [AuthMethod.PAT, AuthMethod.OAUTH]
    assert not AuthCapability.NONE.requires_auth()
    assert AuthCapability.OAUTH.supports_oauth() and not AuthCapability.OAUTH.supports_pat()


def test_credentials_refresh_rules() -> None:
    now = utc_now()
    expired = Credentials(
        id="c1",
        source_id="s1",
        oauth=OAuthCredentials(access_token="a", refresh_token="r", expiry=now - timedelta(seconds=1)),
    )
    no_refresh = Credentials(
        id="c2", source_id="s2", oauth=OAuthCredentials(access_token="a", expiry=now - timedelta(seconds=1))
    )
    pat = Credentials(id="c3", source_id="s3", pat=PATCredentials(token="t"))

    assert expired.needs_refresh(now)
    assert not no_refresh.needs_refresh(now)
    assert not pat.needs_refresh(now)
    assert pat.is_authenticated() and pat.access_token() == "t"
    assert not Credentials(id="c4", source_id="s4").is_authenticated()
    with pytest.raises(ValueError):
        Credentials(id="c5", source_id="s5", oauth=OAuthCredentials("a"), pat=PATCredentials("t"))


def test_display_name() -> None:
    source = Source(id="s1", type="drive", name="Work Drive")

    assert source.display_name() == "Work Drive"
    assert source.display_name("ana@example.com") == "Work Drive - ana@example.com"
    assert Source(id="s2", type="drive", name="ana@example.com files").display_name("ana@example.com") == (
        "ana@example.com files"
    )


def test_scheduled_task_is_due() -> None:
    now = utc_now()
    task = ScheduledTask(id="t", name="T", interval=timedelta(minutes=5))

    assert task.is_due(now)
    task.last_run, task.next_run = now, now + timedelta(minutes=5)
    assert not task.is_due(now)
    assert task.is_due(now + timedelta(minutes=5))
    task.running = True
    assert not task.is_due(now + timedelta(hours=1))
    task.running, task.enabled = False, False
    assert not task.is_due(now + timedelta(hours=1))


def test_search_mode_requirements() -> None:
    assert [mode for mode in SearchMode if mode.requires_embedding()] == [SearchMode.HYBRID, SearchMode.FULL]
    assert [mode for mode in SearchMode if mode.requires_llm()] == [SearchMode.LLM_ASSISTED, SearchMode.FULL]
    assert SearchMode.TEXT_ONLY.description() == "Text Only (keyword search)"
