from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from cloud_workers_mcp.providers import JulesClient, JulesProvider, ProviderError, map_jules_status
from cloud_workers_mcp.providers.base import CreateSessionParams, parse_timestamp
from cloud_workers_mcp.providers.jules import source_name_for_repo


def _provider(handler) -> JulesProvider:
    client = JulesClient("test-key", transport=httpx.MockTransport(handler))
    return JulesProvider(client)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("QUEUED", "queued"),
        ("STATE_UNSPECIFIED", "queued"),
        ("PLANNING", "in_progress"),
        ("AWAITING_PLAN_APPROVAL", "in_progress"),
        ("AWAITING_USER_FEEDBACK", "in_progress"),
        ("PAUSED", "in_progress"),
        ("COMPLETED", "completed"),
        ("FAILED", "failed"),
        ("CANCELLED", "cancelled"),
        ("SOMETHING_NEW", "in_progress"),
        (None, "queued"),
    ],
)
def test_map_jules_status(raw, expected) -> None:
    assert map_jules_status(raw) == expected


def test_source_name_for_repo_normalises_urls() -> None:
    assert source_name_for_repo("https://github.com/acme/widgets.git") == "sources/github/acme/widgets"
    assert source_name_for_repo("git@github.com:acme/widgets.git") == "sources/github/acme/widgets"
    assert source_name_for_repo("acme/widgets") == "sources/github/acme/widgets"


def test_parse_timestamp_handles_nanoseconds() -> None:
    parsed = parse_timestamp("2025-03-01T12:30:45.123456789Z")

    assert parsed is not None
    assert parsed.microsecond == 123456
    assert parsed.utcoffset().total_seconds() == 0
    assert parse_timestamp("not a date") is None


def test_create_session_sends_source_context() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["key"] = request.headers.get("X-Goog-Api-Key")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "abc", "state": "QUEUED", "url": "https://jules/abc"})

    result = asyncio.run(
        _provider(handler).create_session(
            CreateSessionParams(prompt="Add tests", repo="https://github.com/acme/widgets", branch=None, title="Tests")
        )
    )

    assert captured["url"] == "https://jules.googleapis.com/v1alpha/sessions"
    assert captured["key"] == "test-key"
    body = captured["body"]
    assert body["sourceContext"] == {
        "source": "sources/github/acme/widgets",
        "githubRepoContext": {"startingBranch": "main"},
    }
    assert body["automationMode"] == "AUTO_CREATE_PR"
    assert body["requirePlanApproval"] is False
    assert body["title"] == "Tests"
    assert result.remote_session_id == "abc"
    assert result.status == "queued"
    assert result.console_url == "https://jules/abc"


def test_get_session_maps_state() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1alpha/sessions/abc"
        return httpx.Response(
            200,
            json={"id": "abc", "state": "AWAITING_USER_FEEDBACK", "updateTime": "2025-03-01T00:00:00Z"},
        )

    state = asyncio.run(_provider(handler).get_session("abc"))

    assert state.status == "in_progress"
    assert state.raw_state == "AWAITING_USER_FEEDBACK"
    assert state.updated_at is not None


def test_send_feedback_posts_message() -> None:
    seen: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    asyncio.run(_provider(handler).send_feedback("abc", "Please add a test"))

    assert seen == [("/v1alpha/sessions/abc:sendMessage", {"prompt": "Please add a test"})]


def test_get_artifacts_picks_newest_patch_and_pull_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/activities"):
            return httpx.Response(
                200,
                json={
                    "activities": [
                        {"createTime": "2025-01-01T00:00:00Z", "changeSet": {"gitPatch": {"unidiffPatch": "old"}}},
                        {"createTime": "2025-01-02T00:00:00Z", "changeSet": {"gitPatch": {"unidiffPatch": "new"}}},
                        {"createTime": "2025-01-03T00:00:00Z", "progressUpdated": {"title": "done"}},
                    ]
                },
            )
        return httpx.Response(
            200,
            json={
                "id": "abc",
                "state": "COMPLETED",
                "outputs": [
                    {
                        "pullRequest": {
                            "url": "https://github.com/acme/widgets/pull/7",
                            "title": "Add tests",
                            "description": "Adds widget tests",
                        }
                    }
                ],
            },
        )

    artifacts = asyncio.run(_provider(handler).get_artifacts("abc"))

    assert artifacts.patch is not None
    assert artifacts.patch.content == "new"
    assert artifacts.pr_url == "https://github.com/acme/widgets/pull/7"
    assert artifacts.changes_summary == "Adds widget tests"


def test_get_artifacts_without_patch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/activities"):
            return httpx.Response(200, json={})
        return httpx.Response(200, json={"id": "abc", "state": "COMPLETED"})

    artifacts = asyncio.run(_provider(handler).get_artifacts("abc"))

    assert artifacts.patch is None
    assert artifacts.pr_url is None


def test_http_errors_raise_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(_provider(handler).get_session("abc"))
    assert "503" in str(excinfo.value)


def test_missing_api_key_is_rejected() -> None:
    provider = JulesProvider(JulesClient(""))

    with pytest.raises(ProviderError):
        asyncio.run(provider.get_session("abc"))
