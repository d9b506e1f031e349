"""Jules remote worker provider."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..storage.models import SessionStatus
from .base import (
    CreateSessionParams,
    CreateSessionResult,
    PatchArtifact,
    ProviderError,
    RemoteSessionState,
    SessionArtifacts,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://jules.googleapis.com"
DEFAULT_API_VERSION = "v1alpha"

_STATUS_MAP: dict[str, SessionStatus] = {
    "STATE_UNSPECIFIED": "queued",
    "QUEUED": "queued",
    "PLANNING": "in_progress",
    "AWAITING_PLAN_APPROVAL": "in_progress",
    "AWAITING_USER_FEEDBACK": "in_progress",
    "IN_PROGRESS": "in_progress",
    "PAUSED": "in_progress",
    "COMPLETED": "completed",
    "FAILED": "failed",
    "CANCELLED": "cancelled",
}


def map_jules_status(state: str | None) -> SessionStatus:
    """Map a raw Jules session state onto the tracked status enumeration."""

    if not state:
        return "queued"
    return _STATUS_MAP.get(state.upper(), "in_progress")


def source_name_for_repo(repo: str) -> str:
    """``owner/repo`` or a GitHub URL -> ``sources/github/owner/repo``."""

    path = repo.strip()
    for prefix in ("https://github.com/", "http://github.com/", "git@github.com:"):
        if path.startswith(prefix):
            path = path[len(prefix):]
            break
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return f"sources/github/{path.strip('/')}"


class JulesClient:
    """Thin async wrapper over the Jules REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = f"{base_url.rstrip('/')}/{api_version}"
        self._timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, *, json: Any = None) -> dict[str, Any]:
        if not self._api_key:
            raise ProviderError("Jules API key is not configured (set JULES_API_KEY)")
        headers = {"X-Goog-Api-Key": self._api_key}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"Jules API {method} {path} failed with {exc.response.status_code}: "
                f"{exc.response.text[:300]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Jules API {method} {path} failed: {exc}") from exc
        if not response.content:
            return {}
        return response.json()

    async def create_session(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/sessions", json=body)

    async def get_session(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/sessions/{session_id}")

    async def get_activities(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/sessions/{session_id}/activities")

    async def send_message(self, session_id: str, prompt: str) -> None:
        await self._request("POST", f"/sessions/{session_id}:sendMessage", json={"prompt": prompt})

    async def approve_plan(self, session_id: str) -> None:
        await self._request("POST", f"/sessions/{session_id}:approvePlan", json={})

    async def cancel_session(self, session_id: str) -> None:
        await self._request("POST", f"/sessions/{session_id}:cancel", json={})


class JulesProvider:
    """Remote worker provider backed by Google's Jules agent."""

    name = "jules"

    def __init__(self, client: JulesClient) -> None:
        self._client = client

    @classmethod
    def from_config(
        cls,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
    ) -> "JulesProvider":
        return cls(JulesClient(api_key, base_url=base_url, api_version=api_version))

    async def create_session(self, params: CreateSessionParams) -> CreateSessionResult:
        body: dict[str, Any] = {
            "prompt": params.prompt,
            "sourceContext": {
                "source": source_name_for_repo(params.repo),
                "githubRepoContext": {"startingBranch": params.branch or "main"},
            },
            "requirePlanApproval": params.require_plan_approval,
            "automationMode": (
                "AUTO_CREATE_PR" if params.auto_create_pr else "AUTOMATION_MODE_UNSPECIFIED"
            ),
        }
        if params.title:
            body["title"] = params.title

        session = await self._client.create_session(body)
        session_id = session.get("id")
        if not session_id:
            raise ProviderError("Jules did not return a session id")
        logger.info("Created Jules session", extra={"remote_session_id": session_id})
        return CreateSessionResult(
            remote_session_id=session_id,
            status=map_jules_status(session.get("state")),
            console_url=session.get("url"),
        )

    async def get_session(self, session_id: str) -> RemoteSessionState:
        session = await self._client.get_session(session_id)
        raw_state = session.get("state")
        return RemoteSessionState(
            session_id=session.get("id", session_id),
            status=map_jules_status(raw_state),
            status_message=raw_state,
            url=session.get("url"),
            created_at=parse_timestamp(session.get("createTime")),
            updated_at=parse_timestamp(session.get("updateTime")),
            raw_state=raw_state,
        )

    async def send_feedback(self, session_id: str, message: str) -> None:
        await self._client.send_message(session_id, message)

    async def approve_plan(self, session_id: str) -> None:
        await self._client.approve_plan(session_id)

    async def cancel_session(self, session_id: str) -> None:
        await self._client.cancel_session(session_id)

    async def get_artifacts(self, session_id: str) -> SessionArtifacts:
        activities = (await self._client.get_activities(session_id)).get("activities") or []
        session = await self._client.get_session(session_id)

        patch_activities = [activity for activity in activities if _unidiff(activity)]
        patch_activities.sort(key=lambda activity: activity.get("createTime", ""), reverse=True)
        patch: PatchArtifact | None = None
        if patch_activities:
            newest = patch_activities[0]
            patch = PatchArtifact(
                content=_unidiff(newest) or "",
                files_changed=list((newest.get("changeSet") or {}).get("filesChanged") or []),
            )

        pull_request: dict[str, Any] = {}
        for output in session.get("outputs") or []:
            if output.get("pullRequest"):
                pull_request = output["pullRequest"]
                break

        return SessionArtifacts(
            patch=patch,
            pr_url=pull_request.get("url"),
            changes_summary=pull_request.get("description") or pull_request.get("title"),
        )


def _unidiff(activity: dict[str, Any]) -> str | None:
    change_set = activity.get("changeSet") or {}
    git_patch = change_set.get("gitPatch") or {}
    return git_patch.get("unidiffPatch") or None


__all__ = [
    "JulesClient",
    "JulesProvider",
    "map_jules_status",
    "source_name_for_repo",
]
