"""GitHub REST client used for merging and fetching change documents."""

from __future__ import annotations

import base64
from typing import Any

import httpx

API_URL = "https://api.github.com"


class GitHubError(RuntimeError):
    """Raised when a GitHub API call fails."""


class NotMergeableError(GitHubError):
    """Raised when GitHub refuses a merge because the pull request conflicts."""


class GitHubClient:
    def __init__(
        self,
        token: str,
        *,
        base_url: str = API_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise GitHubError("GitHub token is required")
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def merge_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
        *,
        merge_method: str = "squash",
    ) -> str | None:
        """Merge a pull request and return the merge commit sha."""

        async with self._client() as client:
            try:
                response = await client.put(
                    f"/repos/{owner}/{repo}/pulls/{number}/merge",
                    json={"merge_method": merge_method},
                )
            except httpx.HTTPError as exc:
                raise GitHubError(f"Failed to merge PR #{number}: {exc}") from exc

        if response.status_code in (405, 409):
            raise NotMergeableError("Merge conflict: The Pull Request is not mergeable.")
        if response.is_error:
            raise GitHubError(
                f"Failed to merge PR #{number}: {response.status_code} {_message(response)}"
            )
        return response.json().get("sha")

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        return await self._get_json(f"/repos/{owner}/{repo}/pulls/{number}")

    async def get_content(
        self, owner: str, repo: str, path: str, *, ref: str | None = None
    ) -> Any:
        """Return the contents API payload: a list for directories, a dict for files."""

        params = {"ref": ref} if ref else None
        return await self._get_json(f"/repos/{owner}/{repo}/contents/{path}", params=params)

    async def _get_json(self, path: str, *, params: dict[str, str] | None = None) -> Any:
        async with self._client() as client:
            try:
                response = await client.get(path, params=params)
            except httpx.HTTPError as exc:
                raise GitHubError(f"GET {path} failed: {exc}") from exc
        if response.is_error:
            raise GitHubError(f"GET {path} failed: {response.status_code} {_message(response)}")
        return response.json()


def decode_content(payload: dict[str, Any]) -> str:
    """Decode the base64 ``content`` field of a contents API file payload."""

    return base64.b64decode(payload.get("content") or "").decode("utf-8", errors="replace")


def _message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", ""))
    except ValueError:
        return response.text[:200]


__all__ = ["GitHubClient", "GitHubError", "NotMergeableError", "decode_content"]
