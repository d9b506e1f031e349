"""OpenSpec change documents written by workers under ``openspec/changes``."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

from ..providers.github import GitHubClient, GitHubError, decode_content

logger = logging.getLogger(__name__)

OPENSPEC_DIR = "openspec/changes"

ChangeStatus = Literal["proposed", "in_progress", "completed", "unknown"]

_TITLE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_STATUS = re.compile(r"status:\s*(proposed|in_progress|completed)", re.IGNORECASE)
_FILES_SECTION = re.compile(r"##\s*Files?\s*\n([\s\S]*?)(?=\n##|\Z)", re.IGNORECASE)
_FILE_ITEM = re.compile(r"^\s*[-*]\s*`?([^`\n]+?)`?\s*$", re.MULTILINE)
_DESCRIPTION = re.compile(r"\A#\s+.+\n\n([\s\S]*?)(?=\n##|\Z)")
_PR_URL = re.compile(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)")


@dataclass(slots=True)
class OpenSpecChange:
    title: str = ""
    status: ChangeStatus = "unknown"
    files: list[str] = field(default_factory=list)
    description: str = ""
    raw_content: str = ""


@dataclass(slots=True, frozen=True)
class PullRequestRef:
    owner: str
    repo: str
    number: int


def parse_openspec_content(content: str) -> OpenSpecChange:
    change = OpenSpecChange(raw_content=content)

    title = _TITLE.search(content)
    if title:
        change.title = title.group(1).strip()

    status = _STATUS.search(content)
    if status:
        change.status = status.group(1).lower()  # type: ignore[assignment]

    files = _FILES_SECTION.search(content)
    if files:
        change.files = [item.strip() for item in _FILE_ITEM.findall(files.group(1))]

    description = _DESCRIPTION.search(content)
    if description:
        change.description = description.group(1).strip()[:500]

    return change


def parse_pr_url(url: str) -> PullRequestRef | None:
    match = _PR_URL.search(url or "")
    if not match:
        return None
    return PullRequestRef(owner=match.group(1), repo=match.group(2), number=int(match.group(3)))


async def fetch_openspec_from_pr(github: GitHubClient, ref: PullRequestRef) -> OpenSpecChange | None:
    """Read the first change document on the pull request's head branch.

    Returns ``None`` when the branch has no ``openspec/changes`` directory.
    """

    pull = await github.get_pull_request(ref.owner, ref.repo, ref.number)
    branch = (pull.get("head") or {}).get("ref")

    try:
        listing = await github.get_content(ref.owner, ref.repo, OPENSPEC_DIR, ref=branch)
    except GitHubError:
        logger.debug("No OpenSpec directory on branch", extra={"branch": branch})
        return None
    if not isinstance(listing, list):
        return None

    document = next(
        (item for item in listing if item.get("type") == "file" and item.get("name", "").endswith(".md")),
        None,
    )
    if document is None:
        return None

    payload = await github.get_content(ref.owner, ref.repo, document["path"], ref=branch)
    if not isinstance(payload, dict) or not payload.get("content"):
        return None
    change = parse_openspec_content(decode_content(payload))
    if not change.title:
        change.title = document["name"].removesuffix(".md")
    return change


__all__ = [
    "OPENSPEC_DIR",
    "OpenSpecChange",
    "PullRequestRef",
    "fetch_openspec_from_pr",
    "parse_openspec_content",
    "parse_pr_url",
]
