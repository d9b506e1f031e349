"""Remote worker and source-control providers."""

from .base import (
    CreateSessionParams,
    CreateSessionResult,
    NotificationSink,
    PatchArtifact,
    ProviderError,
    RemoteSessionState,
    RemoteWorkerProvider,
    SessionArtifacts,
    Severity,
)
from .github import GitHubClient, GitHubError, NotMergeableError
from .jules import JulesClient, JulesProvider, map_jules_status

__all__ = [
    "CreateSessionParams",
    "CreateSessionResult",
    "GitHubClient",
    "GitHubError",
    "JulesClient",
    "JulesProvider",
    "NotMergeableError",
    "NotificationSink",
    "PatchArtifact",
    "ProviderError",
    "RemoteSessionState",
    "RemoteWorkerProvider",
    "SessionArtifacts",
    "Severity",
    "map_jules_status",
]
