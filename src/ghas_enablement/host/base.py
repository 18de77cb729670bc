"""Abstract hosting-provider interface consumed by the planning core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterator, List, Optional

from ..planning.models import (
    CommitIdentity,
    ContainerRef,
    Credential,
    FeatureKind,
    LicenseSnapshot,
    ReasonCode,
    RepositoryRef,
)


class HostError(Exception):
    """A hosting-provider call failed; `reason` says how."""

    def __init__(self, reason: ReasonCode, message: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(message or reason.value)
        self.reason = reason
        self.status_code = status_code


class RepoHost(ABC):
    """Operations the planner needs from a GitHub-like host.

    Listing operations yield one list per result page. Every operation raises
    HostError on failure.
    """

    @abstractmethod
    def list_repositories(self, container: ContainerRef, credential: Credential) -> Iterator[List[RepositoryRef]]:
        ...

    @abstractmethod
    def list_commits(
        self,
        repository: RepositoryRef,
        credential: Credential,
        since: datetime,
    ) -> Iterator[List[CommitIdentity]]:
        ...

    @abstractmethod
    def get_billing_snapshot(
        self,
        enterprise: str,
        credential: Credential,
        product: Optional[str] = None,
    ) -> LicenseSnapshot:
        ...

    @abstractmethod
    def ensure_security_capability(self, repository: RepositoryRef, credential: Credential) -> str:
        ...

    @abstractmethod
    def enable_feature(self, repository: RepositoryRef, feature: FeatureKind, credential: Credential) -> str:
        ...


__all__ = ["HostError", "RepoHost"]
