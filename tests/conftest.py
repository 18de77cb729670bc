"""Shared fixtures: an in-memory RepoHost and a small two-instance registry."""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pytest

from ghas_enablement.host.base import HostError, RepoHost
from ghas_enablement.planning.models import (
    INSTANCE_KIND_CLOUD,
    CommitIdentity,
    ContainerRef,
    Credential,
    FeatureKind,
    InstanceDescriptor,
    InstanceRegistry,
    LicenseSnapshot,
    ReasonCode,
    RepositoryRef,
)
from ghas_enablement.secrets import CredentialStore

MUTATING_OPS = {"ensure", "enable"}


class FakeRepoHost(RepoHost):
    """Serves canned repositories, commits, and billing data; records every call.

    `errors` maps (operation, key) to a HostError, where key is the owner for
    list_repositories, the full name for list_commits/ensure/enable, and the
    enterprise for billing. `billing` is either one snapshot or a list of
    snapshots/exceptions consumed in order.
    """

    def __init__(
        self,
        repositories: Optional[Dict[str, Sequence[str]]] = None,
        commits: Optional[Dict[str, Sequence[Tuple[Optional[str], Optional[str]]]]] = None,
        billing: Any = None,
        errors: Optional[Dict[Tuple[str, str], HostError]] = None,
        page_size: int = 2,
        capabilities: Optional[Dict[str, str]] = None,
    ) -> None:
        self.repositories = dict(repositories or {})
        self.commits = dict(commits or {})
        self.billing = billing if billing is not None else LicenseSnapshot(total_seats=100, used_seats=0)
        self.errors = dict(errors or {})
        self.page_size = page_size
        self.capabilities = dict(capabilities or {})
        self.calls: List[Tuple[Any, ...]] = []
        self._lock = threading.Lock()

    def _record(self, *call: Any) -> None:
        with self._lock:
            self.calls.append(call)

    def _raise_for(self, op: str, key: str) -> None:
        error = self.errors.get((op, key))
        if error is not None:
            raise error

    @property
    def mutating_calls(self) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] in MUTATING_OPS]

    def calls_for(self, op: str) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == op]

    def list_repositories(self, container: ContainerRef, credential: Credential) -> Iterator[List[RepositoryRef]]:
        self._record("list_repositories", container.owner, credential.key)
        self._raise_for("list_repositories", container.owner)
        if container.owner not in self.repositories:
            raise HostError(ReasonCode.NOT_FOUND, f"no such owner {container.owner}", 404)
        names = list(self.repositories[container.owner])
        for start in range(0, max(len(names), 1), self.page_size):
            yield [
                RepositoryRef(container.hostname, container.owner, name)
                for name in names[start:start + self.page_size]
            ]

    def list_commits(self, repository, credential, since) -> Iterator[List[CommitIdentity]]:
        self._record("list_commits", repository.full_name, credential.key)
        self._raise_for("list_commits", repository.full_name)
        entries = [CommitIdentity(author, committer) for author, committer in self.commits.get(repository.full_name, [])]
        for start in range(0, len(entries), self.page_size):
            yield entries[start:start + self.page_size]

    def get_billing_snapshot(self, enterprise, credential, product=None) -> LicenseSnapshot:
        self._record("billing", enterprise, product)
        self._raise_for("billing", enterprise)
        if isinstance(self.billing, list):
            item = self.billing.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.billing

    def ensure_security_capability(self, repository, credential) -> str:
        self._record("ensure", repository.full_name, credential.key)
        self._raise_for("ensure", repository.full_name)
        return self.capabilities.get(repository.full_name, "enabled")

    def enable_feature(self, repository, feature: FeatureKind, credential) -> str:
        self._record("enable", repository.full_name, feature.value)
        self._raise_for(f"enable:{feature.value}", repository.full_name)
        return "enabled"


@pytest.fixture
def ghec() -> InstanceDescriptor:
    return InstanceDescriptor(
        hostname="github.com",
        instance_name="acme",
        api_url="https://api.github.com",
        credential_key="GHEC_TOKEN",
        kind=INSTANCE_KIND_CLOUD,
        enterprise="acme",
    )


@pytest.fixture
def ghes() -> InstanceDescriptor:
    return InstanceDescriptor(
        hostname="github.example.com",
        instance_name="ghes-main",
        api_url="https://github.example.com/api/v3",
        credential_key="GHES_TOKEN_1",
    )


@pytest.fixture
def registry(ghec, ghes) -> InstanceRegistry:
    return InstanceRegistry(license_authority=ghec, instances=(ghes,))


@pytest.fixture
def credentials() -> CredentialStore:
    return CredentialStore(
        overrides={"GHEC_TOKEN": "ghec-secret", "GHES_TOKEN_1": "ghes-secret"},
        environ={},
    )


@pytest.fixture
def make_host():
    def _make(**kwargs) -> FakeRepoHost:
        return FakeRepoHost(**kwargs)

    return _make


@pytest.fixture
def ghes_credential(ghes) -> Credential:
    return Credential(key=ghes.credential_key, api_url=ghes.api_url, token="ghes-secret")
