"""RepoHost implementation backed by the GitHub REST API (cloud and Enterprise Server)."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from itertools import chain
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple
from urllib.parse import quote

from ..planning.models import (
    CommitIdentity,
    ContainerRef,
    Credential,
    FeatureKind,
    LicenseSnapshot,
    ReasonCode,
    RepositoryRef,
    normalize_identity,
)
from .base import HostError, RepoHost
from .http_client import GitHubSession

BILLING_PRODUCT_PARAM = "advanced_security_product"
ENABLED = "enabled"
ALREADY_ENABLED = "already_enabled"

# Expected failures that callers handle without an [error] line.
NOT_FOUND_STATUSES = frozenset({404})
EMPTY_REPOSITORY_STATUSES = frozenset({409})


def _repo_path(repository: RepositoryRef) -> str:
    return f"/repos/{quote(repository.owner, safe='')}/{quote(repository.name, safe='')}"


def repository_from_payload(hostname: str, entry: Any) -> RepositoryRef:
    """Turn one entry of a repository listing into a RepositoryRef."""
    if not isinstance(entry, dict):
        raise HostError(ReasonCode.MALFORMED_RESPONSE, "repository entry is not an object")
    full_name = entry.get("full_name") or ""
    owner, _, name = str(full_name).partition("/")
    if not owner or not name:
        raise HostError(ReasonCode.MALFORMED_RESPONSE, f"repository entry without full_name: {full_name!r}")
    return RepositoryRef(hostname=hostname, owner=owner, name=name)


def commit_identity(entry: Any) -> CommitIdentity:
    """Pull author and committer emails out of a commit listing entry.

    Missing or null people are allowed; anything that is not an object is not.
    """
    if not isinstance(entry, dict):
        raise HostError(ReasonCode.MALFORMED_RESPONSE, "commit entry is not an object")
    commit = entry.get("commit") or {}
    if not isinstance(commit, dict):
        raise HostError(ReasonCode.MALFORMED_RESPONSE, f"commit field is not an object: {commit!r}")

    emails = []
    for role in ("author", "committer"):
        person = commit.get(role) or {}
        if not isinstance(person, dict):
            raise HostError(ReasonCode.MALFORMED_RESPONSE, f"commit {role} is not an object: {person!r}")
        email = person.get("email")
        if email is not None and not isinstance(email, str):
            raise HostError(ReasonCode.MALFORMED_RESPONSE, f"commit {role} email is not a string: {email!r}")
        emails.append(email)
    return CommitIdentity(author_email=emails[0], committer_email=emails[1])


def licensed_emails(repository_entry: Any) -> Set[str]:
    """Normalized `last_pushed_email` values from one billing repository entry."""
    if not isinstance(repository_entry, dict):
        raise HostError(ReasonCode.MALFORMED_RESPONSE, "billing repository entry is not an object")
    breakdown = repository_entry.get("advanced_security_committers_breakdown") or []
    if not isinstance(breakdown, list):
        raise HostError(ReasonCode.MALFORMED_RESPONSE, "committer breakdown is not a list")

    emails: Set[str] = set()
    for committer in breakdown:
        if not isinstance(committer, dict):
            raise HostError(ReasonCode.MALFORMED_RESPONSE, "committer breakdown entry is not an object")
        email = normalize_identity(committer.get("last_pushed_email"))
        if email:
            emails.add(email)
    return emails


def _as_count(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise HostError(ReasonCode.MALFORMED_RESPONSE, f"{field_name} is not a number: {value!r}") from exc


class GitHubRepoHost(RepoHost):
    """Talks to whichever API base each Credential names, one cached session per token."""

    def __init__(self, session_factory: Callable[[str, str], GitHubSession] = GitHubSession) -> None:
        self._session_factory = session_factory
        self._sessions: Dict[Tuple[str, str], GitHubSession] = {}
        self._lock = threading.Lock()

    def _session(self, credential: Credential) -> GitHubSession:
        key = (credential.api_url, credential.token)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = self._session_factory(credential.api_url, credential.token)
                self._sessions[key] = session
            return session

    def list_repositories(self, container: ContainerRef, credential: Credential) -> Iterator[List[RepositoryRef]]:
        session = self._session(credential)
        owner = quote(container.owner, safe="")
        try:
            pages = session.iter_pages(f"/orgs/{owner}/repos", {"type": "all"}, quiet_statuses=NOT_FOUND_STATUSES)
            first = next(pages)
        except HostError as exc:
            if exc.reason is not ReasonCode.NOT_FOUND:
                raise
            # Not an organization; try a user account of the same name.
            pages = session.iter_pages(f"/users/{owner}/repos", {"type": "owner"})
            first = next(pages)

        for payload in chain([first], pages):
            yield [repository_from_payload(container.hostname, entry) for entry in payload]

    def list_commits(
        self,
        repository: RepositoryRef,
        credential: Credential,
        since: datetime,
    ) -> Iterator[List[CommitIdentity]]:
        session = self._session(credential)
        stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        pages = session.iter_pages(
            f"{_repo_path(repository)}/commits", {"since": stamp}, quiet_statuses=EMPTY_REPOSITORY_STATUSES
        )
        try:
            for payload in pages:
                yield [commit_identity(entry) for entry in payload]
        except HostError as exc:
            # GitHub answers 409 for repositories without any commits.
            if exc.status_code in EMPTY_REPOSITORY_STATUSES:
                return
            raise

    def get_billing_snapshot(
        self,
        enterprise: str,
        credential: Credential,
        product: Optional[str] = None,
    ) -> LicenseSnapshot:
        session = self._session(credential)
        params = {BILLING_PRODUCT_PARAM: product} if product else {}
        path = f"/enterprises/{quote(enterprise, safe='')}/settings/billing/advanced-security"

        total: Optional[int] = None
        used: Optional[int] = None
        identities: Set[str] = set()
        for payload in session.iter_pages(path, params, items_key="repositories"):
            if used is None:
                total = _as_count(payload.get("purchased_advanced_security_committers"), "purchased seats")
                used = _as_count(payload.get("total_advanced_security_committers"), "used seats") or 0
            for repo in payload.get("repositories") or []:
                identities |= licensed_emails(repo)

        return LicenseSnapshot(total_seats=total, used_seats=used or 0, licensed_identities=frozenset(identities))

    def ensure_security_capability(self, repository: RepositoryRef, credential: Credential) -> str:
        session = self._session(credential)
        path = _repo_path(repository)
        data = session.request_json("GET", path) or {}
        status = ((data.get("security_and_analysis") or {}).get("advanced_security") or {}).get("status")
        if status == ENABLED:
            return ALREADY_ENABLED
        session.request_json(
            "PATCH",
            path,
            json={"security_and_analysis": {"advanced_security": {"status": ENABLED}}},
        )
        return ENABLED

    def enable_feature(self, repository: RepositoryRef, feature: FeatureKind, credential: Credential) -> str:
        session = self._session(credential)
        path = _repo_path(repository)
        if feature is FeatureKind.SECRET_SCANNING:
            session.request_json(
                "PATCH",
                path,
                json={"security_and_analysis": {"secret_scanning": {"status": ENABLED}}},
            )
        elif feature is FeatureKind.CODE_SCANNING:
            session.request_json("PATCH", f"{path}/code-scanning/default-setup", json={"state": "configured"})
        elif feature is FeatureKind.DEPENDABOT_ALERTS:
            session.request_json("PUT", f"{path}/vulnerability-alerts")
        else:
            raise HostError(ReasonCode.UNPROCESSABLE, f"unsupported feature {feature!r}")
        return ENABLED


__all__ = [
    "BILLING_PRODUCT_PARAM",
    "ENABLED",
    "ALREADY_ENABLED",
    "repository_from_payload",
    "commit_identity",
    "licensed_emails",
    "GitHubRepoHost",
]
