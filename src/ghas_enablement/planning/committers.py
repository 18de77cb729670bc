"""Collects the contributor identities active in a set of repositories."""

from __future__ import annotations

import datetime as dt
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from ..config import COMMIT_WINDOW_DAYS
from ..host.base import HostError, RepoHost
from .diagnostics import Diagnostics
from .models import (
    CommitIdentity,
    Credential,
    InvalidReferenceRecord,
    ReasonCode,
    RepositoryRef,
    normalize_identity,
)


@dataclass(frozen=True)
class CommitterAnalysis:
    identities: FrozenSet[str] = frozenset()
    per_repository: Dict[RepositoryRef, FrozenSet[str]] = field(default_factory=dict)
    failures: Tuple[InvalidReferenceRecord, ...] = ()


def commit_window_start(now: Optional[dt.datetime] = None, days: int = COMMIT_WINDOW_DAYS) -> dt.datetime:
    """Start of the trailing commit window, in UTC."""
    now = now or dt.datetime.now(dt.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now - dt.timedelta(days=days)


def identities_from_commits(commits: Iterable[CommitIdentity]) -> Set[str]:
    """Both author and committer emails count, normalized; blanks are dropped."""
    identities: Set[str] = set()
    for commit in commits:
        for email in (commit.author_email, commit.committer_email):
            identity = normalize_identity(email)
            if identity:
                identities.add(identity)
    return identities


def collect_repository_identities(
    repository: RepositoryRef,
    credential: Credential,
    host: RepoHost,
    since: dt.datetime,
) -> FrozenSet[str]:
    identities: Set[str] = set()
    for page in host.list_commits(repository, credential, since):
        identities |= identities_from_commits(page)
    return frozenset(identities)


def analyze_committers(
    repositories: Sequence[RepositoryRef],
    credential: Optional[Credential],
    host: RepoHost,
    since: dt.datetime,
    diagnostics: Optional[Diagnostics] = None,
    max_workers: int = 1,
) -> CommitterAnalysis:
    """Union the identities of every repository; a failing repository contributes nothing.

    Repository fetches may run concurrently; results are merged only after all
    of them have finished.
    """
    diagnostics = diagnostics or Diagnostics()
    repositories = list(repositories)

    if credential is None:
        failures = tuple(
            InvalidReferenceRecord(repo.url, ReasonCode.NO_CREDENTIAL, "no credential configured for this instance")
            for repo in repositories
        )
        if repositories:
            diagnostics.warn(f"no credential for {repositories[0].hostname}; skipped committer analysis")
        return CommitterAnalysis(failures=failures)

    results: Dict[RepositoryRef, FrozenSet[str]] = {}
    errors: Dict[RepositoryRef, HostError] = {}
    workers = max(1, min(max_workers, len(repositories) or 1))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(collect_repository_identities, repo, credential, host, since): repo
            for repo in repositories
        }
        for future in as_completed(futures):
            repo = futures[future]
            try:
                results[repo] = future.result()
            except HostError as exc:
                errors[repo] = exc

    per_repository: Dict[RepositoryRef, FrozenSet[str]] = {}
    failures: List[InvalidReferenceRecord] = []
    identities: Set[str] = set()
    for repo in repositories:
        if repo in errors:
            exc = errors[repo]
            diagnostics.warn(f"committer lookup failed for {repo.full_name}: {exc}")
            failures.append(InvalidReferenceRecord(repo.url, exc.reason, str(exc)))
            per_repository[repo] = frozenset()
            continue
        per_repository[repo] = results[repo]
        identities |= results[repo]
        diagnostics.note(f"found {len(results[repo])} committers in {repo.full_name}")

    return CommitterAnalysis(
        identities=frozenset(identities),
        per_repository=per_repository,
        failures=tuple(failures),
    )


__all__ = [
    "CommitterAnalysis",
    "commit_window_start",
    "identities_from_commits",
    "collect_repository_identities",
    "analyze_committers",
]
