"""Turns raw repository/organization URLs into concrete repository references."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple, Union
from urllib.parse import unquote, urlparse

from ..host.base import HostError, RepoHost
from .diagnostics import Diagnostics
from .models import ContainerRef, Credential, InvalidReferenceRecord, ReasonCode, RepositoryRef

CredentialLookup = Callable[[str], Optional[Credential]]


@dataclass(frozen=True)
class ResolutionResult:
    repositories: Tuple[RepositoryRef, ...] = ()
    invalid: Tuple[InvalidReferenceRecord, ...] = ()
    containers: Tuple[ContainerRef, ...] = ()


def parse_reference(raw: str) -> Union[RepositoryRef, ContainerRef]:
    """Classify one URL: one path segment is a container, two or more a repository.

    Raises ValueError for anything else.
    """
    text = (raw or "").strip()
    if not text:
        raise ValueError("empty reference")
    candidate = text if "://" in text else f"https://{text}"
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"not an http(s) URL with a hostname: {raw!r}")

    segments = [unquote(part) for part in parsed.path.split("/") if part]
    if not segments:
        raise ValueError(f"no owner or repository in {raw!r}")
    if len(segments) == 1:
        return ContainerRef(hostname=parsed.hostname, owner=segments[0])

    name = segments[1][:-4] if segments[1].endswith(".git") else segments[1]
    if not name:
        raise ValueError(f"empty repository name in {raw!r}")
    return RepositoryRef(hostname=parsed.hostname, owner=segments[0], name=name)


def expand_container(
    container: ContainerRef,
    credential: Credential,
    host: RepoHost,
) -> List[RepositoryRef]:
    """Collect every repository the container owns, across all pages."""
    repositories: List[RepositoryRef] = []
    for page in host.list_repositories(container, credential):
        repositories.extend(page)
    return repositories


def resolve_references(
    raw_refs: Iterable[str],
    host: RepoHost,
    credential_lookup: CredentialLookup,
    diagnostics: Optional[Diagnostics] = None,
) -> ResolutionResult:
    """Resolve references into repositories, recording failures instead of raising.

    Duplicates across inputs are kept here; routing removes them.
    """
    diagnostics = diagnostics or Diagnostics()
    repositories: List[RepositoryRef] = []
    invalid: List[InvalidReferenceRecord] = []
    containers: List[ContainerRef] = []

    for raw in raw_refs:
        if not (raw or "").strip():
            continue
        try:
            ref = parse_reference(raw)
        except ValueError as exc:
            diagnostics.warn(f"invalid reference {raw!r}: {exc}")
            invalid.append(InvalidReferenceRecord(raw, ReasonCode.MALFORMED, str(exc)))
            continue

        if isinstance(ref, RepositoryRef):
            repositories.append(ref)
            continue

        containers.append(ref)
        credential = credential_lookup(ref.hostname)
        if credential is None:
            diagnostics.warn(f"no credential for {ref.hostname}; cannot expand {ref.url}")
            invalid.append(
                InvalidReferenceRecord(raw, ReasonCode.NO_CREDENTIAL, f"no credential configured for {ref.hostname}")
            )
            continue

        try:
            expanded = expand_container(ref, credential, host)
        except HostError as exc:
            diagnostics.warn(f"could not list repositories for {ref.url}: {exc}")
            invalid.append(InvalidReferenceRecord(raw, exc.reason, str(exc)))
            continue

        diagnostics.note(f"expanded {ref.url} into {len(expanded)} repositories")
        repositories.extend(expanded)

    return ResolutionResult(
        repositories=tuple(repositories),
        invalid=tuple(invalid),
        containers=tuple(containers),
    )


__all__ = [
    "CredentialLookup",
    "ResolutionResult",
    "parse_reference",
    "expand_container",
    "resolve_references",
]
