"""Assigns repositories to the hosting instance (and credential) responsible for them."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol

from ..config import FALLBACK_CREDENTIAL_KEY, UNMATCHED_INSTANCE_NAME
from .diagnostics import Diagnostics
from .models import (
    Credential,
    FeatureSelection,
    InstanceDescriptor,
    InstanceRegistry,
    RepositoryRef,
    RoutingGroup,
)


class SecretSource(Protocol):
    def resolve(self, key: Optional[str]) -> Optional[str]:
        ...


def host_matches(hostname: str, instance_hostname: str) -> bool:
    """Suffix-anchored match: github-test.com never matches github.com."""
    host = hostname.lower()
    target = instance_hostname.lower()
    return host == target or host.endswith("." + target)


def match_instance(hostname: str, registry: InstanceRegistry) -> Optional[InstanceDescriptor]:
    for descriptor in registry.routing_order:
        if host_matches(hostname, descriptor.hostname):
            return descriptor
    return None


def unmatched_descriptor(hostname: str) -> InstanceDescriptor:
    """Synthetic descriptor for a hostname no configured instance claims."""
    return InstanceDescriptor(
        hostname=hostname,
        instance_name=UNMATCHED_INSTANCE_NAME,
        api_url=f"https://{hostname.lower()}/api/v3",
        credential_key=FALLBACK_CREDENTIAL_KEY,
        unmatched=True,
    )


def descriptor_for_host(hostname: str, registry: InstanceRegistry) -> InstanceDescriptor:
    return match_instance(hostname, registry) or unmatched_descriptor(hostname)


def credential_for(instance: InstanceDescriptor, credentials: SecretSource) -> Optional[Credential]:
    token = credentials.resolve(instance.credential_key)
    if not token:
        return None
    return Credential(key=instance.credential_key, api_url=instance.api_url, token=token)


def credential_for_host(
    hostname: str,
    *,
    registry: InstanceRegistry,
    credentials: SecretSource,
) -> Optional[Credential]:
    return credential_for(descriptor_for_host(hostname, registry), credentials)


def dedupe_repositories(repositories: Iterable[RepositoryRef]) -> List[RepositoryRef]:
    """Drop repeated references, keeping first-seen order."""
    seen = set()
    unique: List[RepositoryRef] = []
    for repo in repositories:
        if repo in seen:
            continue
        seen.add(repo)
        unique.append(repo)
    return unique


def route_repositories(
    repositories: Iterable[RepositoryRef],
    registry: InstanceRegistry,
    features: FeatureSelection,
    min_headroom: int,
    diagnostics: Optional[Diagnostics] = None,
) -> List[RoutingGroup]:
    """Partition repositories into one RoutingGroup per hosting instance.

    Hostnames claimed by the same descriptor share a group. Each hostname that
    no descriptor claims gets its own group under the fallback credential.
    """
    by_host: Dict[str, List[RepositoryRef]] = {}
    for repo in dedupe_repositories(repositories):
        by_host.setdefault(repo.hostname, []).append(repo)

    members: Dict[InstanceDescriptor, List[RepositoryRef]] = {}
    hostnames: Dict[InstanceDescriptor, List[str]] = {}
    for hostname, repos in by_host.items():
        descriptor = match_instance(hostname, registry)
        if descriptor is None:
            descriptor = unmatched_descriptor(hostname)
            if diagnostics:
                diagnostics.warn(
                    f"no configured instance matches {hostname}; "
                    f"routing {len(repos)} repositories with {FALLBACK_CREDENTIAL_KEY}"
                )
        elif diagnostics:
            diagnostics.note(
                f"matched {hostname} to instance '{descriptor.instance_name}' (auth: {descriptor.credential_key})"
            )
        members.setdefault(descriptor, []).extend(repos)
        hostnames.setdefault(descriptor, []).append(hostname)

    return [
        RoutingGroup(
            instance=descriptor,
            repositories=tuple(repos),
            features=features,
            min_headroom=min_headroom,
            hostnames=tuple(hostnames[descriptor]),
        )
        for descriptor, repos in members.items()
    ]


__all__ = [
    "SecretSource",
    "host_matches",
    "match_instance",
    "unmatched_descriptor",
    "descriptor_for_host",
    "credential_for",
    "credential_for_host",
    "dedupe_repositories",
    "route_repositories",
]
