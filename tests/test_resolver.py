"""Tests for ghas_enablement.planning.resolver: URL parsing and container expansion.

Run with coverage:
    pytest tests/test_resolver.py --maxfail=1 -v --cov=ghas_enablement.planning.resolver --cov-report=term-missing
"""

import pytest

from ghas_enablement.host.base import HostError
from ghas_enablement.planning import resolver
from ghas_enablement.planning.diagnostics import Diagnostics
from ghas_enablement.planning.models import ContainerRef, Credential, ReasonCode, RepositoryRef

CRED = Credential(key="GHES_TOKEN_1", api_url="https://github.example.com/api/v3", token="t")


def _lookup(hostname):
    return CRED if hostname == "github.example.com" else None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://github.example.com/org1/repoA", RepositoryRef("github.example.com", "org1", "repoA")),
        ("https://GitHub.Example.com/org1/repoA.git", RepositoryRef("github.example.com", "org1", "repoA")),
        ("github.example.com/org1/repoA/tree/main", RepositoryRef("github.example.com", "org1", "repoA")),
        ("https://github.example.com/org1/", ContainerRef("github.example.com", "org1")),
        ("http://github.example.com/org1", ContainerRef("github.example.com", "org1")),
    ],
)
def test_parse_reference(raw, expected):
    assert resolver.parse_reference(raw) == expected


@pytest.mark.parametrize("raw", ["", "https://github.example.com", "ftp://github.example.com/o/r", "https:///o/r"])
def test_parse_reference_rejects_malformed(raw):
    with pytest.raises(ValueError):
        resolver.parse_reference(raw)


def test_resolve_expands_containers_across_pages(make_host):
    host = make_host(repositories={"org1": ["repoA", "repoB", "repoC"]}, page_size=2)
    result = resolver.resolve_references(
        ["https://github.example.com/org1", "https://github.example.com/org1/repoA"],
        host,
        _lookup,
    )
    assert [repo.name for repo in result.repositories] == ["repoA", "repoB", "repoC", "repoA"]
    assert result.containers == (ContainerRef("github.example.com", "org1"),)
    assert result.invalid == ()


def test_resolve_records_each_failure_once(make_host):
    diagnostics = Diagnostics()
    host = make_host(
        repositories={"org1": ["repoA"]},
        errors={("list_repositories", "locked"): HostError(ReasonCode.FORBIDDEN, "denied", 403)},
    )
    valid = [f"https://github.example.com/org1/repo{i}" for i in range(10)]
    raw = valid[:5] + ["https://"] + valid[5:] + [
        "  ",
        "https://github.example.com/missing",
        "https://github.example.com/locked",
        "https://other.example.org/team",
    ]
    result = resolver.resolve_references(raw, host, _lookup, diagnostics)

    assert len(result.repositories) == 10
    reasons = {record.original_input: record.reason for record in result.invalid}
    assert [record.original_input for record in result.invalid].count("https://") == 1
    assert reasons == {
        "https://": ReasonCode.MALFORMED,
        "https://github.example.com/missing": ReasonCode.NOT_FOUND,
        "https://github.example.com/locked": ReasonCode.FORBIDDEN,
        "https://other.example.org/team": ReasonCode.NO_CREDENTIAL,
    }
    # The unresolvable container never reaches the host.
    assert ("list_repositories", "team", "GHES_TOKEN_1") not in host.calls
    assert len(diagnostics.warnings) == 4
