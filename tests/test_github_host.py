"""Tests for ghas_enablement.host.github against a mocked GitHubSession.

Run with coverage:
    pytest tests/test_github_host.py --maxfail=1 -v --cov=ghas_enablement.host.github --cov-report=term-missing
"""

import datetime as dt
from unittest.mock import MagicMock

import pytest

from ghas_enablement.host import github
from ghas_enablement.host.base import HostError
from ghas_enablement.planning.committers import analyze_committers
from ghas_enablement.planning.licensing import LicenseAuthorityUnreachable, fetch_license_snapshot
from ghas_enablement.planning.models import (
    ContainerRef,
    Credential,
    FeatureKind,
    FeatureSelection,
    ReasonCode,
    RepositoryRef,
)

CRED = Credential(key="GHES_TOKEN_1", api_url="https://ghes.example.com/api/v3", token="tok")
REPO = RepositoryRef("ghes.example.com", "org1", "repoA")


def _failing_pages(error: HostError):
    raise error
    yield  # pragma: no cover


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def host(session):
    return github.GitHubRepoHost(session_factory=lambda api_url, token: session)


def test_sessions_are_cached_per_credential():
    factory = MagicMock(side_effect=lambda api_url, token: MagicMock(name=token))
    host = github.GitHubRepoHost(session_factory=factory)
    assert host._session(CRED) is host._session(CRED)
    other = Credential(key="X", api_url=CRED.api_url, token="other")
    assert host._session(other) is not host._session(CRED)
    assert factory.call_count == 2


def test_repository_from_payload_validates_full_name():
    repo = github.repository_from_payload("ghes.example.com", {"full_name": "org1/repoB"})
    assert repo == RepositoryRef("ghes.example.com", "org1", "repoB")
    for bad in ({"full_name": "no-slash"}, {}, "string"):
        with pytest.raises(HostError) as excinfo:
            github.repository_from_payload("ghes.example.com", bad)
        assert excinfo.value.reason is ReasonCode.MALFORMED_RESPONSE


def test_list_repositories_for_organization(host, session):
    session.iter_pages.return_value = iter([[{"full_name": "org1/a"}, {"full_name": "org1/b"}], [{"full_name": "org1/c"}]])
    pages = list(host.list_repositories(ContainerRef("ghes.example.com", "org1"), CRED))
    assert [[repo.name for repo in page] for page in pages] == [["a", "b"], ["c"]]
    session.iter_pages.assert_called_once_with(
        "/orgs/org1/repos", {"type": "all"}, quiet_statuses=github.NOT_FOUND_STATUSES
    )


def test_list_repositories_falls_back_to_user(host, session):
    session.iter_pages.side_effect = [
        _failing_pages(HostError(ReasonCode.NOT_FOUND, "Not Found", 404)),
        iter([[{"full_name": "octocat/hello"}]]),
    ]
    pages = list(host.list_repositories(ContainerRef("ghes.example.com", "octocat"), CRED))
    assert pages == [[RepositoryRef("ghes.example.com", "octocat", "hello")]]
    assert session.iter_pages.call_args_list[1].args[0] == "/users/octocat/repos"


def test_list_repositories_propagates_other_errors(host, session):
    session.iter_pages.side_effect = [_failing_pages(HostError(ReasonCode.FORBIDDEN, "denied", 403))]
    with pytest.raises(HostError) as excinfo:
        list(host.list_repositories(ContainerRef("ghes.example.com", "org1"), CRED))
    assert excinfo.value.reason is ReasonCode.FORBIDDEN


def test_list_commits_extracts_identities(host, session):
    session.iter_pages.return_value = iter(
        [
            [
                {"commit": {"author": {"email": "a@x.io"}, "committer": {"email": "noreply@github.com"}}},
                {"commit": {"author": None}},
            ]
        ]
    )
    since = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    pages = list(host.list_commits(REPO, CRED, since))
    assert pages[0][0].author_email == "a@x.io"
    assert pages[0][0].committer_email == "noreply@github.com"
    assert pages[0][1].author_email is None
    path, params = session.iter_pages.call_args.args
    assert path == "/repos/org1/repoA/commits"
    assert params == {"since": "2026-01-01T00:00:00Z"}
    assert session.iter_pages.call_args.kwargs == {"quiet_statuses": github.EMPTY_REPOSITORY_STATUSES}


def test_list_commits_treats_conflict_as_empty(host, session):
    session.iter_pages.return_value = _failing_pages(HostError(ReasonCode.UNPROCESSABLE, "Git Repository is empty.", 409))
    assert list(host.list_commits(REPO, CRED, dt.datetime.now(dt.timezone.utc))) == []

    session.iter_pages.return_value = _failing_pages(HostError(ReasonCode.NOT_FOUND, "Not Found", 404))
    with pytest.raises(HostError):
        list(host.list_commits(REPO, CRED, dt.datetime.now(dt.timezone.utc)))


def test_get_billing_snapshot_collects_pages(host, session):
    session.iter_pages.return_value = iter(
        [
            {
                "purchased_advanced_security_committers": 10,
                "total_advanced_security_committers": 4,
                "repositories": [
                    {"advanced_security_committers_breakdown": [{"user_login": "a", "last_pushed_email": "A@x.io "}]},
                    {"advanced_security_committers_breakdown": []},
                ],
            },
            {
                "purchased_advanced_security_committers": 10,
                "total_advanced_security_committers": 4,
                "repositories": [
                    {"advanced_security_committers_breakdown": [{"user_login": "b", "last_pushed_email": "b@x.io"}]}
                ],
            },
        ]
    )
    snapshot = host.get_billing_snapshot("acme", CRED, "secret_protection")
    assert snapshot.total_seats == 10
    assert snapshot.used_seats == 4
    assert snapshot.licensed_identities == frozenset({"a@x.io", "b@x.io"})
    args, kwargs = session.iter_pages.call_args
    assert args == (
        "/enterprises/acme/settings/billing/advanced-security",
        {"advanced_security_product": "secret_protection"},
    )
    assert kwargs == {"items_key": "repositories"}


def test_get_billing_snapshot_without_cap(host, session):
    session.iter_pages.return_value = iter([{"total_advanced_security_committers": 2, "repositories": []}])
    snapshot = host.get_billing_snapshot("acme", CRED)
    assert snapshot.is_unlimited
    assert session.iter_pages.call_args.args[1] == {}


def test_get_billing_snapshot_rejects_non_numeric(host, session):
    session.iter_pages.return_value = iter([{"purchased_advanced_security_committers": "lots", "repositories": []}])
    with pytest.raises(HostError) as excinfo:
        host.get_billing_snapshot("acme", CRED)
    assert excinfo.value.reason is ReasonCode.MALFORMED_RESPONSE


def test_ensure_security_capability_already_enabled(host, session):
    session.request_json.return_value = {"security_and_analysis": {"advanced_security": {"status": "enabled"}}}
    assert host.ensure_security_capability(REPO, CRED) == github.ALREADY_ENABLED
    session.request_json.assert_called_once_with("GET", "/repos/org1/repoA")


def test_ensure_security_capability_enables(host, session):
    session.request_json.side_effect = [{"security_and_analysis": None}, {}]
    assert host.ensure_security_capability(REPO, CRED) == github.ENABLED
    method, path = session.request_json.call_args.args
    assert (method, path) == ("PATCH", "/repos/org1/repoA")
    assert session.request_json.call_args.kwargs["json"] == {
        "security_and_analysis": {"advanced_security": {"status": "enabled"}}
    }


@pytest.mark.parametrize(
    "feature, method, path",
    [
        (FeatureKind.SECRET_SCANNING, "PATCH", "/repos/org1/repoA"),
        (FeatureKind.CODE_SCANNING, "PATCH", "/repos/org1/repoA/code-scanning/default-setup"),
        (FeatureKind.DEPENDABOT_ALERTS, "PUT", "/repos/org1/repoA/vulnerability-alerts"),
    ],
)
def test_enable_feature_endpoints(host, session, feature, method, path):
    assert host.enable_feature(REPO, feature, CRED) == github.ENABLED
    assert session.request_json.call_args.args == (method, path)


def test_enable_feature_propagates_host_errors(host, session):
    session.request_json.side_effect = HostError(ReasonCode.FORBIDDEN, "GHAS not licensed", 403)
    with pytest.raises(HostError) as excinfo:
        host.enable_feature(REPO, FeatureKind.CODE_SCANNING, CRED)
    assert excinfo.value.reason is ReasonCode.FORBIDDEN


@pytest.mark.parametrize(
    "entry",
    [
        "garbage",
        {"commit": "not-an-object"},
        {"commit": {"author": "bot"}},
        {"commit": {"author": {"email": "a@x.io"}, "committer": ["x"]}},
        {"commit": {"author": {"email": 42}}},
    ],
)
def test_commit_identity_rejects_malformed_shapes(entry):
    with pytest.raises(HostError) as excinfo:
        github.commit_identity(entry)
    assert excinfo.value.reason is ReasonCode.MALFORMED_RESPONSE


def test_malformed_commits_fail_only_their_repository(host, session):
    good = RepositoryRef("ghes.example.com", "org1", "repoA")
    bad = RepositoryRef("ghes.example.com", "org1", "repoB")
    pages_by_path = {
        "/repos/org1/repoA/commits": [[{"commit": {"author": {"email": "Dev@x.io"}, "committer": None}}]],
        "/repos/org1/repoB/commits": [[{"commit": {"author": "bot"}}]],
    }
    session.iter_pages.side_effect = lambda path, params, **kwargs: iter(pages_by_path[path])

    analysis = analyze_committers([good, bad], CRED, host, dt.datetime(2026, 7, 1, tzinfo=dt.timezone.utc), max_workers=2)
    assert analysis.identities == frozenset({"dev@x.io"})
    assert [(record.original_input, record.reason) for record in analysis.failures] == [
        (bad.url, ReasonCode.MALFORMED_RESPONSE)
    ]


@pytest.mark.parametrize(
    "repositories",
    [
        ["weird"],
        [{"advanced_security_committers_breakdown": "nobody"}],
        [{"advanced_security_committers_breakdown": ["a@x.io"]}],
    ],
)
def test_malformed_billing_entries_are_fatal_to_the_snapshot(host, session, ghec, repositories):
    session.iter_pages.return_value = iter(
        [
            {
                "purchased_advanced_security_committers": 5,
                "total_advanced_security_committers": 1,
                "repositories": repositories,
            }
        ]
    )
    with pytest.raises(HostError) as excinfo:
        host.get_billing_snapshot("acme", CRED)
    assert excinfo.value.reason is ReasonCode.MALFORMED_RESPONSE

    session.iter_pages.return_value = iter(
        [{"purchased_advanced_security_committers": 5, "repositories": repositories}]
    )
    with pytest.raises(LicenseAuthorityUnreachable) as fatal:
        fetch_license_snapshot(host, ghec, CRED, FeatureSelection(secret_scanning=True))
    assert fatal.value.cause_reason is ReasonCode.MALFORMED_RESPONSE
