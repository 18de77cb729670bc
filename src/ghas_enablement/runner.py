"""Entry points: the plan-and-execute pipeline and the command-line wrapper around it."""

from __future__ import annotations

import datetime as dt
import json
import sys
from functools import partial
from pathlib import Path
from typing import Any, Iterable, List, Optional

from .config import MAX_WORKERS, ConfigError, load_registry, parse_args, resolve_settings, settings_summary
from .host.base import RepoHost
from .host.github import GitHubRepoHost
from .intake import load_issue_request
from .planning.committers import commit_window_start
from .planning.diagnostics import Diagnostics
from .planning.executor import EnablementExecutor
from .planning.licensing import LicenseAuthorityUnreachable, LicensePlanner, fetch_license_snapshot
from .planning.models import FeatureSelection, GroupOutcome, InstanceRegistry, LicenseSnapshot, RunResult
from .planning.resolver import resolve_references
from .planning.router import SecretSource, credential_for, credential_for_host, route_repositories
from .report import render_fatal_report, render_run_report
from .secrets import CredentialStore

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_LICENSE_AUTHORITY = 2


def plan_and_execute(
    references: Iterable[str],
    features: FeatureSelection,
    min_headroom: int,
    skip_license_check: bool,
    dry_run: bool,
    *,
    registry: InstanceRegistry,
    host: RepoHost,
    credentials: SecretSource,
    diagnostics: Optional[Diagnostics] = None,
    max_workers: int = MAX_WORKERS,
    now: Optional[dt.datetime] = None,
) -> RunResult:
    """Resolve, route, plan, and (unless rejected or dry-run) enable.

    Raises LicenseAuthorityUnreachable when the shared billing snapshot cannot
    be fetched; every other failure is reported in the result.
    """
    diagnostics = diagnostics or Diagnostics()
    lookup = partial(credential_for_host, registry=registry, credentials=credentials)

    resolution = resolve_references(references, host, lookup, diagnostics)
    groups = route_repositories(resolution.repositories, registry, features, min_headroom, diagnostics)

    # Every group draws on the same seat pool, so this fetch gates all planning.
    snapshot: Optional[LicenseSnapshot] = None
    if groups and not skip_license_check:
        authority = registry.license_authority
        snapshot = fetch_license_snapshot(
            host, authority, credential_for(authority, credentials), features, diagnostics
        )

    planner = LicensePlanner(
        host,
        since=commit_window_start(now),
        diagnostics=diagnostics,
        max_workers=max_workers,
        dry_run=dry_run,
    )
    executor = EnablementExecutor(host, diagnostics=diagnostics, max_workers=max_workers)

    outcomes: List[GroupOutcome] = []
    invalid = list(resolution.invalid)
    for group in groups:
        credential = credential_for(group.instance, credentials)
        plan = planner.plan(group, snapshot, skip_license_check, credential)
        invalid.extend(plan.analysis_failures)
        execution = executor.execute(plan, credential)
        outcomes.append(GroupOutcome(plan=plan, execution=execution))

    return RunResult(
        groups=tuple(outcomes),
        invalid_references=tuple(invalid),
        containers=resolution.containers,
        notes=tuple(diagnostics.lines()),
    )


def save_json(path: str | Path, data: Any) -> None:
    """Write JSON to disk using UTF-8 and deterministic formatting."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _write_report(text: str, path: Optional[Path]) -> None:
    if path is None:
        print(text)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    print(f"    report written -> {path}")


def main(argv: Optional[List[str]] = None, host: Optional[RepoHost] = None) -> int:
    """CLI entry point; returns the process exit code."""

    args = parse_args(argv)
    try:
        request = load_issue_request(args.issue_body)
        settings = resolve_settings(args, request)
        registry = load_registry(settings.config_path)
    except (ConfigError, OSError) as exc:
        print(f"[error] {exc}")
        return EXIT_USAGE

    if not settings.references:
        print("No repositories specified. Provide URLs as arguments or via --issue-body.")
        return EXIT_USAGE

    print(f"Processing {len(settings.references)} references... {settings_summary(settings)}")
    diagnostics = Diagnostics()
    try:
        result = plan_and_execute(
            settings.references,
            settings.features,
            settings.min_headroom,
            settings.skip_license_check,
            settings.dry_run,
            registry=registry,
            host=host or GitHubRepoHost(),
            credentials=CredentialStore.from_environment(),
            diagnostics=diagnostics,
            max_workers=settings.max_workers,
        )
    except LicenseAuthorityUnreachable as exc:
        diagnostics.flush()
        print(f"[error] {exc}")
        _write_report(render_fatal_report(exc), settings.report_path)
        return EXIT_LICENSE_AUTHORITY

    diagnostics.flush()
    _write_report(render_run_report(result), settings.report_path)
    if settings.json_out:
        save_json(settings.json_out, result.to_dict())

    approved = sum(1 for outcome in result.groups if outcome.plan.approved)
    print(
        f"\nProcessed {len(result.groups)} instance groups ({approved} approved), "
        f"{len(result.invalid_references)} invalid references."
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
