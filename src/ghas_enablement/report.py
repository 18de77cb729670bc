"""Markdown rendering of enablement results, one section per hosting instance."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from .planning.executor import DRY_RUN, NO_FEATURES, NOT_APPROVED
from .planning.models import (
    ContainerRef,
    EnablementPlan,
    FeatureKind,
    GroupOutcome,
    InvalidReferenceRecord,
    RunResult,
)

MAX_LISTED_COMMITTERS = 10

FEATURE_TITLES = {
    FeatureKind.SECRET_SCANNING: "Secret Scanning",
    FeatureKind.CODE_SCANNING: "Code Scanning (default setup)",
    FeatureKind.DEPENDABOT_ALERTS: "Dependabot Alerts",
}


def _seats(value) -> str:
    if value is None:
        return "n/a"
    if value == float("inf"):
        return "unlimited"
    return str(value)


def _license_section(plan: EnablementPlan) -> List[str]:
    if plan.license_check_skipped:
        return [
            "**License Check: SKIPPED**",
            "",
            "License check was skipped as requested; license accounting is managed externally.",
            "",
        ]

    lines = [
        "**License Summary:**",
        f"- Total GHAS licenses: {_seats(plan.total_seats) if plan.total_seats else 'unlimited'}",
        f"- Used GHAS licenses: {_seats(plan.used_seats)}",
        f"- New committers requiring licenses: {len(plan.new_identities)}",
        f"- Estimated licenses needed: {plan.estimated_seats_needed}",
    ]
    new = sorted(plan.new_identities)
    if 0 < len(new) <= MAX_LISTED_COMMITTERS:
        lines.append("")
        lines.append("**New committer emails:**")
        lines.extend(f"- {email}" for email in new)
        lines.append("")
    elif len(new) > MAX_LISTED_COMMITTERS:
        lines.append(f"- {len(new)} unique committers identified (too many to list)")
    lines.append(f"- Available GHAS licenses after enablement: {_seats(plan.projected_available_seats)}")
    lines.append(f"- Minimum required remaining licenses: {plan.group.min_headroom}")
    lines.append(f"- Decision basis: {plan.basis.value}")
    lines.append("")
    return lines


def render_group_report(outcome: GroupOutcome, containers: Sequence[ContainerRef] = ()) -> str:
    plan = outcome.plan
    group = plan.group
    execution = outcome.execution
    hostnames = ", ".join(group.hostnames) or group.instance.hostname

    lines = [f"## GHAS Enablement Results for {hostnames}", ""]
    lines.append(f"Instance: `{group.instance.instance_name}` (auth: `{group.instance.credential_key}`)")
    if group.instance.unmatched:
        lines.append("")
        lines.append("⚠️ No configured instance matches this hostname; the fallback credential was used.")
    lines.append("")
    if plan.dry_run:
        lines.append("**DRY RUN:** nothing was changed; the actions below show what would be attempted.")
        lines.append("")

    lines.extend(_license_section(plan))

    if execution.status == NOT_APPROVED:
        lines.append(
            f"⚠️ Not enough GHAS licenses available. Need to maintain at least "
            f"{group.min_headroom} unused licenses."
        )
        return "\n".join(lines) + "\n"
    if execution.status == NO_FEATURES:
        lines.append("⚠️ No GHAS features were selected for enablement.")
        return "\n".join(lines) + "\n"

    heading = "Features Planned" if execution.status == DRY_RUN else "Features Enabled"
    lines.append(f"### {heading}")
    lines.extend(f"- ✅ {FEATURE_TITLES[kind]}" for kind in group.features.kinds)

    relevant = [c for c in containers if c.hostname in group.hostnames]
    if relevant:
        lines.append("")
        lines.append("### Organization(s)")
        lines.extend(f"- {container.url}" for container in relevant)

    lines.append("")
    lines.append("### Repositories")
    for repo_outcome in execution.outcomes:
        if repo_outcome.failed:
            problems = "; ".join(
                f"{action.action}: {action.status} ({action.reason.value})"
                for action in repo_outcome.actions
                if action.reason is not None
            )
            lines.append(f"- ❌ {repo_outcome.repository.url}: {problems}")
        else:
            done = ", ".join(f"{action.action}: {action.status}" for action in repo_outcome.actions)
            lines.append(f"- {repo_outcome.repository.url} ({done})")
    return "\n".join(lines) + "\n"


def render_invalid_references(records: Iterable[InvalidReferenceRecord]) -> str:
    records = list(records)
    if not records:
        return ""
    lines = ["## Invalid references", ""]
    for record in records:
        detail = f" ({record.detail})" if record.detail else ""
        lines.append(f"- `{record.original_input}`: {record.reason.value}{detail}")
    return "\n".join(lines) + "\n"


def render_run_report(result: RunResult) -> str:
    """Full report: every group, then every invalid reference with its reason."""
    sections = [render_group_report(outcome, result.containers) for outcome in result.groups]
    if not result.groups:
        sections.append("## GHAS Enablement Results\n\nNo repositories could be resolved from the request.\n")
    invalid = render_invalid_references(result.invalid_references)
    if invalid:
        sections.append(invalid)
    return "\n".join(sections)


def render_fatal_report(error: Exception) -> str:
    return (
        "## GHAS Enablement Results\n\n"
        "❌ The license authority could not be reached, so no repositories were changed.\n\n"
        f"- Error: {error}\n"
    )


__all__ = [
    "MAX_LISTED_COMMITTERS",
    "render_group_report",
    "render_invalid_references",
    "render_run_report",
    "render_fatal_report",
]
