"""License-cost estimation and the go/no-go decision for each routing group."""

from __future__ import annotations

import datetime as dt
from typing import FrozenSet, Iterable, Optional

from ..host.base import HostError, RepoHost
from .committers import analyze_committers
from .diagnostics import Diagnostics
from .models import (
    UNLIMITED,
    Credential,
    EnablementPlan,
    FeatureSelection,
    InstanceDescriptor,
    InvalidReferenceRecord,
    LicenseSnapshot,
    PlanBasis,
    ReasonCode,
    RoutingGroup,
    normalize_identity,
)

PRODUCT_PARAMETER = "advanced_security_product"


class LicenseAuthorityUnreachable(RuntimeError):
    """The shared billing snapshot could not be fetched; no group can be planned."""

    reason = ReasonCode.LICENSE_AUTHORITY_UNREACHABLE

    def __init__(self, message: str, cause_reason: Optional[ReasonCode] = None) -> None:
        super().__init__(message)
        self.cause_reason = cause_reason


def requires_product_parameter(error: HostError) -> bool:
    """True when the billing API rejected a request for lacking a product selector."""
    return error.reason is ReasonCode.UNPROCESSABLE and PRODUCT_PARAMETER in str(error)


def fetch_license_snapshot(
    host: RepoHost,
    authority: InstanceDescriptor,
    credential: Optional[Credential],
    features: FeatureSelection,
    diagnostics: Optional[Diagnostics] = None,
) -> LicenseSnapshot:
    """Fetch enterprise seat accounting, retrying once with a product selector if required."""
    diagnostics = diagnostics or Diagnostics()
    enterprise = authority.enterprise or authority.instance_name
    if credential is None:
        raise LicenseAuthorityUnreachable(
            f"no credential configured under {authority.credential_key} for enterprise {enterprise}",
            ReasonCode.NO_CREDENTIAL,
        )

    try:
        snapshot = host.get_billing_snapshot(enterprise, credential)
    except HostError as exc:
        if not requires_product_parameter(exc):
            raise LicenseAuthorityUnreachable(
                f"billing data for enterprise {enterprise} unavailable: {exc}", exc.reason
            ) from exc
        product = features.billing_product_hint
        diagnostics.note(f"billing API requires a product; retrying with {PRODUCT_PARAMETER}={product}")
        try:
            snapshot = host.get_billing_snapshot(enterprise, credential, product)
        except HostError as retry_exc:
            raise LicenseAuthorityUnreachable(
                f"billing data for enterprise {enterprise} ({product}) unavailable: {retry_exc}",
                retry_exc.reason,
            ) from retry_exc

    if snapshot.is_unlimited:
        diagnostics.note(f"enterprise {enterprise} reports no seat cap; treating licenses as unlimited")
    else:
        diagnostics.note(
            f"enterprise {enterprise}: {snapshot.used_seats}/{snapshot.total_seats} seats used, "
            f"{len(snapshot.licensed_identities)} licensed committers"
        )
    return snapshot


def evaluate_plan(
    group: RoutingGroup,
    snapshot: Optional[LicenseSnapshot],
    *,
    skip_check: bool = False,
    observed: Iterable[str] = (),
    dry_run: bool = False,
    failures: Iterable[InvalidReferenceRecord] = (),
) -> EnablementPlan:
    """Pure decision function: same inputs, same plan."""
    failures = tuple(failures)
    if skip_check:
        return EnablementPlan(
            group=group,
            approved=True,
            basis=PlanBasis.SKIPPED,
            dry_run=dry_run,
            analysis_failures=failures,
        )
    if snapshot is None:
        raise ValueError("a license snapshot is required unless the license check is skipped")

    observed_ids: FrozenSet[str] = frozenset(
        normalize_identity(email) for email in observed if normalize_identity(email)
    )
    new_ids = observed_ids - snapshot.licensed_identities
    common = dict(
        group=group,
        total_seats=snapshot.total_seats,
        used_seats=snapshot.used_seats,
        dry_run=dry_run,
        analysis_failures=failures,
    )

    # Checked before any subtraction: a zero seat total is not a real count.
    if snapshot.is_unlimited:
        return EnablementPlan(
            approved=True,
            basis=PlanBasis.UNLIMITED,
            estimated_seats_needed=len(new_ids),
            projected_available_seats=UNLIMITED,
            new_identities=new_ids,
            observed_identities=observed_ids,
            **common,
        )

    base_available = snapshot.total_seats - snapshot.used_seats
    if not group.repositories:
        return EnablementPlan(
            approved=base_available >= group.min_headroom,
            basis=PlanBasis.BASE_HEADROOM,
            projected_available_seats=base_available,
            **common,
        )

    projected = base_available - len(new_ids)
    return EnablementPlan(
        approved=projected >= group.min_headroom,
        basis=PlanBasis.HEADROOM,
        estimated_seats_needed=len(new_ids),
        projected_available_seats=projected,
        new_identities=new_ids,
        observed_identities=observed_ids,
        **common,
    )


class LicensePlanner:
    """Runs committer analysis where it is needed, then evaluates the plan."""

    def __init__(
        self,
        host: RepoHost,
        *,
        since: dt.datetime,
        diagnostics: Optional[Diagnostics] = None,
        max_workers: int = 1,
        dry_run: bool = False,
    ) -> None:
        self.host = host
        self.since = since
        self.diagnostics = diagnostics or Diagnostics()
        self.max_workers = max_workers
        self.dry_run = dry_run

    def plan(
        self,
        group: RoutingGroup,
        snapshot: Optional[LicenseSnapshot],
        skip_check: bool = False,
        credential: Optional[Credential] = None,
    ) -> EnablementPlan:
        name = group.instance.instance_name
        if skip_check:
            self.diagnostics.note(f"license check skipped for instance '{name}'")
            return evaluate_plan(group, snapshot, skip_check=True, dry_run=self.dry_run)
        if not group.repositories:
            self.diagnostics.note(f"no repositories for instance '{name}'; using base license check")
            return evaluate_plan(group, snapshot, dry_run=self.dry_run)

        analysis = analyze_committers(
            group.repositories,
            credential,
            self.host,
            self.since,
            diagnostics=self.diagnostics,
            max_workers=self.max_workers,
        )
        plan = evaluate_plan(
            group,
            snapshot,
            observed=analysis.identities,
            dry_run=self.dry_run,
            failures=analysis.failures,
        )
        self.diagnostics.note(
            f"instance '{name}': {len(plan.observed_identities)} committers observed, "
            f"{plan.estimated_seats_needed} need new licenses, approved={plan.approved}"
        )
        return plan


__all__ = [
    "PRODUCT_PARAMETER",
    "LicenseAuthorityUnreachable",
    "requires_product_parameter",
    "fetch_license_snapshot",
    "evaluate_plan",
    "LicensePlanner",
]
