"""Applies an approved plan repository by repository, recording every failure."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

from ..host.base import HostError, RepoHost
from .diagnostics import Diagnostics
from .models import (
    ActionOutcome,
    Credential,
    EnablementPlan,
    ExecutionResult,
    FeatureKind,
    FeatureSelection,
    ReasonCode,
    RepositoryOutcome,
    RepositoryRef,
)

PREREQUISITE_ACTION = "advanced_security"

# Execution statuses
COMPLETED = "completed"
COMPLETED_WITH_ERRORS = "completed_with_errors"
DRY_RUN = "dry_run"
NOT_APPROVED = "not_approved"
NO_FEATURES = "no_features"

# Action statuses besides what the host reports
PLANNED = "planned"
FAILED = "failed"
SKIPPED = "skipped"

ActionRunner = Callable[[RepositoryRef, str, Optional[Credential]], str]


def planned_actions(features: FeatureSelection) -> Tuple[str, ...]:
    """Ordered actions for one repository: the prerequisite, then each selected feature."""
    if features.is_empty:
        return ()
    return (PREREQUISITE_ACTION,) + tuple(kind.value for kind in features.kinds)


class EnablementExecutor:
    def __init__(
        self,
        host: RepoHost,
        *,
        diagnostics: Optional[Diagnostics] = None,
        max_workers: int = 1,
    ) -> None:
        self.host = host
        self.diagnostics = diagnostics or Diagnostics()
        self.max_workers = max_workers

    def execute(self, plan: EnablementPlan, credential: Optional[Credential]) -> ExecutionResult:
        group = plan.group
        name = group.instance.instance_name
        if not plan.approved:
            message = (
                f"not enough licenses: at least {group.min_headroom} must remain unused "
                f"(projected {plan.projected_available_seats})"
            )
            self.diagnostics.warn(f"instance '{name}': {message}; nothing enabled")
            return ExecutionResult(status=NOT_APPROVED, message=message)

        actions = planned_actions(group.features)
        if not actions:
            self.diagnostics.warn(f"instance '{name}': no features selected; nothing enabled")
            return ExecutionResult(status=NO_FEATURES, message="no features were selected for enablement")

        runner: ActionRunner = self._record_only if plan.dry_run else self._apply
        outcomes = self._run_all(group.repositories, actions, credential, runner)

        if plan.dry_run:
            status = DRY_RUN
        elif any(outcome.failed for outcome in outcomes):
            status = COMPLETED_WITH_ERRORS
        else:
            status = COMPLETED
        failed = sum(1 for outcome in outcomes if outcome.failed)
        self.diagnostics.note(
            f"instance '{name}': {status} for {len(outcomes)} repositories ({failed} with failures)"
        )
        return ExecutionResult(status=status, outcomes=tuple(outcomes))

    def _run_all(
        self,
        repositories: Sequence[RepositoryRef],
        actions: Tuple[str, ...],
        credential: Optional[Credential],
        runner: ActionRunner,
    ) -> List[RepositoryOutcome]:
        if not repositories:
            return []
        workers = max(1, min(self.max_workers, len(repositories)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            # map() preserves input order once every repository is done.
            return list(
                pool.map(lambda repo: self._run_repository(repo, actions, credential, runner), repositories)
            )

    def _run_repository(
        self,
        repository: RepositoryRef,
        actions: Tuple[str, ...],
        credential: Optional[Credential],
        runner: ActionRunner,
    ) -> RepositoryOutcome:
        results: List[ActionOutcome] = []
        blocked: Optional[ActionOutcome] = None
        for action in actions:
            if blocked is not None:
                results.append(
                    ActionOutcome(action, SKIPPED, blocked.reason, f"{PREREQUISITE_ACTION} could not be enabled")
                )
                continue
            try:
                status = runner(repository, action, credential)
            except HostError as exc:
                self.diagnostics.warn(f"{action} failed for {repository.full_name}: {exc}")
                outcome = ActionOutcome(action, FAILED, exc.reason, str(exc))
                results.append(outcome)
                if action == PREREQUISITE_ACTION:
                    blocked = outcome
                continue
            results.append(ActionOutcome(action, status))
        return RepositoryOutcome(repository=repository, actions=tuple(results))

    def _apply(self, repository: RepositoryRef, action: str, credential: Optional[Credential]) -> str:
        if credential is None:
            raise HostError(ReasonCode.NO_CREDENTIAL, f"no credential configured for {repository.hostname}")
        if action == PREREQUISITE_ACTION:
            return self.host.ensure_security_capability(repository, credential)
        return self.host.enable_feature(repository, FeatureKind(action), credential)

    @staticmethod
    def _record_only(repository: RepositoryRef, action: str, credential: Optional[Credential]) -> str:
        return PLANNED


__all__ = [
    "PREREQUISITE_ACTION",
    "COMPLETED",
    "COMPLETED_WITH_ERRORS",
    "DRY_RUN",
    "NOT_APPROVED",
    "NO_FEATURES",
    "PLANNED",
    "FAILED",
    "SKIPPED",
    "planned_actions",
    "EnablementExecutor",
]
