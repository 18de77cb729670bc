"""Immutable records shared by the resolver, router, planner, and executor."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple, Union

# Projected seat count for enterprises without a purchased seat cap.
UNLIMITED = math.inf

CODE_SECURITY_PRODUCT = "code_security"
SECRET_PROTECTION_PRODUCT = "secret_protection"

INSTANCE_KIND_CLOUD = "cloud"
INSTANCE_KIND_SERVER = "server"


class ReasonCode(str, Enum):
    """Why a reference, repository, or action could not be processed."""

    MALFORMED = "malformed"
    NO_CREDENTIAL = "no_credential"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    UNAUTHENTICATED = "unauthenticated"
    UNPROCESSABLE = "unprocessable"
    TRANSPORT_ERROR = "transport_error"
    MALFORMED_RESPONSE = "malformed_response"
    LICENSE_AUTHORITY_UNREACHABLE = "license_authority_unreachable"


class FeatureKind(str, Enum):
    SECRET_SCANNING = "secret_scanning"
    CODE_SCANNING = "code_scanning"
    DEPENDABOT_ALERTS = "dependabot_alerts"


class PlanBasis(str, Enum):
    """What an approval (or rejection) decision was based on."""

    SKIPPED = "skipped"
    UNLIMITED = "unlimited"
    HEADROOM = "headroom"
    BASE_HEADROOM = "base_headroom"


def normalize_identity(email: Optional[str]) -> str:
    """Lower-case and trim an email so differently-cased copies compare equal."""
    return (email or "").strip().lower()


@dataclass(frozen=True)
class RepositoryRef:
    """One concrete repository; the hostname is stored lower-cased."""

    hostname: str
    owner: str
    name: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "hostname", self.hostname.lower())

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://{self.hostname}/{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class ContainerRef:
    """An organization (or user) whose repositories are all requested."""

    hostname: str
    owner: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "hostname", self.hostname.lower())

    @property
    def url(self) -> str:
        return f"https://{self.hostname}/{self.owner}"

    def __str__(self) -> str:
        return self.url


@dataclass(frozen=True)
class Credential:
    """A resolved secret together with the API base it authenticates against."""

    key: str
    api_url: str
    token: str = field(repr=False)


@dataclass(frozen=True)
class InstanceDescriptor:
    hostname: str
    instance_name: str
    api_url: str
    credential_key: str
    kind: str = INSTANCE_KIND_SERVER
    enterprise: Optional[str] = None
    unmatched: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "hostname", self.hostname.lower())

    @property
    def is_cloud(self) -> bool:
        return self.kind == INSTANCE_KIND_CLOUD


@dataclass(frozen=True)
class InstanceRegistry:
    """Configured hosting instances plus the enterprise that owns seat accounting."""

    license_authority: InstanceDescriptor
    instances: Tuple[InstanceDescriptor, ...] = ()

    @property
    def routing_order(self) -> Tuple[InstanceDescriptor, ...]:
        return tuple(self.instances) + (self.license_authority,)


@dataclass(frozen=True)
class FeatureSelection:
    secret_scanning: bool = False
    code_scanning: bool = False
    dependabot_alerts: bool = False

    @property
    def kinds(self) -> Tuple[FeatureKind, ...]:
        selected = []
        if self.secret_scanning:
            selected.append(FeatureKind.SECRET_SCANNING)
        if self.code_scanning:
            selected.append(FeatureKind.CODE_SCANNING)
        if self.dependabot_alerts:
            selected.append(FeatureKind.DEPENDABOT_ALERTS)
        return tuple(selected)

    @property
    def is_empty(self) -> bool:
        return not self.kinds

    @property
    def billing_product_hint(self) -> str:
        """Billing product to request when the API insists on one."""
        if self.secret_scanning and not self.code_scanning:
            return SECRET_PROTECTION_PRODUCT
        return CODE_SECURITY_PRODUCT

    @classmethod
    def from_kinds(cls, kinds: Iterable[FeatureKind]) -> "FeatureSelection":
        chosen = set(kinds)
        return cls(
            secret_scanning=FeatureKind.SECRET_SCANNING in chosen,
            code_scanning=FeatureKind.CODE_SCANNING in chosen,
            dependabot_alerts=FeatureKind.DEPENDABOT_ALERTS in chosen,
        )

    def to_dict(self) -> Dict[str, bool]:
        return {
            "secret_scanning": self.secret_scanning,
            "code_scanning": self.code_scanning,
            "dependabot_alerts": self.dependabot_alerts,
        }


@dataclass(frozen=True)
class RoutingGroup:
    instance: InstanceDescriptor
    repositories: Tuple[RepositoryRef, ...]
    features: FeatureSelection
    min_headroom: int
    hostnames: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CommitIdentity:
    author_email: Optional[str] = None
    committer_email: Optional[str] = None


@dataclass(frozen=True)
class LicenseSnapshot:
    """Enterprise-wide seat accounting; zero or missing total seats means unlimited."""

    total_seats: Optional[int]
    used_seats: int = 0
    licensed_identities: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        normalized = frozenset(
            normalize_identity(email) for email in self.licensed_identities if normalize_identity(email)
        )
        object.__setattr__(self, "licensed_identities", normalized)

    @property
    def is_unlimited(self) -> bool:
        return not self.total_seats


@dataclass(frozen=True)
class InvalidReferenceRecord:
    original_input: str
    reason: ReasonCode
    detail: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "input": self.original_input,
            "reason": self.reason.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class EnablementPlan:
    """Go/no-go decision for one routing group; never mutated after creation."""

    group: RoutingGroup
    approved: bool
    basis: PlanBasis
    estimated_seats_needed: int = 0
    # None when the license check was skipped and nothing was projected.
    projected_available_seats: Union[int, float, None] = None
    new_identities: FrozenSet[str] = frozenset()
    observed_identities: FrozenSet[str] = frozenset()
    total_seats: Optional[int] = None
    used_seats: Optional[int] = None
    dry_run: bool = False
    analysis_failures: Tuple[InvalidReferenceRecord, ...] = ()

    @property
    def license_check_skipped(self) -> bool:
        return self.basis is PlanBasis.SKIPPED

    @property
    def is_unlimited(self) -> bool:
        return self.projected_available_seats == UNLIMITED

    def to_dict(self) -> Dict[str, Any]:
        projected: Any = self.projected_available_seats
        if self.is_unlimited:
            projected = "unlimited"
        return {
            "instance": self.group.instance.instance_name,
            "hostnames": list(self.group.hostnames),
            "repositories": [repo.url for repo in self.group.repositories],
            "features": self.group.features.to_dict(),
            "min_headroom": self.group.min_headroom,
            "approved": self.approved,
            "basis": self.basis.value,
            "dry_run": self.dry_run,
            "total_seats": self.total_seats,
            "used_seats": self.used_seats,
            "estimated_seats_needed": self.estimated_seats_needed,
            "projected_available_seats": projected,
            "new_identities": sorted(self.new_identities),
        }


@dataclass(frozen=True)
class ActionOutcome:
    action: str
    status: str
    reason: Optional[ReasonCode] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "status": self.status,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class RepositoryOutcome:
    repository: RepositoryRef
    actions: Tuple[ActionOutcome, ...] = ()

    @property
    def failed(self) -> bool:
        return any(action.reason is not None for action in self.actions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository.url,
            "actions": [action.to_dict() for action in self.actions],
        }


@dataclass(frozen=True)
class ExecutionResult:
    status: str
    outcomes: Tuple[RepositoryOutcome, ...] = ()
    message: str = ""

    @property
    def failures(self) -> Tuple[RepositoryOutcome, ...]:
        return tuple(outcome for outcome in self.outcomes if outcome.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass(frozen=True)
class GroupOutcome:
    plan: EnablementPlan
    execution: ExecutionResult

    def to_dict(self) -> Dict[str, Any]:
        return {"plan": self.plan.to_dict(), "execution": self.execution.to_dict()}


@dataclass(frozen=True)
class RunResult:
    groups: Tuple[GroupOutcome, ...] = ()
    invalid_references: Tuple[InvalidReferenceRecord, ...] = ()
    containers: Tuple[ContainerRef, ...] = ()
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [group.to_dict() for group in self.groups],
            "invalid_references": [record.to_dict() for record in self.invalid_references],
            "organizations": [container.url for container in self.containers],
            "notes": list(self.notes),
        }


__all__ = [
    "UNLIMITED",
    "CODE_SECURITY_PRODUCT",
    "SECRET_PROTECTION_PRODUCT",
    "INSTANCE_KIND_CLOUD",
    "INSTANCE_KIND_SERVER",
    "ReasonCode",
    "FeatureKind",
    "PlanBasis",
    "normalize_identity",
    "RepositoryRef",
    "ContainerRef",
    "Credential",
    "InstanceDescriptor",
    "InstanceRegistry",
    "FeatureSelection",
    "RoutingGroup",
    "CommitIdentity",
    "LicenseSnapshot",
    "InvalidReferenceRecord",
    "EnablementPlan",
    "ActionOutcome",
    "RepositoryOutcome",
    "ExecutionResult",
    "GroupOutcome",
    "RunResult",
]
