"""Parses a submitted enablement request form into a typed request."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .config import DEFAULT_MIN_HEADROOM, ConfigError
from .planning.models import FeatureSelection

NO_RESPONSE = "_No response_"

REPOSITORIES_RE = re.compile(
    r"^###\s*Repository(?: or Organization)? URLs\s*$(?P<body>.*?)(?=^###|\Z)",
    flags=re.MULTILINE | re.DOTALL,
)
FIELD_RE_TEMPLATE = r"^###\s*{label}\s*\n+\s*(?P<value>[^\n]*)"
LEADING_INT_RE = re.compile(r"\s*(\d+)")

FEATURE_LABELS = {
    "secret scanning": "secret_scanning",
    "code scanning": "code_scanning",
    "dependabot alerts": "dependabot_alerts",
}


@dataclass(frozen=True)
class EnablementRequest:
    references: Tuple[str, ...]
    features: FeatureSelection
    min_headroom: int = DEFAULT_MIN_HEADROOM
    skip_license_check: bool = False
    dry_run: bool = False


def _field(body: str, label: str) -> str:
    pattern = FIELD_RE_TEMPLATE.format(label=re.escape(label))
    match = re.search(pattern, body, flags=re.MULTILINE)
    if not match:
        return ""
    value = match.group("value").strip()
    if value == NO_RESPONSE or value.startswith("###"):
        return ""
    return value


def parse_references(body: str) -> List[str]:
    match = REPOSITORIES_RE.search(body or "")
    if not match:
        return []
    refs = []
    for line in match.group("body").splitlines():
        line = line.strip().lstrip("-*").strip()
        # Form placeholders sometimes carry a trailing note, e.g. "(all repositories in this org)".
        line = line.split(" ", 1)[0] if line else line
        if line and line != NO_RESPONSE:
            refs.append(line)
    return refs


def parse_features(raw: str) -> FeatureSelection:
    lowered = (raw or "").lower()
    flags = {attr: label in lowered for label, attr in FEATURE_LABELS.items()}
    return FeatureSelection(**flags)


def parse_min_headroom(raw: str) -> int:
    """Leading positive integer ("5 licenses" -> 5), or the default for anything else."""
    match = LEADING_INT_RE.match(raw or "")
    if not match:
        return DEFAULT_MIN_HEADROOM
    value = int(match.group(1))
    return value if value > 0 else DEFAULT_MIN_HEADROOM


def _is_yes(raw: str) -> bool:
    return (raw or "").strip().lower() == "yes"


def parse_issue_body(body: str) -> EnablementRequest:
    """Extract references, features, headroom, and flags from the form's Markdown."""
    body = (body or "").replace("\r\n", "\n")
    return EnablementRequest(
        references=tuple(parse_references(body)),
        features=parse_features(_field(body, "GHAS Features to Enable")),
        min_headroom=parse_min_headroom(_field(body, "Minimum Remaining Licenses (optional)")),
        skip_license_check=_is_yes(_field(body, "Skip License Check")),
        dry_run=_is_yes(_field(body, "Dry Run Mode")),
    )


def load_issue_request(path: Optional[str | Path]) -> Optional[EnablementRequest]:
    if not path:
        return None
    issue_path = Path(path).expanduser()
    try:
        text = issue_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigError(f"issue body {issue_path} is not valid UTF-8: {exc}") from exc
    return parse_issue_body(text)


__all__ = [
    "EnablementRequest",
    "parse_references",
    "parse_features",
    "parse_min_headroom",
    "parse_issue_body",
    "load_issue_request",
]
