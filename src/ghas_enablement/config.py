"""Central configuration for the GHAS enablement workflow: constants, instance registry, CLI."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import yaml

from .planning.models import (
    INSTANCE_KIND_CLOUD,
    INSTANCE_KIND_SERVER,
    FeatureSelection,
    InstanceDescriptor,
    InstanceRegistry,
)

if TYPE_CHECKING:
    from .intake import EnablementRequest

USER_AGENT = "ghas-enablement/1.0"
DEFAULT_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
PER_PAGE = 100
REQUEST_TIMEOUT = 90
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "6"))
BACKOFF_BASE_SEC = 2
MAX_WAIT_ON_403 = int(os.getenv("MAX_WAIT_ON_403", "180"))
COMMIT_WINDOW_DAYS = int(os.getenv("COMMIT_WINDOW_DAYS", "90"))
MAX_WORKERS = int(os.getenv("MAX_WORKERS", "4"))
DEFAULT_MIN_HEADROOM = 1
DEFAULT_CONFIG_PATH = os.getenv("GHAS_CONFIG", "config.yaml")

# Credential used for hostnames that match no configured instance.
FALLBACK_CREDENTIAL_KEY = "GH_ENTERPRISE_TOKEN"
UNMATCHED_INSTANCE_NAME = "unmatched"


class ConfigError(ValueError):
    """Raised when the instance registry or CLI input cannot be used."""


def hostname_from_api_url(api_url: str) -> str:
    """Derive the web hostname an API URL serves (api.github.com -> github.com)."""
    host = (urlparse(api_url).hostname or "").lower()
    if not host:
        raise ConfigError(f"API URL has no hostname: {api_url!r}")
    if host.startswith("api."):
        host = host[len("api."):]
    return host


def _descriptor_from_entry(entry: Any, kind: str, section: str) -> InstanceDescriptor:
    if not isinstance(entry, dict):
        raise ConfigError(f"{section}: expected a mapping, got {type(entry).__name__}")
    missing = [key for key in ("name", "api_url", "auth_var") if not entry.get(key)]
    if missing:
        raise ConfigError(f"{section}: missing {', '.join(missing)}")

    api_url = str(entry["api_url"]).rstrip("/")
    hostname = str(entry.get("hostname") or hostname_from_api_url(api_url))
    return InstanceDescriptor(
        hostname=hostname,
        instance_name=str(entry["name"]),
        api_url=api_url,
        credential_key=str(entry["auth_var"]),
        kind=str(entry.get("kind") or kind),
        enterprise=entry.get("enterprise") or (entry["name"] if kind == INSTANCE_KIND_CLOUD else None),
    )


def parse_registry(data: Any) -> InstanceRegistry:
    """Build an InstanceRegistry from the parsed `config.yaml` document."""
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping with a 'ghec' section")
    if not data.get("ghec"):
        raise ConfigError("configuration is missing the 'ghec' license authority section")

    authority = _descriptor_from_entry(data["ghec"], INSTANCE_KIND_CLOUD, "ghec")
    instances: List[InstanceDescriptor] = []
    for index, entry in enumerate(data.get("ghes_instances") or []):
        instances.append(_descriptor_from_entry(entry, INSTANCE_KIND_SERVER, f"ghes_instances[{index}]"))
    return InstanceRegistry(license_authority=authority, instances=tuple(instances))


def load_registry(path: str | Path = DEFAULT_CONFIG_PATH) -> InstanceRegistry:
    """Read and validate the YAML instance registry."""
    config_path = Path(path).expanduser()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigError(f"cannot read configuration {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {config_path}: {exc}") from exc
    return parse_registry(data)


@dataclass(frozen=True)
class RunSettings:
    """Resolved runtime settings for one enablement run."""

    config_path: Path
    references: Tuple[str, ...]
    features: FeatureSelection
    min_headroom: int
    skip_license_check: bool
    dry_run: bool
    max_workers: int
    report_path: Optional[Path]
    json_out: Optional[Path]


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the CLI parser used by the enablement entry point."""

    parser = argparse.ArgumentParser(
        description="Plan and enable GitHub Advanced Security features while keeping license headroom.",
    )
    parser.add_argument("references", nargs="*", help="repository or organization URLs")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--issue-body", help="file holding a submitted enablement request form")
    parser.add_argument("--secret-scanning", action="store_true")
    parser.add_argument("--code-scanning", action="store_true")
    parser.add_argument("--dependabot-alerts", action="store_true")
    parser.add_argument("--min-headroom", type=int, default=None)
    parser.add_argument("--skip-license-check", action="store_true")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--max-workers", type=int, default=MAX_WORKERS)
    parser.add_argument("--report", help="write the Markdown report here instead of stdout")
    parser.add_argument("--json-out", help="also write the run result as JSON")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; accepts argv overrides for testing."""

    parser = build_arg_parser()
    return parser.parse_args(argv)


def resolve_settings(
    args: argparse.Namespace,
    request: Optional["EnablementRequest"] = None,
) -> RunSettings:
    """Merge CLI flags with an optional intake-form request; CLI values win where both exist."""

    references: List[str] = list(request.references) if request else []
    references.extend(ref for ref in args.references if ref.strip())

    base = request.features if request else FeatureSelection()
    features = FeatureSelection(
        secret_scanning=base.secret_scanning or args.secret_scanning,
        code_scanning=base.code_scanning or args.code_scanning,
        dependabot_alerts=base.dependabot_alerts or args.dependabot_alerts,
    )

    if args.min_headroom is not None:
        min_headroom = args.min_headroom
    elif request:
        min_headroom = request.min_headroom
    else:
        min_headroom = DEFAULT_MIN_HEADROOM
    if min_headroom < 0:
        raise ConfigError(f"--min-headroom must not be negative (got {min_headroom})")
    if args.max_workers < 1:
        raise ConfigError(f"--max-workers must be at least 1 (got {args.max_workers})")

    return RunSettings(
        config_path=Path(args.config),
        references=tuple(references),
        features=features,
        min_headroom=min_headroom,
        skip_license_check=bool(args.skip_license_check or (request and request.skip_license_check)),
        dry_run=bool(args.dry_run or (request and request.dry_run)),
        max_workers=args.max_workers,
        report_path=Path(args.report) if args.report else None,
        json_out=Path(args.json_out) if args.json_out else None,
    )


def settings_summary(settings: RunSettings) -> Dict[str, Any]:
    return {
        "references": len(settings.references),
        "features": [kind.value for kind in settings.features.kinds],
        "min_headroom": settings.min_headroom,
        "skip_license_check": settings.skip_license_check,
        "dry_run": settings.dry_run,
    }


__all__ = [
    "USER_AGENT",
    "DEFAULT_API_URL",
    "API_VERSION",
    "PER_PAGE",
    "REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "BACKOFF_BASE_SEC",
    "MAX_WAIT_ON_403",
    "COMMIT_WINDOW_DAYS",
    "MAX_WORKERS",
    "DEFAULT_MIN_HEADROOM",
    "DEFAULT_CONFIG_PATH",
    "FALLBACK_CREDENTIAL_KEY",
    "UNMATCHED_INSTANCE_NAME",
    "ConfigError",
    "hostname_from_api_url",
    "parse_registry",
    "load_registry",
    "RunSettings",
    "build_arg_parser",
    "parse_args",
    "resolve_settings",
    "settings_summary",
]
