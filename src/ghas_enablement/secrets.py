"""Utilities for loading local (gitignored) credentials and resolving credential keys."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

DEFAULT_SECRETS_FILENAME = "local_secrets.json"


def _default_secrets_path() -> Path:
    return Path.cwd() / DEFAULT_SECRETS_FILENAME


def load_local_secrets(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """Load secrets from a JSON file; return {} when unavailable."""

    candidate = path or os.getenv("LOCAL_SECRETS_FILE") or _default_secrets_path()
    secrets_path = Path(candidate).expanduser()
    if not secrets_path.exists():
        return {}
    try:
        with secrets_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError):
        return {}


class CredentialStore:
    """Maps a credential key (e.g. ``GHES_API_TOKEN_1``) to its secret value.

    Lookup order: explicit overrides, then the environment, then the
    ``credentials`` object of the local secrets file. Empty values count as absent.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
        secrets: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._overrides = dict(overrides or {})
        self._environ = os.environ if environ is None else environ
        file_credentials = (secrets or {}).get("credentials") or {}
        self._file_credentials = file_credentials if isinstance(file_credentials, dict) else {}

    @classmethod
    def from_environment(cls, secrets_path: Optional[str | Path] = None) -> "CredentialStore":
        return cls(secrets=load_local_secrets(secrets_path))

    def resolve(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        for source in (self._overrides, self._environ, self._file_credentials):
            value = source.get(key)
            if value:
                return str(value)
        return None

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.resolve(key) is not None


__all__ = ["load_local_secrets", "CredentialStore", "DEFAULT_SECRETS_FILENAME"]
