"""HTTP helpers with retry/backoff logic for talking to one GitHub API endpoint."""

from __future__ import annotations

import os
import time
from typing import Any, Collection, Dict, Iterator, Optional

import requests

from ..config import (
    API_VERSION,
    BACKOFF_BASE_SEC,
    MAX_RETRIES,
    MAX_WAIT_ON_403,
    PER_PAGE,
    REQUEST_TIMEOUT,
    USER_AGENT,
)
from ..planning.models import ReasonCode
from .base import HostError

TERMINAL_STATUSES = {400, 401, 404, 409, 410, 422}


def sleep_with_jitter(base: float) -> None:
    """Pause execution with +/- 25% jitter to avoid synchronized retries."""
    jitter = base * 0.25 * (0.5 - (os.urandom(1)[0] / 255.0))
    time.sleep(max(0.0, base + jitter))


def error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = {"text": (resp.text or "")[:300]}
    if not isinstance(body, dict):
        return str(body)[:300]
    return str(body.get("message") or body.get("error") or body.get("text") or "")


def log_http_error(resp: requests.Response, url: str) -> None:
    """Print a short, human-readable message when GitHub returns an error."""
    print(f"[error] HTTP {resp.status_code} for {url}\n  -> {error_message(resp)}")


def classify_status(status_code: int) -> ReasonCode:
    """Map an HTTP failure status onto the shared reason taxonomy."""
    if status_code == 401:
        return ReasonCode.UNAUTHENTICATED
    if status_code == 403:
        return ReasonCode.FORBIDDEN
    if status_code in (404, 410):
        return ReasonCode.NOT_FOUND
    if status_code in (400, 409, 422):
        return ReasonCode.UNPROCESSABLE
    return ReasonCode.TRANSPORT_ERROR


def _rate_limit_wait(resp: requests.Response, attempt: int) -> Optional[int]:
    """Seconds to wait for a rate-limited 403/429, or None when it is a plain denial."""
    headers = resp.headers or {}
    remaining = headers.get("X-RateLimit-Remaining")
    reset = headers.get("X-RateLimit-Reset")
    retry_after = headers.get("Retry-After")

    is_rate_limited = resp.status_code == 429 or remaining == "0" or bool(retry_after)
    if not is_rate_limited:
        return None

    if retry_after and str(retry_after).isdigit():
        wait_sec = int(retry_after)
    elif reset and str(reset).isdigit():
        wait_sec = max(0, int(reset) - int(time.time())) + 1
    else:
        wait_sec = BACKOFF_BASE_SEC * (2 ** (attempt - 1))
    return min(wait_sec, MAX_WAIT_ON_403)


class GitHubSession:
    """A requests.Session bound to one API base URL and one token."""

    def __init__(
        self,
        api_url: str,
        token: Optional[str],
        *,
        max_retries: int = MAX_RETRIES,
        timeout: int = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": API_VERSION,
            }
        )
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        path = path if path.startswith("/") else f"/{path}"
        return f"{self.api_url}{path}"

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Perform a REST call with retry and exponential backoff.

        Transport errors and 5xx responses are retried; rate-limited 403/429
        responses wait for the advertised reset. Anything else is returned as-is.
        """
        url = self._url(path)
        timeout = kwargs.pop("timeout", self.timeout)
        last_exc: Optional[requests.RequestException] = None
        resp: Optional[requests.Response] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.request(method, url, timeout=timeout, **kwargs)
            except requests.RequestException as exc:
                last_exc = exc
                resp = None
                if attempt < self.max_retries:
                    delay = BACKOFF_BASE_SEC * (2 ** (attempt - 1))
                    print(f"[retry {attempt}/{self.max_retries}] {exc} -> sleep {delay:.1f}s")
                    sleep_with_jitter(delay)
                continue

            if 200 <= resp.status_code < 300:
                return resp

            if resp.status_code in TERMINAL_STATUSES:
                return resp

            if resp.status_code in (403, 429):
                wait_sec = _rate_limit_wait(resp, attempt)
                if wait_sec is None:
                    return resp
                if attempt < self.max_retries:
                    print(f"[backoff {resp.status_code}] waiting {wait_sec}s for {url}")
                    sleep_with_jitter(wait_sec)
                continue

            if attempt < self.max_retries:
                delay = BACKOFF_BASE_SEC * (2 ** (attempt - 1))
                print(f"[retry {attempt}/{self.max_retries}] HTTP {resp.status_code} -> sleep {delay:.1f}s")
                sleep_with_jitter(delay)
                continue

        if resp is not None:
            return resp
        raise HostError(
            ReasonCode.TRANSPORT_ERROR,
            f"{method} {url} failed after {self.max_retries} attempts: {last_exc}",
        ) from last_exc

    def request_json(self, method: str, path: str, quiet_statuses: Collection[int] = (), **kwargs) -> Any:
        """Like request(), but raise HostError on failure and decode the JSON body.

        Failures whose status is in `quiet_statuses` are raised without the
        `[error]` line; the caller expects and handles them.
        """
        resp = self.request(method, path, **kwargs)
        if not 200 <= resp.status_code < 300:
            if resp.status_code not in quiet_statuses:
                log_http_error(resp, self._url(path))
            raise HostError(
                classify_status(resp.status_code),
                f"HTTP {resp.status_code} for {method} {path}: {error_message(resp)}",
                resp.status_code,
            )
        if resp.status_code == 204:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise HostError(
                ReasonCode.MALFORMED_RESPONSE,
                f"non-JSON body from {method} {path}",
                resp.status_code,
            ) from exc

    def iter_pages(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        items_key: Optional[str] = None,
        per_page: int = PER_PAGE,
        quiet_statuses: Collection[int] = (),
    ) -> Iterator[Any]:
        """Yield every page payload until the API returns a short or empty page.

        With `items_key`, pages are objects whose list lives under that key;
        otherwise each page is itself a list.
        """
        page = 1
        while True:
            query = dict(params or {})
            query.update({"per_page": per_page, "page": page})
            payload = self.request_json("GET", path, quiet_statuses=quiet_statuses, params=query)

            if items_key:
                if not isinstance(payload, dict):
                    raise HostError(ReasonCode.MALFORMED_RESPONSE, f"expected an object from {path}")
                items = payload.get(items_key) or []
            else:
                items = payload
            if not isinstance(items, list):
                raise HostError(ReasonCode.MALFORMED_RESPONSE, f"expected a list from {path}")

            yield payload

            if len(items) < per_page:
                break
            page += 1


__all__ = [
    "TERMINAL_STATUSES",
    "sleep_with_jitter",
    "error_message",
    "log_http_error",
    "classify_status",
    "GitHubSession",
]
