"""Remote API facade for the monitoring platform.

This is the only I/O boundary to the platform. It performs its own retries
for transient failures (rate limits, 5xx, network errors) with exponential
backoff and jitter; everything that still fails surfaces as ApiError.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any

import httpx

from .config import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    RETRY_BACKOFF_BASE_SECONDS,
    RETRY_BACKOFF_MAX_SECONDS,
    Config,
)
from .errors import WatchkeeperError
from .id_map import RemoteId
from .kinds import ResourceKind, SyntheticKind
from .models import RemoteResource

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
USER_AGENT = "watchkeeper"


class ApiError(WatchkeeperError):
    """Raised when a platform request fails after retries."""

    def __init__(
        self,
        message: str,
        *,
        method: str,
        path: str,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body
        detail = f"{method} {path}"
        if status_code is not None:
            detail = f"{detail} -> {status_code}"
        if body:
            detail = f"{detail}: {body[:500]}"
        super().__init__(f"{message} ({detail})")


class Api:
    """CRUD access to platform resources, one method per operation.

    Usage:
        with Api.from_config(config) as api:
            monitors = api.list(registry.get("monitor"))
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        app_key: str,
        *,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._max_retries = max_retries
        self._max_concurrency = max_concurrency
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={
                "DD-API-KEY": api_key,
                "DD-APPLICATION-KEY": app_key,
                "User-Agent": USER_AGENT,
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_config(cls, config: Config, transport: httpx.BaseTransport | None = None) -> Api:
        return cls(
            config.api_url,
            config.api_key,
            config.app_key,
            timeout_seconds=config.request_timeout_seconds,
            max_retries=config.max_retries,
            max_concurrency=config.max_concurrency,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> Api:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- operations ----------------------------------------------------------

    def list(self, kind: ResourceKind) -> list[RemoteResource]:
        """List every resource of a kind, managed or not."""
        params = kind.list_params()
        if "limit" in params:
            payloads = self._list_paginated(kind, params)
        else:
            payloads = kind.unwrap_list(self._request("GET", kind.api_path, params=params))

        resources = [kind.parse_remote(payload) for payload in payloads]

        if kind.needs_detail_fetch:
            resources = self._fetch_details(kind, resources)

        logger.info(
            "Listed remote resources",
            extra={
                "kind": kind.name,
                "total": len(resources),
                "managed": sum(1 for r in resources if r.managed),
            },
        )
        return resources

    def fetch(self, kind: ResourceKind, remote_id: RemoteId) -> RemoteResource:
        body = self._request("GET", kind.item_path(remote_id))
        return kind.parse_remote(kind.unwrap_item(body))

    def create(self, kind: ResourceKind, payload: dict[str, Any]) -> RemoteId:
        body = self._request("POST", kind.api_path, json=payload)
        try:
            return kind.remote_id_of(kind.unwrap_item(body))
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ApiError(
                f"Create response has no {kind.id_field}",
                method="POST",
                path=kind.api_path,
                body=str(body),
            ) from e

    def update(self, kind: ResourceKind, remote_id: RemoteId, payload: dict[str, Any]) -> None:
        self._request("PUT", kind.item_path(remote_id), json=payload)

    def delete(self, kind: ResourceKind, remote_id: RemoteId) -> None:
        """Delete a resource; deleting an already deleted resource succeeds."""
        if isinstance(kind, SyntheticKind):
            self._request(
                "POST",
                kind.bulk_delete_path(),
                json={"public_ids": [remote_id]},
                ignore_not_found=True,
            )
        else:
            self._request(
                "DELETE",
                kind.item_path(remote_id),
                params={"force": "true"},
                ignore_not_found=True,
            )

    # -- helpers -------------------------------------------------------------

    def _list_paginated(self, kind: ResourceKind, params: dict[str, Any]) -> list[dict[str, Any]]:
        limit = int(params["limit"])
        offset = 0
        payloads: list[dict[str, Any]] = []
        while True:
            page = kind.unwrap_list(
                self._request("GET", kind.api_path, params={**params, "offset": offset})
            )
            payloads.extend(page)
            if len(page) < limit:
                return payloads
            offset += limit

    def _fetch_details(
        self, kind: ResourceKind, summaries: list[RemoteResource]
    ) -> list[RemoteResource]:
        """Replace summaries of managed resources with full payloads.

        Foreign resources keep their summary and are marked partial.
        """
        managed = [r for r in summaries if r.managed]
        with ThreadPoolExecutor(max_workers=self._max_concurrency) as pool:
            details = dict(
                zip(
                    [r.remote_id for r in managed],
                    pool.map(lambda r: self.fetch(kind, r.remote_id), managed),
                    strict=True,
                )
            )
        return [details.get(r.remote_id) or replace(r, partial=True) for r in summaries]

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        ignore_not_found: bool = False,
    ) -> Any:
        """Send a request with retry on transient failures.

        Raises:
            ApiError: If the request fails permanently or retries are exhausted.
        """
        last_error: ApiError | None = None

        for attempt in range(1, self._max_retries + 2):
            try:
                response = self._client.request(method, path, params=params, json=json)
            except httpx.TransportError as e:
                last_error = ApiError(f"Transport error: {e}", method=method, path=path)
                retry_after = None
            else:
                if response.status_code == 404 and ignore_not_found:
                    logger.info("Resource already gone", extra={"method": method, "path": path})
                    return None
                if response.is_success:
                    if not response.content:
                        return None
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ApiError(
                            "Response is not valid JSON",
                            method=method,
                            path=path,
                            status_code=response.status_code,
                            body=response.text,
                        ) from e
                last_error = ApiError(
                    "Request failed",
                    method=method,
                    path=path,
                    status_code=response.status_code,
                    body=response.text,
                )
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise last_error
                retry_after = _parse_retry_after(response)

            if attempt > self._max_retries:
                break

            backoff = min(
                RETRY_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1)), RETRY_BACKOFF_MAX_SECONDS
            )
            jitter = random.uniform(0, backoff * 0.2)
            wait_time = retry_after if retry_after is not None else backoff + jitter

            logger.warning(
                "Request failed, retrying",
                extra={
                    "method": method,
                    "path": path,
                    "attempt": attempt,
                    "max_attempts": self._max_retries + 1,
                    "wait_seconds": wait_time,
                    "error": str(last_error),
                },
            )
            self._sleep(wait_time)

        assert last_error is not None, "Retry loop completed without setting last_error"
        raise last_error


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return min(float(value), RETRY_BACKOFF_MAX_SECONDS)
    except ValueError:
        return None
