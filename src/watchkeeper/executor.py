"""Plan execution.

Runs plan tiers one after another. Inside a tier items run in a bounded
thread pool and independently: a failed item is recorded and never cancels
its siblings. Every successful create is written to the IdMap before the
next tier starts, so dependent items resolve their references against it.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .api import Api
from .config import DEFAULT_MAX_CONCURRENCY
from .errors import WatchkeeperError
from .id_map import IdMap, RemoteId
from .planner import Action, Plan, PlanItem

logger = logging.getLogger(__name__)


@dataclass
class ItemResult:
    """Outcome of one plan item."""

    item: PlanItem
    remote_id: RemoteId | None = None
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def render(self) -> str:
        label = f"{self.item.action.value} {self.item.kind.name} {self.item.tracking_id}"
        if self.success:
            return f"{label} ({self.remote_id})"
        return f"FAILED {label}: {self.error}"


@dataclass
class ApplyReport:
    """Per-item results of applying a plan."""

    results: list[ItemResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def succeeded(self) -> list[ItemResult]:
        return [r for r in self.results if r.success]

    @property
    def failures(self) -> list[ItemResult]:
        return [r for r in self.results if not r.success]

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def render(self) -> str:
        lines = [result.render() for result in self.results]
        lines.append(f"{len(self.succeeded)} succeeded, {len(self.failures)} failed")
        return "\n".join(lines)


class Executor:
    """Applies plans through the remote API facade."""

    def __init__(
        self,
        api: Api,
        id_map: IdMap,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self._api = api
        self._id_map = id_map
        self._max_concurrency = max_concurrency

    def apply(self, plan: Plan) -> ApplyReport:
        report = ApplyReport()
        for tier in plan.tiers():
            with ThreadPoolExecutor(max_workers=self._max_concurrency) as pool:
                report.results.extend(pool.map(self._execute, tier))
        report.end_time = datetime.now(UTC)

        logger.info(
            "Plan applied",
            extra={
                "succeeded": len(report.succeeded),
                "failed": len(report.failures),
                "duration_seconds": report.duration_seconds,
            },
        )
        return report

    def _execute(self, item: PlanItem) -> ItemResult:
        try:
            remote_id = self._execute_item(item)
        except WatchkeeperError as e:
            logger.error(
                "Plan item failed",
                extra={
                    "action": item.action.value,
                    "kind": item.kind.name,
                    "tracking_id": item.tracking_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return ItemResult(item, remote_id=item.remote_id, error=e)
        except Exception as e:
            logger.exception(
                "Unexpected error applying plan item",
                extra={
                    "action": item.action.value,
                    "kind": item.kind.name,
                    "tracking_id": item.tracking_id,
                    "error_type": type(e).__name__,
                },
            )
            return ItemResult(item, remote_id=item.remote_id, error=e)

        logger.info(
            "Plan item applied",
            extra={
                "action": item.action.value,
                "kind": item.kind.name,
                "tracking_id": item.tracking_id,
                "remote_id": remote_id,
            },
        )
        return ItemResult(item, remote_id=remote_id)

    def _execute_item(self, item: PlanItem) -> RemoteId | None:
        match item.action:
            case Action.CREATE:
                if item.resource is None:
                    raise ValueError(f"Create of {item.tracking_id} has no resource")
                payload = item.kind.serialize(item.resource, self._id_map)
                remote_id = self._api.create(item.kind, payload)
                item.resource.bind_remote_id(remote_id)
                self._id_map.set(item.tracking_id, remote_id)
                return remote_id
            case Action.UPDATE:
                if item.resource is None or item.remote is None:
                    raise ValueError(f"Update of {item.tracking_id} needs resource and remote")
                payload = item.kind.serialize(item.resource, self._id_map)
                self._api.update(item.kind, item.remote.remote_id, payload)
                return item.remote.remote_id
            case Action.DELETE:
                if item.remote is None:
                    raise ValueError(f"Delete of {item.tracking_id} has no remote")
                self._api.delete(item.kind, item.remote.remote_id)
                return item.remote.remote_id
