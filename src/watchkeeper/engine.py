"""Per-run reconciliation context.

An Engine ties the collaborators of one run together:
1. preload(): build the desired state and download the actual state
   concurrently
2. plan(): diff both into an ordered plan (computed once per run)
3. apply(): check guardrails, then execute the plan tier by tier

The IdMap is shared between planning and execution, so ids discovered while
planning and ids of resources created while applying are both visible to
items that reference them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

from .api import Api
from .config import Config
from .executor import ApplyReport, Executor
from .filter import Filter
from .guardrails import GuardrailEnforcer
from .id_map import IdMap
from .kinds import KindRegistry, registry
from .models import RemoteResource, Resource
from .planner import Plan, Planner
from .projects import ProjectsProvider
from .tracking import validate_unique_tracking_ids

logger = logging.getLogger(__name__)

ConfirmGate = Callable[[Plan], bool]


def always_confirm(plan: Plan) -> bool:
    return True


class Engine:
    """Reconciles one filter scope of the desired state against the platform.

    Usage:
        with Api.from_config(config) as api:
            engine = Engine(config, api=api, scope=scope)
            plan = engine.plan()
            report = engine.apply(plan)
    """

    def __init__(
        self,
        config: Config,
        *,
        api: Api | None = None,
        provider: ProjectsProvider | None = None,
        scope: Filter | None = None,
        confirm: ConfirmGate | None = None,
        kinds: KindRegistry = registry,
    ) -> None:
        self._config = config
        self._api = api
        self._scope = scope or Filter()
        self._provider = provider or ProjectsProvider(
            config.projects_dir, self._scope, max_concurrency=config.max_concurrency
        )
        self._confirm = confirm or always_confirm
        self._kinds = kinds
        self._id_map = IdMap()
        self._state: tuple[list[Resource], list[RemoteResource]] | None = None
        self._plan: Plan | None = None

    @property
    def id_map(self) -> IdMap:
        return self._id_map

    @property
    def expected(self) -> list[Resource]:
        return self._loaded()[0]

    @property
    def actual(self) -> list[RemoteResource]:
        return self._loaded()[1]

    def _loaded(self) -> tuple[list[Resource], list[RemoteResource]]:
        if self._state is None:
            self._state = self._load()
        return self._state

    def _require_api(self) -> Api:
        if self._api is None:
            raise RuntimeError("Engine has no Api; remote operations are unavailable")
        return self._api

    def preload(self) -> None:
        """Build the desired state and download the actual state concurrently.

        Both sides are fully computed before this returns; the first error of
        either side is raised after both finished.
        """
        self._state = self._load()

    def _load(self) -> tuple[list[Resource], list[RemoteResource]]:
        api = self._require_api()
        with ThreadPoolExecutor(max_workers=2) as pool:
            expected_future = pool.submit(self._provider.resources)
            actual_future = pool.submit(self._download, api)
            expected = expected_future.result()
            actual = actual_future.result()

        return expected, self._complete_imports(api, expected, actual)

    def _download(self, api: Api) -> list[RemoteResource]:
        kinds = list(self._kinds)
        with ThreadPoolExecutor(max_workers=self._config.max_concurrency) as pool:
            listed = list(pool.map(api.list, kinds))
        return [remote for group in listed for remote in group]

    def _complete_imports(
        self, api: Api, expected: list[Resource], actual: list[RemoteResource]
    ) -> list[RemoteResource]:
        """Fetch full payloads of listed summaries that a project file imports."""
        imports = {(r.kind, r.import_id) for r in expected if r.import_id is not None}
        completed = []
        for remote in actual:
            if remote.partial and (remote.kind, remote.remote_id) in imports:
                logger.info(
                    "Fetching imported resource",
                    extra={"kind": remote.kind, "remote_id": remote.remote_id},
                )
                remote = replace(
                    api.fetch(self._kinds.get(remote.kind), remote.remote_id), partial=False
                )
            completed.append(remote)
        return completed

    def plan(self) -> Plan:
        """Compute the plan for this run; repeated calls return the same plan."""
        if self._plan is None:
            planner = Planner(
                self._id_map,
                strict_imports=self._config.strict_imports,
                replace_disallowed=self._config.replace_disallowed,
                kinds=self._kinds,
            )
            self._plan = planner.plan(self.expected, self.actual, self._scope)
        return self._plan

    def apply(self, plan: Plan, *, allow_mass_delete: bool = False) -> ApplyReport:
        """Execute a plan computed by this engine.

        Raises:
            GuardrailViolation: If a guardrail refuses the plan. Nothing has
                been changed on the platform in that case.
        """
        GuardrailEnforcer(self._config.guardrails).check_plan(
            plan, allow_mass_delete=allow_mass_delete
        )
        executor = Executor(
            self._require_api(), self._id_map, max_concurrency=self._config.max_concurrency
        )
        return executor.apply(plan)

    def update(self, *, allow_mass_delete: bool = False) -> ApplyReport | None:
        """Plan, confirm and apply.

        Returns:
            The apply report, or None if nothing was applied (empty plan,
            dry run or declined confirmation).
        """
        plan = self.plan()
        if plan.empty:
            logger.info("Nothing to do")
            return None
        if self._config.dry_run:
            logger.info("Dry run, not applying", extra={"items": len(plan.items)})
            return None
        if not self._confirm(plan):
            logger.info("Plan not confirmed, not applying")
            return None
        return self.apply(plan, allow_mass_delete=allow_mass_delete)

    def validate(self) -> list[Resource]:
        """Build and check the desired state without contacting the platform."""
        resources = [r for r in self._provider.resources() if self._scope.allows(r)]
        validate_unique_tracking_ids(resources)
        logger.info("Desired state is valid", extra={"resources": len(resources)})
        return resources
