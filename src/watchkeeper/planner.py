"""Diff and plan computation.

Turns the desired state and the actual state into an ordered plan:
1. Index managed remote resources by tracking id and seed the IdMap
2. Match desired resources to remote ones (pinned import id first, then
   tracking id)
3. Unmatched desired -> Create, matched with a diff -> Update, unmatched
   remote in scope -> Delete
4. Sort into execution tiers: items without pending references, items that
   reference resources created in this run, then deletes

Only one hop of forward references is supported: an item may depend on a
create in the same run, but that create must not itself depend on another
create. Anything else is reported as UnresolvableIdError before any API call.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum, IntEnum

from .diff import AttributeChange
from .errors import DisallowedUpdateError, MissingImportError, UnresolvableIdError
from .filter import Filter
from .id_map import IdMap, RemoteId
from .kinds import KindRegistry, ResourceKind, registry
from .models import RemoteResource, Resource
from .tracking import split_tracking_id, validate_unique_tracking_ids

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """Plan item actions."""

    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class Tier(IntEnum):
    """Execution tiers, run strictly one after another."""

    INDEPENDENT = 0  # no reference to anything created in this run
    DEPENDENT = 1  # references a resource created in tier INDEPENDENT
    DELETE = 2  # deletes run last so dependents are updated first


_ACTION_ORDER = {Action.CREATE: 0, Action.UPDATE: 1, Action.DELETE: 2}


@dataclass
class PlanItem:
    """One planned change."""

    action: Action
    kind: ResourceKind
    tracking_id: str
    resource: Resource | None = None
    remote: RemoteResource | None = None
    changes: list[AttributeChange] = field(default_factory=list)
    tier: Tier = Tier.INDEPENDENT
    depends_on: frozenset[str] = frozenset()

    @property
    def remote_id(self) -> RemoteId | None:
        if self.remote is not None:
            return self.remote.remote_id
        if self.resource is not None:
            return self.resource.remote_id
        return None

    @property
    def sort_key(self) -> tuple[int, int, str, str, str]:
        return (
            int(self.tier),
            _ACTION_ORDER[self.action],
            self.kind.name,
            self.tracking_id,
            str(self.remote_id or ""),
        )

    def render(self) -> str:
        line = f"{self.action.value} {self.kind.name} {self.tracking_id}"
        if self.action == Action.DELETE:
            line = f"{line} ({self.remote_id})"
        lines = [line]
        lines.extend(change.render() for change in self.changes)
        return "\n".join(lines)


@dataclass
class Plan:
    """Ordered sequence of plan items.

    Attributes:
        items: Items in execution order.
        actual_count: Managed remote resources in scope when the plan was made.
    """

    items: list[PlanItem] = field(default_factory=list)
    actual_count: int = 0

    @property
    def creates(self) -> list[PlanItem]:
        return [i for i in self.items if i.action == Action.CREATE]

    @property
    def updates(self) -> list[PlanItem]:
        return [i for i in self.items if i.action == Action.UPDATE]

    @property
    def deletes(self) -> list[PlanItem]:
        return [i for i in self.items if i.action == Action.DELETE]

    @property
    def empty(self) -> bool:
        return not self.items

    def tiers(self) -> list[list[PlanItem]]:
        """Group items by tier, in execution order, skipping empty tiers."""
        grouped: dict[Tier, list[PlanItem]] = defaultdict(list)
        for item in self.items:
            grouped[item.tier].append(item)
        return [grouped[tier] for tier in sorted(grouped)]

    @property
    def summary(self) -> str:
        return (
            f"{len(self.creates)} to create, {len(self.updates)} to update, "
            f"{len(self.deletes)} to delete"
        )

    def render(self) -> str:
        """Human-readable plan; identical inputs render identically."""
        if self.empty:
            return "Plan:\nNothing to do"
        lines = ["Plan:"]
        lines.extend(item.render() for item in self.items)
        lines.append(self.summary)
        return "\n".join(lines)


class Planner:
    """Computes plans and seeds the IdMap the executor continues to use.

    Usage:
        planner = Planner(id_map)
        plan = planner.plan(expected, actual, scope)
    """

    def __init__(
        self,
        id_map: IdMap,
        *,
        strict_imports: bool = True,
        replace_disallowed: bool = False,
        kinds: KindRegistry = registry,
    ) -> None:
        self._id_map = id_map
        self._strict_imports = strict_imports
        self._replace_disallowed = replace_disallowed
        self._kinds = kinds

    def plan(
        self,
        expected: list[Resource],
        actual: list[RemoteResource],
        scope: Filter | None = None,
    ) -> Plan:
        """Compute the plan that turns actual into expected.

        Args:
            expected: Desired resources (every project, filtered here).
            actual: Every remote resource listed from the platform.
            scope: Run filter, applied identically to both sides.

        Raises:
            DuplicateTrackingIdError: If tracking ids collide.
            MissingImportError: If a pinned id is missing and imports are strict.
            DisallowedUpdateError: If an update changes an immutable attribute.
            UnresolvableIdError: If a reference cannot be resolved in one pass.
        """
        scope = scope or Filter()
        expected = [r for r in expected if scope.allows(r)]
        validate_unique_tracking_ids(expected)

        managed = self._index_managed(actual)
        by_remote_id = {(r.kind, r.remote_id): r for r in actual}
        in_scope = [r for r in self._managed_list(managed) if scope.allows(r)]

        matches, creates = self._match(expected, managed, by_remote_id)
        consumed = {(remote.kind, remote.remote_id) for _, remote in matches}
        expected_ids = {r.tracking_id for r in expected}

        items: list[PlanItem] = []
        updates: list[tuple[Resource, RemoteResource]] = []
        for resource, remote in matches:
            kind = self._kinds.get(resource.kind)
            try:
                kind.check_update(resource.tracking_id, resource.payload, remote.payload)
            except DisallowedUpdateError:
                if not self._replace_disallowed:
                    raise
                logger.warning(
                    "Replacing resource whose immutable attribute changed",
                    extra={"tracking_id": resource.tracking_id, "remote_id": remote.remote_id},
                )
                creates.append(resource)
                items.append(self._delete_item(remote))
                continue
            if remote.tracking_id not in (None, resource.tracking_id):
                # adopted through a pinned id from another tracking id
                self._id_map.discard(remote.tracking_id)
            resource.bind_remote_id(remote.remote_id)
            self._id_map.set(resource.tracking_id, remote.remote_id)
            updates.append((resource, remote))

        for remote in in_scope:
            if (remote.kind, remote.remote_id) in consumed:
                continue
            delete = self._delete_item(remote)
            items.append(delete)
            if delete.tracking_id not in expected_ids:
                self._id_map.discard(delete.tracking_id)

        for resource in creates:
            self._id_map.mark_pending(resource.tracking_id)

        dependents = self._assign_tiers(creates, updates)
        no_dependency: tuple[Tier, frozenset[str]] = (Tier.INDEPENDENT, frozenset())

        for resource in creates:
            tier, depends_on = dependents.get(resource.tracking_id, no_dependency)
            items.append(
                PlanItem(
                    Action.CREATE,
                    self._kinds.get(resource.kind),
                    resource.tracking_id,
                    resource=resource,
                    tier=tier,
                    depends_on=depends_on,
                )
            )

        for resource, remote in updates:
            kind = self._kinds.get(resource.kind)
            serialized = kind.serialize(resource, self._id_map, allow_pending=True)
            changes = kind.diff(serialized, remote.payload)
            if not changes:
                continue
            tier, depends_on = dependents.get(resource.tracking_id, no_dependency)
            items.append(
                PlanItem(
                    Action.UPDATE,
                    kind,
                    resource.tracking_id,
                    resource=resource,
                    remote=remote,
                    changes=changes,
                    tier=tier,
                    depends_on=depends_on,
                )
            )

        items.sort(key=lambda item: item.sort_key)
        plan = Plan(items=items, actual_count=len(in_scope))

        logger.info(
            "Plan computed",
            extra={
                "creates": len(plan.creates),
                "updates": len(plan.updates),
                "deletes": len(plan.deletes),
                "actual_in_scope": plan.actual_count,
            },
        )
        return plan

    def _index_managed(self, actual: list[RemoteResource]) -> dict[str, list[RemoteResource]]:
        """Group managed remote resources by tracking id, lowest remote id first."""
        index: dict[str, list[RemoteResource]] = defaultdict(list)
        for remote in actual:
            if remote.tracking_id is None:
                continue
            marker_kind, _, _ = split_tracking_id(remote.tracking_id)
            if marker_kind != remote.kind:
                logger.warning(
                    "Ignoring remote resource whose marker names another kind",
                    extra={
                        "kind": remote.kind,
                        "remote_id": remote.remote_id,
                        "tracking_id": remote.tracking_id,
                    },
                )
                continue
            index[remote.tracking_id].append(remote)

        for tracking_id, remotes in index.items():
            remotes.sort(key=lambda r: (len(str(r.remote_id)), str(r.remote_id)))
            if len(remotes) > 1:
                logger.warning(
                    "Several remote resources carry the same tracking id; extras will be deleted",
                    extra={
                        "tracking_id": tracking_id,
                        "remote_ids": [r.remote_id for r in remotes],
                    },
                )
            self._id_map.set(tracking_id, remotes[0].remote_id)
        return index

    @staticmethod
    def _managed_list(index: dict[str, list[RemoteResource]]) -> list[RemoteResource]:
        return [remote for tracking_id in sorted(index) for remote in index[tracking_id]]

    def _match(
        self,
        expected: list[Resource],
        managed: dict[str, list[RemoteResource]],
        by_remote_id: dict[tuple[str, RemoteId], RemoteResource],
    ) -> tuple[list[tuple[Resource, RemoteResource]], list[Resource]]:
        matches: list[tuple[Resource, RemoteResource]] = []
        creates: list[Resource] = []
        claimed: set[tuple[str, RemoteId]] = set()

        # pinned ids win over tracking ids
        for resource in sorted(expected, key=lambda r: r.import_id is None):
            remote: RemoteResource | None = None
            if resource.import_id is not None:
                remote = by_remote_id.get((resource.kind, resource.import_id))
                if remote is None:
                    message = (
                        f"{resource.tracking_id} pins id {resource.import_id}, "
                        f"but no {resource.kind} with that id exists"
                    )
                    if self._strict_imports:
                        raise MissingImportError(message)
                    logger.warning(message)
            if remote is None:
                candidates = [
                    r
                    for r in managed.get(resource.tracking_id, [])
                    if (r.kind, r.remote_id) not in claimed
                ]
                remote = candidates[0] if candidates else None

            if remote is None:
                creates.append(resource)
                continue
            claimed.add((remote.kind, remote.remote_id))
            matches.append((resource, remote))
        return matches, creates

    def _assign_tiers(
        self,
        creates: list[Resource],
        updates: list[tuple[Resource, RemoteResource]],
    ) -> dict[str, tuple[Tier, frozenset[str]]]:
        """Check every reference and find items that wait for a create.

        Raises:
            UnresolvableIdError: For unknown targets and for targets that
                themselves wait for a create.
        """
        pending: dict[str, frozenset[str]] = {}
        resources = creates + [resource for resource, _ in updates]
        for resource in sorted(resources, key=lambda r: r.tracking_id):
            waiting: set[str] = set()
            for target in sorted(resource.references):
                if target in self._id_map:
                    continue
                if self._id_map.is_pending(target):
                    waiting.add(target)
                    continue
                # raises with the full explanation
                self._id_map.resolve(resource.tracking_id, target)
            if waiting:
                pending[resource.tracking_id] = frozenset(waiting)

        for tracking_id, targets in sorted(pending.items()):
            for target in sorted(targets):
                if target in pending:
                    raise UnresolvableIdError(
                        tracking_id,
                        target,
                        "it is created in this run and depends on another resource created "
                        "in this run; apply the plan in two runs",
                    )
        return {
            tracking_id: (Tier.DEPENDENT, targets) for tracking_id, targets in pending.items()
        }

    def _delete_item(self, remote: RemoteResource) -> PlanItem:
        # resources without a marker are never ours to delete
        if remote.tracking_id is None:
            raise ValueError(f"Refusing to delete unmanaged {remote.kind} {remote.remote_id}")
        return PlanItem(
            Action.DELETE,
            self._kinds.get(remote.kind),
            remote.tracking_id,
            remote=remote,
            tier=Tier.DELETE,
        )
