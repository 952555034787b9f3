"""Tests for plan computation.

Covers matching, tiers and forward references:
- Creates, updates and deletes from desired vs actual
- Pinned imports and duplicate remote markers
- One-hop forward references and their failure modes
- Disallowed updates and stable rendering
"""

from __future__ import annotations

import random
from typing import Any

import pytest

from watchkeeper.errors import (
    DisallowedUpdateError,
    DuplicateTrackingIdError,
    MissingImportError,
    UnresolvableIdError,
)
from watchkeeper.filter import Filter
from watchkeeper.id_map import IdMap, Ref
from watchkeeper.kinds import registry
from watchkeeper.models import RemoteResource, Resource
from watchkeeper.planner import Action, Planner, Tier
from watchkeeper.tracking import build_tracking_id, marker_text

MONITOR = registry.get("monitor")
SLO = registry.get("slo")


def monitor(project: str, kennel_id: str, **attributes: Any) -> Resource:
    payload = {"name": kennel_id, "type": "metric alert", "query": "avg:cpu > 1", **attributes}
    return Resource("monitor", project, kennel_id, MONITOR.prepare(payload, []))


def remote_monitor(
    remote_id: int, project: str, kennel_id: str, **attributes: Any
) -> RemoteResource:
    """Remote monitor exactly as the matching monitor() would have been created."""
    payload = {
        "id": remote_id,
        "name": kennel_id,
        "type": "metric alert",
        "query": "avg:cpu > 1",
        "message": marker_text(build_tracking_id("monitor", project, kennel_id)),
        "overall_state": "OK",
        **attributes,
    }
    return MONITOR.parse_remote(payload)


def slo(project: str, kennel_id: str, *monitor_refs: str) -> Resource:
    payload = {"name": kennel_id, "type": "monitor", "monitor_ids": [Ref(t) for t in monitor_refs]}
    return Resource("slo", project, kennel_id, SLO.prepare(payload, []))


def plan_for(expected, actual, scope=None, **kwargs):
    id_map = IdMap()
    return Planner(id_map, **kwargs).plan(expected, actual, scope), id_map


class TestBasicPlans:
    """Tests for create/update/delete selection."""

    def test_only_creates_for_empty_remote(self) -> None:
        """Test every desired resource is created once."""
        expected = [monitor("p", f"m{i}") for i in range(5)]
        plan, _ = plan_for(expected, [])

        assert len(plan.creates) == 5
        assert not plan.updates and not plan.deletes
        assert {item.tracking_id for item in plan.items} == {r.tracking_id for r in expected}
        assert all(item.tier == Tier.INDEPENDENT for item in plan.items)

    def test_only_deletes_without_desired(self) -> None:
        """Test managed remotes in scope are deleted."""
        actual = [remote_monitor(i, "p", f"m{i}") for i in range(1, 4)]
        plan, _ = plan_for([], actual)

        assert len(plan.deletes) == 3
        assert not plan.creates and not plan.updates
        assert all(item.tier == Tier.DELETE for item in plan.items)
        assert plan.actual_count == 3

    def test_foreign_never_planned(self) -> None:
        """Test resources without marker are left alone."""
        foreign = MONITOR.parse_remote({"id": 9, "name": "by hand", "message": "hi"})
        plan, _ = plan_for([], [foreign])

        assert plan.empty
        assert plan.actual_count == 0

    def test_unchanged_is_empty(self) -> None:
        """Test matching resources without diff produce no item."""
        plan, id_map = plan_for([monitor("p", "a")], [remote_monitor(1, "p", "a")])

        assert plan.empty
        assert plan.render() == "Plan:\nNothing to do"
        assert id_map.get("monitor:p:a") == 1

    def test_update_with_changes(self) -> None:
        """Test a changed attribute becomes an update."""
        expected = [monitor("p", "a", query="avg:cpu > 2")]
        plan, _ = plan_for(expected, [remote_monitor(1, "p", "a")])

        assert [item.action for item in plan.items] == [Action.UPDATE]
        item = plan.items[0]
        assert item.remote_id == 1
        assert [c.path for c in item.changes] == ["query"]
        assert '  ~query "avg:cpu > 1" -> "avg:cpu > 2"' in plan.render()

    def test_matched_resource_bound(self) -> None:
        """Test matched desired resources learn their remote id."""
        resource = monitor("p", "a")
        plan_for([resource], [remote_monitor(7, "p", "a")])
        assert resource.remote_id == 7

    def test_mixed(self) -> None:
        """Test create, update and delete in one plan, deletes last."""
        expected = [monitor("p", "new"), monitor("p", "changed", name="renamed")]
        actual = [remote_monitor(1, "p", "changed"), remote_monitor(2, "p", "gone")]
        plan, _ = plan_for(expected, actual)

        assert [(i.action, i.tracking_id) for i in plan.items] == [
            (Action.CREATE, "monitor:p:new"),
            (Action.UPDATE, "monitor:p:changed"),
            (Action.DELETE, "monitor:p:gone"),
        ]
        assert plan.summary == "1 to create, 1 to update, 1 to delete"

    def test_render_format(self) -> None:
        """Test the human-readable plan lines."""
        expected = [monitor("p", "new")]
        actual = [remote_monitor(2, "p", "gone")]
        plan, _ = plan_for(expected, actual)

        assert plan.render().splitlines() == [
            "Plan:",
            "Create monitor monitor:p:new",
            "Delete monitor monitor:p:gone (2)",
            "1 to create, 0 to update, 1 to delete",
        ]

    def test_duplicates_abort(self) -> None:
        """Test duplicate tracking ids stop planning."""
        with pytest.raises(DuplicateTrackingIdError, match="monitor:p:x is defined 2 times"):
            plan_for([monitor("p", "x"), monitor("p", "x")], [])


class TestScope:
    """Tests for filter scope handling."""

    def test_remote_outside_scope_kept(self) -> None:
        """Test resources outside the scope are never deleted."""
        actual = [remote_monitor(1, "a", "x"), remote_monitor(2, "b", "y")]
        plan, _ = plan_for([], actual, Filter(projects=frozenset({"a"})))

        assert [i.tracking_id for i in plan.deletes] == ["monitor:a:x"]
        assert plan.actual_count == 1

    def test_desired_outside_scope_ignored(self) -> None:
        """Test desired resources outside the scope are not created."""
        expected = [monitor("a", "x"), monitor("b", "y")]
        plan, _ = plan_for(expected, [], Filter(kinds=frozenset({"slo"})))
        assert plan.empty

    def test_reference_to_remote_outside_scope(self) -> None:
        """Test existing resources outside the scope still resolve."""
        expected = [slo("a", "s", "monitor:b:m")]
        actual = [remote_monitor(5, "b", "m")]
        plan, _ = plan_for(expected, actual, Filter(projects=frozenset({"a"})))

        assert [i.action for i in plan.items] == [Action.CREATE]
        assert plan.items[0].tier == Tier.INDEPENDENT


class TestForwardReferences:
    """Tests for references to resources created in the same run."""

    def test_reference_to_create(self) -> None:
        """Test dependents wait one tier for the create they reference."""
        expected = [slo("p", "s", "monitor:p:m"), monitor("p", "m")]
        plan, id_map = plan_for(expected, [])

        by_id = {item.tracking_id: item for item in plan.items}
        assert by_id["monitor:p:m"].tier == Tier.INDEPENDENT
        assert by_id["slo:p:s"].tier == Tier.DEPENDENT
        assert by_id["slo:p:s"].depends_on == frozenset({"monitor:p:m"})
        assert [item.tracking_id for item in plan.items] == ["monitor:p:m", "slo:p:s"]
        assert id_map.is_pending("monitor:p:m")

    def test_reference_to_existing(self) -> None:
        """Test references to existing resources need no waiting."""
        expected = [slo("p", "s", "monitor:p:m"), monitor("p", "m")]
        plan, _ = plan_for(expected, [remote_monitor(3, "p", "m")])

        assert [(i.action, i.tier) for i in plan.items] == [(Action.CREATE, Tier.INDEPENDENT)]

    def test_update_shows_placeholder(self) -> None:
        """Test diffs show symbolic ids for targets still to be created."""
        expected = [slo("p", "s", "monitor:p:new"), monitor("p", "new")]
        existing_slo = SLO.parse_remote(
            {
                "id": "slo-1",
                "name": "s",
                "type": "monitor",
                "monitor_ids": [99],
                "description": marker_text("slo:p:s"),
            }
        )
        plan, _ = plan_for(expected, [existing_slo])

        update = next(i for i in plan.items if i.action == Action.UPDATE)
        assert update.tier == Tier.DEPENDENT
        assert "(id of monitor:p:new)" in update.render()

    def test_missing_target(self) -> None:
        """Test references to unknown ids abort planning."""
        with pytest.raises(UnresolvableIdError) as exc_info:
            plan_for([slo("p", "s", "monitor:p:nowhere")], [])

        assert exc_info.value.source == "slo:p:s"
        assert exc_info.value.target == "monitor:p:nowhere"

    def test_target_outside_scope(self) -> None:
        """Test a new target excluded by the filter cannot be referenced."""
        expected = [slo("p", "s", "monitor:p:m"), monitor("p", "m")]
        with pytest.raises(UnresolvableIdError):
            plan_for(expected, [], Filter(kinds=frozenset({"slo"})))

    def test_target_being_deleted(self) -> None:
        """Test references to resources planned for deletion fail."""
        expected = [slo("p", "s", "monitor:p:m")]
        with pytest.raises(UnresolvableIdError):
            plan_for(expected, [remote_monitor(3, "p", "m")])

    def test_two_hops_refused(self) -> None:
        """Test chains of creates are reported instead of scheduled."""
        composite = Resource(
            "monitor",
            "p",
            "c",
            MONITOR.prepare({"type": "composite", "query": "%{monitor:p:b} && 1"}, []),
        )
        expected = [
            monitor("p", "a"),
            Resource(
                "monitor",
                "p",
                "b",
                MONITOR.prepare({"type": "composite", "query": "%{monitor:p:a}"}, []),
            ),
            composite,
        ]
        with pytest.raises(UnresolvableIdError, match="two runs"):
            plan_for(expected, [])


class TestMatching:
    """Tests for imports and duplicate remote markers."""

    def test_import_adopts_foreign(self) -> None:
        """Test a pinned id adopts an unmanaged remote resource."""
        foreign = MONITOR.parse_remote(
            {"id": 42, "name": "a", "type": "metric alert", "query": "avg:cpu > 1", "message": ""}
        )
        resource = monitor("p", "a")
        resource.import_id = 42
        plan, id_map = plan_for([resource], [foreign])

        assert [i.action for i in plan.items] == [Action.UPDATE]
        assert [c.path for c in plan.items[0].changes] == ["message"]
        assert id_map.get("monitor:p:a") == 42

    def test_import_wins_over_tracking_id(self) -> None:
        """Test the pinned id is used even if the marker matches another resource."""
        resource = monitor("p", "a")
        resource.import_id = 2
        actual = [remote_monitor(1, "p", "a"), remote_monitor(2, "p", "a")]
        plan, id_map = plan_for([resource], actual)

        assert id_map.get("monitor:p:a") == 2
        assert [(i.action, i.remote_id) for i in plan.items] == [(Action.DELETE, 1)]

    def test_import_missing_strict(self) -> None:
        """Test a missing pinned id aborts with strict imports."""
        resource = monitor("p", "a")
        resource.import_id = 42
        with pytest.raises(MissingImportError, match="pins id 42"):
            plan_for([resource], [])

    def test_import_missing_lenient(self) -> None:
        """Test a missing pinned id creates when imports are lenient."""
        resource = monitor("p", "a")
        resource.import_id = 42
        plan, _ = plan_for([resource], [], strict_imports=False)
        assert [i.action for i in plan.items] == [Action.CREATE]

    def test_duplicate_markers(self) -> None:
        """Test the lowest remote id is kept and extras deleted."""
        actual = [remote_monitor(12, "p", "a"), remote_monitor(5, "p", "a")]
        plan, id_map = plan_for([monitor("p", "a")], actual)

        assert id_map.get("monitor:p:a") == 5
        assert [(i.action, i.remote_id) for i in plan.items] == [(Action.DELETE, 12)]

    def test_marker_of_other_kind_ignored(self) -> None:
        """Test a marker naming another kind does not count as managed."""
        dashboard = registry.get("dashboard").parse_remote(
            {"id": "d1", "description": marker_text("monitor:p:a")}
        )
        plan, _ = plan_for([], [dashboard])
        assert plan.empty


class TestDisallowedUpdates:
    """Tests for non-migratable attribute changes."""

    def test_refused(self) -> None:
        """Test immutable changes abort planning."""
        expected = [monitor("p", "a", type="composite", query="1 && 2")]
        with pytest.raises(DisallowedUpdateError):
            plan_for(expected, [remote_monitor(1, "p", "a")])

    def test_replaced(self) -> None:
        """Test the replace policy turns them into delete and create."""
        expected = [monitor("p", "a", type="composite", query="1 && 2")]
        plan, id_map = plan_for(expected, [remote_monitor(1, "p", "a")], replace_disallowed=True)

        assert [(i.action, i.tracking_id) for i in plan.items] == [
            (Action.CREATE, "monitor:p:a"),
            (Action.DELETE, "monitor:p:a"),
        ]
        assert id_map.is_pending("monitor:p:a")

    def test_interchangeable_types(self) -> None:
        """Test metric alert to query alert is a plain update."""
        expected = [monitor("p", "a", type="query alert")]
        plan, _ = plan_for(expected, [remote_monitor(1, "p", "a")])
        assert [i.action for i in plan.items] == [Action.UPDATE]


class TestStability:
    """Tests for deterministic plans."""

    def test_same_render_for_shuffled_inputs(self) -> None:
        """Test input order does not change the plan."""

        def build() -> tuple[list[Resource], list[RemoteResource]]:
            expected = [monitor("p", f"m{i}", name=f"n{i}") for i in range(10)]
            expected += [slo("p", f"s{i}", f"monitor:p:m{i}") for i in range(3)]
            actual = [remote_monitor(i + 1, "p", f"m{i}") for i in range(0, 10, 2)]
            actual += [remote_monitor(100 + i, "p", f"old{i}") for i in range(3)]
            return expected, actual

        renders = []
        for seed in range(3):
            expected, actual = build()
            random.Random(seed).shuffle(expected)
            random.Random(seed).shuffle(actual)
            plan, _ = plan_for(expected, actual)
            renders.append(plan.render())

        assert renders[0] == renders[1] == renders[2]
