"""Tests for the attribute differ.

Covers the per-attribute policy table:
- Ignored and fully managed paths
- Ordered vs unordered arrays
- Platform defaults and empty equivalence
- Stable, lexicographically ordered output
"""

from __future__ import annotations

from watchkeeper.diff import (
    MAX_RENDERED_VALUE_LENGTH,
    AttributeChange,
    AttributeDiffer,
    ChangeOp,
    DiffPolicy,
    DiffRule,
    RuleType,
    render_changes,
)


def differ(*rules: DiffRule) -> AttributeDiffer:
    return AttributeDiffer(DiffPolicy(rules=rules))


class TestDiffRule:
    """Tests for DiffRule path matching."""

    def test_exact(self) -> None:
        """Test plain paths match exactly."""
        rule = DiffRule("options.timeout", RuleType.IGNORE)
        assert rule.matches("options.timeout")
        assert not rule.matches("options.timeout_h")
        assert not rule.matches("options")

    def test_single_star(self) -> None:
        """Test * matches exactly one segment."""
        rule = DiffRule("options.*", RuleType.IGNORE)
        assert rule.matches("options.a")
        assert not rule.matches("options.a.b")

    def test_double_star(self) -> None:
        """Test ** matches any number of segments."""
        rule = DiffRule("widgets.**.id", RuleType.IGNORE)
        assert rule.matches("widgets.0.id")
        assert rule.matches("widgets.0.definition.widgets.3.id")
        assert not rule.matches("widgets.0.title")


class TestAttributeDiffer:
    """Tests for AttributeDiffer.diff."""

    def test_equal(self) -> None:
        """Test identical payloads have no changes."""
        payload = {"name": "a", "options": {"thresholds": {"critical": 90}}}
        assert differ().diff(payload, dict(payload)) == []

    def test_scalar_change(self) -> None:
        """Test changed scalar is reported with before and after."""
        changes = differ().diff({"name": "new"}, {"name": "old"})
        assert changes == [AttributeChange(ChangeOp.CHANGE, "name", "old", "new")]
        assert changes[0].render() == '  ~name "old" -> "new"'

    def test_added_attribute(self) -> None:
        """Test attribute missing remotely is added."""
        changes = differ().diff({"priority": 2}, {})
        assert changes == [AttributeChange(ChangeOp.ADD, "priority", after=2)]
        assert changes[0].render() == "  +priority 2"

    def test_remote_extras_ignored(self) -> None:
        """Test attributes only present remotely are ignored by default."""
        assert differ().diff({"name": "a"}, {"name": "a", "restricted_roles": ["x"]}) == []

    def test_remote_extras_managed(self) -> None:
        """Test fully managed attributes must be absent remotely too."""
        d = differ(DiffRule("priority", RuleType.MANAGED))
        changes = d.diff({"name": "a"}, {"name": "a", "priority": 3})

        assert changes == [AttributeChange(ChangeOp.REMOVE, "priority", before=3)]
        assert changes[0].render() == "  -priority 3"

    def test_managed_empty_remote_is_fine(self) -> None:
        """Test an empty remote value of a managed attribute is no change."""
        d = differ(DiffRule("tags", RuleType.MANAGED))
        assert d.diff({"name": "a"}, {"name": "a", "tags": []}) == []

    def test_ignored_path(self) -> None:
        """Test ignored paths never produce changes."""
        d = differ(DiffRule("modified", RuleType.IGNORE))
        assert d.diff({"modified": "now"}, {"modified": "then"}) == []

    def test_nested_paths(self) -> None:
        """Test nested changes use dotted paths."""
        changes = differ().diff(
            {"options": {"thresholds": {"critical": 95}}},
            {"options": {"thresholds": {"critical": 90}}},
        )
        assert [c.path for c in changes] == ["options.thresholds.critical"]

    def test_ordered_list_reordered(self) -> None:
        """Test ordered arrays compare by position."""
        changes = differ().diff({"x": ["a", "b"]}, {"x": ["b", "a"]})
        assert [c.path for c in changes] == ["x.0", "x.1"]

    def test_ordered_list_length_change(self) -> None:
        """Test arrays of different length are replaced as a whole."""
        changes = differ().diff({"x": ["a", "b", "c"]}, {"x": ["a", "b"]})
        assert changes == [AttributeChange(ChangeOp.CHANGE, "x", ["a", "b"], ["a", "b", "c"])]

    def test_unordered_list(self) -> None:
        """Test unordered arrays compare as multisets."""
        d = differ(DiffRule("tags", RuleType.UNORDERED))
        assert d.diff({"tags": ["a", "b"]}, {"tags": ["b", "a"]}) == []
        assert d.diff({"tags": ["a", "a"]}, {"tags": ["a"]}) != []

    def test_unordered_list_of_dicts(self) -> None:
        """Test multiset comparison works on non-scalar items."""
        d = differ(DiffRule("groups", RuleType.UNORDERED))
        assert d.diff({"groups": [{"a": 1}, {"b": 2}]}, {"groups": [{"b": 2}, {"a": 1}]}) == []

    def test_default_value(self) -> None:
        """Test a desired platform default equals a missing remote value."""
        d = differ(DiffRule("options.new_host_delay", RuleType.DEFAULT_VALUE, {"default": 300}))
        assert d.diff({"options": {"new_host_delay": 300}}, {"options": {}}) == []
        assert d.diff({"options": {"new_host_delay": 60}}, {"options": {}}) != []

    def test_empty_equivalence(self) -> None:
        """Test [] and None compare equal under empty equivalence."""
        d = differ(DiffRule("groups", RuleType.EMPTY_EQUIVALENCE))
        assert d.diff({"groups": []}, {"groups": None}) == []
        assert d.diff({"groups": []}, {}) == []

    def test_bool_is_not_int(self) -> None:
        """Test True and 1 are different values."""
        assert differ().diff({"flag": True}, {"flag": 1}) != []

    def test_int_equals_float(self) -> None:
        """Test 1 and 1.0 are the same value."""
        assert differ().diff({"target": 1}, {"target": 1.0}) == []

    def test_output_sorted(self) -> None:
        """Test changes come in lexicographic path order."""
        changes = differ().diff(
            {"zeta": 1, "alpha": 1, "mid": {"b": 1, "a": 1}},
            {"zeta": 2, "alpha": 2, "mid": {"b": 2, "a": 2}},
        )
        assert [c.path for c in changes] == ["alpha", "mid.a", "mid.b", "zeta"]

    def test_render_stable(self) -> None:
        """Test equal inputs render byte-identically."""
        expected = {"b": {"y": [1, 2], "x": "s"}, "a": {"k": "v", "j": None}}
        actual = {"a": {"j": 1, "k": "w"}, "b": {"x": "t", "y": [2]}}

        first = render_changes(differ().diff(expected, actual))
        second = render_changes(differ().diff(dict(reversed(expected.items())), actual))

        assert first == second
        assert first.splitlines()[0].startswith("  ~a.j")

    def test_render_truncates_long_values(self) -> None:
        """Test long values are cut in rendered output."""
        change = AttributeChange(ChangeOp.ADD, "query", after="x" * 1000)
        rendered = change.render()
        assert rendered.endswith("...")
        assert len(rendered) < MAX_RENDERED_VALUE_LENGTH + 20


class TestDiffPolicy:
    """Tests for DiffPolicy."""

    def test_extend(self) -> None:
        """Test extend returns a new policy with more rules."""
        base = DiffPolicy()
        extended = base.extend(DiffRule("x", RuleType.IGNORE))

        assert base.rules == ()
        assert extended.is_ignored("x")

    def test_normalize_default(self) -> None:
        """Test missing values become the default."""
        policy = DiffPolicy(rules=(DiffRule("x", RuleType.DEFAULT_VALUE, {"default": 5}),))
        assert policy.normalize("x", None) == 5
        assert policy.normalize("x", 3) == 3
