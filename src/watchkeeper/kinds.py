"""Registry of supported resource kinds.

Each kind bundles the platform-specific behavior the engine needs:
- where it lives in the API and how list/create responses are shaped
- which free-text field carries the tracking marker
- how to diff it (read-only paths, unordered arrays, platform defaults)
- which attribute changes cannot be applied as an in-place update

Kinds are registered explicitly at import time; the registry is the single
list of what watchkeeper can manage.
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from .diff import AttributeChange, AttributeDiffer, DiffPolicy, DiffRule, RuleType
from .errors import DisallowedUpdateError
from .id_map import TEMPLATE_REF_PATTERN, IdMap, RefTemplate, RemoteId, resolve_payload
from .models import RemoteResource
from .tracking import add_marker, parse_tracking_id

if TYPE_CHECKING:
    from .models import Resource

logger = logging.getLogger(__name__)

# Paths every kind treats as read-only
COMMON_READ_ONLY = (
    "id",
    "created",
    "created_at",
    "modified",
    "modified_at",
    "creator",
    "deleted",
    "org_id",
)


class ResourceKind:
    """Behavior of one resource kind. Subclass and register to add a kind."""

    name: str = ""
    api_path: str = ""
    id_field: str = "id"
    tracking_field: str = "description"
    supports_tags: bool = True
    # Listing returns summaries; full payloads need one GET per resource
    needs_detail_fetch: bool = False
    # Attributes whose change requires delete + create
    immutable_attributes: tuple[str, ...] = ("type",)
    read_only: tuple[str, ...] = ()
    diff_rules: tuple[DiffRule, ...] = ()

    def __init__(self) -> None:
        rules = [
            DiffRule(path, RuleType.IGNORE, reason="read-only")
            for path in (*COMMON_READ_ONLY, *self.read_only)
        ]
        rules.append(
            DiffRule(self.tracking_field, RuleType.MANAGED, reason="carries the tracking marker")
        )
        if self.supports_tags:
            rules.append(DiffRule("tags", RuleType.UNORDERED, reason="tag order is irrelevant"))
            rules.append(DiffRule("tags", RuleType.MANAGED, reason="tags are fully owned"))
        self._differ = AttributeDiffer(DiffPolicy(tuple(rules) + self.diff_rules))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    # -- API shape -----------------------------------------------------------

    def item_path(self, remote_id: RemoteId) -> str:
        return f"{self.api_path}/{remote_id}"

    def list_params(self) -> dict[str, Any]:
        return {}

    def unwrap_list(self, body: Any) -> list[dict[str, Any]]:
        return list(body)

    def unwrap_item(self, body: Any) -> dict[str, Any]:
        return body

    def remote_id_of(self, payload: dict[str, Any]) -> RemoteId:
        return payload[self.id_field]

    # -- build / serialize ---------------------------------------------------

    def prepare(self, attributes: dict[str, Any], tags: list[str]) -> dict[str, Any]:
        """Build the desired payload from project file attributes."""
        payload = copy.deepcopy(attributes)
        if self.supports_tags and (tags or "tags" in payload):
            payload["tags"] = sorted(set(payload.get("tags", [])) | set(tags))
        return payload

    def serialize(
        self, resource: Resource, id_map: IdMap, *, allow_pending: bool = False
    ) -> dict[str, Any]:
        """Resolve references and embed the tracking marker.

        Raises:
            UnresolvableIdError: If a reference cannot be resolved.
        """
        payload = resolve_payload(
            resource.payload, id_map, resource.tracking_id, allow_pending=allow_pending
        )
        payload[self.tracking_field] = add_marker(
            payload.get(self.tracking_field), resource.tracking_id
        )
        return payload

    def parse_remote(self, payload: dict[str, Any]) -> RemoteResource:
        return RemoteResource(
            kind=self.name,
            remote_id=self.remote_id_of(payload),
            payload=payload,
            tracking_id=parse_tracking_id(payload.get(self.tracking_field)),
        )

    # -- diff ----------------------------------------------------------------

    @property
    def differ(self) -> AttributeDiffer:
        return self._differ

    def diff(self, expected: dict[str, Any], actual: dict[str, Any]) -> list[AttributeChange]:
        return self._differ.diff(expected, actual)

    def check_update(
        self, tracking_id: str, expected: dict[str, Any], actual: dict[str, Any]
    ) -> None:
        """Raise if expected cannot be applied to actual in place.

        Raises:
            DisallowedUpdateError: If an immutable attribute would change.
        """
        for attribute in self.immutable_attributes:
            if attribute not in expected or attribute not in actual:
                continue
            before, after = actual[attribute], expected[attribute]
            if before != after and not self.migratable(attribute, before, after):
                raise DisallowedUpdateError(tracking_id, attribute, before, after)

    def migratable(self, attribute: str, before: Any, after: Any) -> bool:
        return False


class DashboardKind(ResourceKind):
    name = "dashboard"
    api_path = "/api/v1/dashboard"
    tracking_field = "description"
    needs_detail_fetch = True
    immutable_attributes = ("layout_type",)
    read_only = ("author_handle", "author_name", "url", "deleted_at")
    diff_rules = (
        DiffRule("widgets.**.id", RuleType.IGNORE, reason="assigned by the platform"),
        DiffRule("template_variables", RuleType.EMPTY_EQUIVALENCE),
        DiffRule("notify_list", RuleType.EMPTY_EQUIVALENCE),
        DiffRule("notify_list", RuleType.UNORDERED),
        DiffRule("reflow_type", RuleType.DEFAULT_VALUE, params={"default": "auto"}),
    )

    def unwrap_list(self, body: Any) -> list[dict[str, Any]]:
        return list(body.get("dashboards", []))


class MonitorKind(ResourceKind):
    name = "monitor"
    api_path = "/api/v1/monitor"
    tracking_field = "message"
    read_only = (
        "overall_state",
        "overall_state_modified",
        "matching_downtimes",
        "multi",
        "state",
        "options.silenced",
    )
    diff_rules = (
        DiffRule("options.notify_no_data", RuleType.DEFAULT_VALUE, params={"default": False}),
        DiffRule("options.notify_audit", RuleType.DEFAULT_VALUE, params={"default": False}),
        DiffRule("options.include_tags", RuleType.DEFAULT_VALUE, params={"default": True}),
        DiffRule("options.new_host_delay", RuleType.DEFAULT_VALUE, params={"default": 300}),
        DiffRule("options.require_full_window", RuleType.DEFAULT_VALUE, params={"default": False}),
        DiffRule("priority", RuleType.MANAGED, reason="unset priority must clear the remote one"),
        DiffRule("restricted_roles", RuleType.UNORDERED),
    )

    # the platform converts these into each other on its own
    INTERCHANGEABLE_TYPES = frozenset({"metric alert", "query alert"})

    def list_params(self) -> dict[str, Any]:
        return {"with_downtimes": "false"}

    def prepare(self, attributes: dict[str, Any], tags: list[str]) -> dict[str, Any]:
        payload = super().prepare(attributes, tags)
        query = payload.get("query")
        if (
            payload.get("type") == "composite"
            and isinstance(query, str)
            and TEMPLATE_REF_PATTERN.search(query)
        ):
            payload["query"] = RefTemplate(query)
        return payload

    def migratable(self, attribute: str, before: Any, after: Any) -> bool:
        return attribute == "type" and {before, after} <= self.INTERCHANGEABLE_TYPES


class SloKind(ResourceKind):
    name = "slo"
    api_path = "/api/v1/slo"
    tracking_field = "description"
    read_only = ("type_id", "monitor_tags", "configured_alert_ids")
    diff_rules = (
        DiffRule("monitor_ids", RuleType.UNORDERED, reason="SLO monitor sets are unordered"),
        DiffRule("groups", RuleType.UNORDERED),
        DiffRule("groups", RuleType.EMPTY_EQUIVALENCE),
    )

    # page size the platform accepts for SLO listing
    PAGE_SIZE = 1000

    def list_params(self) -> dict[str, Any]:
        return {"limit": self.PAGE_SIZE}

    def unwrap_list(self, body: Any) -> list[dict[str, Any]]:
        return list(body.get("data", []))

    def unwrap_item(self, body: Any) -> dict[str, Any]:
        data = body.get("data", body)
        if isinstance(data, list):
            return data[0]
        return data


class SyntheticKind(ResourceKind):
    name = "synthetic"
    api_path = "/api/v1/synthetics/tests"
    id_field = "public_id"
    tracking_field = "message"
    immutable_attributes = ("type", "subtype")
    read_only = ("public_id", "monitor_id")
    diff_rules = (
        DiffRule("locations", RuleType.UNORDERED, reason="location order is irrelevant"),
        DiffRule("status", RuleType.DEFAULT_VALUE, params={"default": "live"}),
    )

    def unwrap_list(self, body: Any) -> list[dict[str, Any]]:
        return list(body.get("tests", []))

    def bulk_delete_path(self) -> str:
        return f"{self.api_path}/delete"


class KindRegistry:
    """Explicit registry of resource kinds keyed by name."""

    def __init__(self) -> None:
        self._kinds: dict[str, ResourceKind] = {}

    def register(self, kind: ResourceKind) -> ResourceKind:
        if not kind.name:
            raise ValueError(f"{kind!r} has no name")
        if kind.name in self._kinds:
            raise ValueError(f"Resource kind '{kind.name}' is already registered")
        self._kinds[kind.name] = kind
        return kind

    def get(self, name: str) -> ResourceKind:
        """Get a kind by name.

        Raises:
            ValueError: If the kind is not registered.
        """
        kind = self._kinds.get(name)
        if kind is None:
            raise ValueError(f"Unknown resource kind '{name}'. Valid kinds: {self.names()}")
        return kind

    def names(self) -> list[str]:
        return sorted(self._kinds)

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __iter__(self):
        return iter(self._kinds[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._kinds)


registry = KindRegistry()
registry.register(DashboardKind())
registry.register(MonitorKind())
registry.register(SloKind())
registry.register(SyntheticKind())
