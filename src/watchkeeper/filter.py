"""Run scope filtering.

A filter narrows a run to some projects, kinds or tracking ids. It is applied
identically to the desired and the actual state, so resources outside the
scope are neither created, updated nor deleted.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field

from .errors import WatchkeeperError
from .kinds import registry
from .models import RemoteResource, Resource
from .tracking import split_tracking_id

logger = logging.getLogger(__name__)


class FilterError(WatchkeeperError):
    """Raised when filter settings contradict each other."""

    pass


@dataclass(frozen=True)
class Filter:
    """Predicate over resources.

    Empty collections mean "no restriction". Tracking id patterns support
    shell-style wildcards ("monitor:team-a:*").
    """

    projects: frozenset[str] = field(default_factory=frozenset)
    kinds: frozenset[str] = field(default_factory=frozenset)
    tracking_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        unknown = sorted(k for k in self.kinds if k not in registry)
        if unknown:
            raise FilterError(f"Unknown kinds {unknown}. Valid kinds: {registry.names()}")

        if self.projects:
            for pattern in self.tracking_ids:
                _, project, _ = (pattern.split(":", 2) + ["", ""])[:3]
                if project and not any(fnmatch.fnmatchcase(p, project) for p in self.projects):
                    raise FilterError(
                        f"tracking id filter {pattern!r} is outside of the project filter "
                        f"{sorted(self.projects)}"
                    )

    @property
    def active(self) -> bool:
        return bool(self.projects or self.kinds or self.tracking_ids)

    def allows_project(self, project: str) -> bool:
        return not self.projects or project in self.projects

    def allows(self, resource: Resource | RemoteResource) -> bool:
        """Check whether a desired or remote resource is in scope.

        Remote resources without a tracking id are never in scope.
        """
        tracking_id = resource.tracking_id
        if tracking_id is None:
            return False
        kind, project, _ = split_tracking_id(tracking_id)
        if self.kinds and kind not in self.kinds:
            return False
        if not self.allows_project(project):
            return False
        if self.tracking_ids and not any(
            fnmatch.fnmatchcase(tracking_id, pattern) for pattern in self.tracking_ids
        ):
            return False
        return True

    @classmethod
    def from_env(cls) -> Filter:
        """Load filter settings from environment.

        Environment Variables:
            PROJECT: Comma-separated project names
            KIND: Comma-separated resource kinds
            TRACKING_ID: Comma-separated tracking id patterns
        """

        def get_list(key: str) -> list[str]:
            value = os.environ.get(key, "")
            if not value:
                return []
            return [item.strip() for item in value.split(",") if item.strip()]

        return cls(
            projects=frozenset(get_list("PROJECT")),
            kinds=frozenset(get_list("KIND")),
            tracking_ids=tuple(get_list("TRACKING_ID")),
        )
