"""Resource models.

Two layers:
1. Pydantic models for project files (validation at the boundary).
2. Plain dataclasses for the run-time desired and actual state the engine
   reconciles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .id_map import RemoteId, iter_references
from .tracking import VALID_SEGMENT_PATTERN, build_tracking_id

# =============================================================================
# Project file models
# =============================================================================


class PartSpec(BaseModel):
    """One resource definition inside a project file."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    kind: str
    kennel_id: Annotated[str, Field(min_length=1, pattern=VALID_SEGMENT_PATTERN)]
    # Adopt an existing remote resource instead of creating a new one
    id: RemoteId | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        from .kinds import registry

        if v not in registry:
            raise ValueError(f"kind must be one of {registry.names()}")
        return v


class ProjectSpec(BaseModel):
    """A project file: a named group of parts owned by one team."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    project: Annotated[str, Field(min_length=1, pattern=VALID_SEGMENT_PATTERN)]
    team: str | None = None
    tags: list[str] = Field(default_factory=list)
    parts: list[PartSpec] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        for tag in v:
            if not tag or " " in tag:
                raise ValueError(f"tags must be non-empty and contain no spaces: {tag!r}")
        return v

    @property
    def all_tags(self) -> list[str]:
        tags = list(self.tags)
        if self.team:
            tags.append(f"team:{self.team}")
        return tags


# =============================================================================
# Run-time state
# =============================================================================


@dataclass(eq=False)
class Resource:
    """A desired-state resource.

    Immutable after construction except for remote_id, which the engine
    writes exactly once when it discovers or creates the remote object.
    """

    kind: str
    project: str
    kennel_id: str
    payload: dict[str, Any]
    import_id: RemoteId | None = None
    tracking_id: str = field(init=False)
    _remote_id: RemoteId | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.tracking_id = build_tracking_id(self.kind, self.project, self.kennel_id)

    @property
    def remote_id(self) -> RemoteId | None:
        return self._remote_id

    def bind_remote_id(self, remote_id: RemoteId) -> None:
        """Record the remote id of this resource.

        Raises:
            ValueError: If a different remote id was already bound.
        """
        if self._remote_id is not None and self._remote_id != remote_id:
            raise ValueError(
                f"{self.tracking_id} is already bound to {self._remote_id}, "
                f"cannot rebind to {remote_id}"
            )
        self._remote_id = remote_id

    @property
    def references(self) -> set[str]:
        """Tracking ids this resource's payload refers to."""
        return set(iter_references(self.payload))


@dataclass(frozen=True)
class RemoteResource:
    """An actual-state resource downloaded from the platform.

    tracking_id is None for resources that were not created by watchkeeper.
    partial is True when payload is a listing summary rather than the full
    resource.
    """

    kind: str
    remote_id: RemoteId
    payload: dict[str, Any]
    tracking_id: str | None = None
    partial: bool = False

    @property
    def managed(self) -> bool:
        return self.tracking_id is not None
