"""Desired-state provider: project files to resources.

Project files are YAML mappings validated with the models in models.py. A
value tagged `!ref <tracking_id>` becomes a lazy reference to the remote id
of another resource:

```yaml
project: team-a
team: platform
parts:
  - kind: monitor
    kennel_id: cpu_high
    attributes:
      name: CPU high
      type: metric alert
      query: avg(last_5m):avg:system.cpu.user{*} > 90
  - kind: slo
    kennel_id: cpu
    attributes:
      name: CPU SLO
      type: monitor
      monitor_ids: [!ref monitor:team-a:cpu_high]
```

SECURITY: file sizes are checked before reading.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import DEFAULT_MAX_CONCURRENCY, MAX_PROJECT_FILE_SIZE_BYTES
from .errors import WatchkeeperError
from .filter import Filter
from .id_map import Ref
from .kinds import registry
from .models import ProjectSpec, Resource
from .tracking import is_tracking_id, validate_unique_tracking_ids

logger = logging.getLogger(__name__)

PROJECT_FILE_SUFFIXES = (".yaml", ".yml")


class SpecLoadError(WatchkeeperError):
    """Raised when a project file cannot be loaded or fails validation."""

    pass


class ProjectLoader(yaml.SafeLoader):
    """SafeLoader that understands the !ref tag."""

    pass


def _construct_ref(loader: ProjectLoader, node: yaml.Node) -> Ref:
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    if not isinstance(value, str) or not is_tracking_id(value):
        raise yaml.constructor.ConstructorError(
            None,
            None,
            f"!ref expects a tracking id like monitor:project:kennel_id, got {value!r}",
            node.start_mark,
        )
    return Ref(value)


ProjectLoader.add_constructor("!ref", _construct_ref)


def load_project(path: Path) -> ProjectSpec:
    """Load and validate one project file.

    Raises:
        SpecLoadError: If the file cannot be read, parsed or validated.
    """
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat project file {path}: {e}") from e

    if file_size > MAX_PROJECT_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Project file exceeds maximum size of {MAX_PROJECT_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read project file {path}: {e}") from e

    try:
        raw_data: Any = yaml.load(content, Loader=ProjectLoader)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Project file must contain a YAML mapping: {path}")

    try:
        return ProjectSpec.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e


def build_resources(project: ProjectSpec) -> list[Resource]:
    """Turn a validated project into desired-state resources."""
    tags = project.all_tags
    resources = []
    for part in project.parts:
        kind = registry.get(part.kind)
        resources.append(
            Resource(
                kind=part.kind,
                project=project.project,
                kennel_id=part.kennel_id,
                payload=kind.prepare(part.attributes, tags),
                import_id=part.id,
            )
        )
    return resources


class ProjectsProvider:
    """Finds project files and builds the desired state.

    Usage:
        provider = ProjectsProvider(Path("projects"), scope)
        resources = provider.resources()
    """

    def __init__(
        self,
        projects_dir: Path,
        scope: Filter | None = None,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        self._projects_dir = projects_dir
        self._scope = scope or Filter()
        self._max_concurrency = max_concurrency

    def project_files(self) -> list[Path]:
        if not self._projects_dir.is_dir():
            raise SpecLoadError(f"Projects directory does not exist: {self._projects_dir}")
        return sorted(
            path
            for path in self._projects_dir.rglob("*")
            if path.is_file() and path.suffix in PROJECT_FILE_SUFFIXES
        )

    def projects(self) -> list[ProjectSpec]:
        """Load every project file, keeping projects in scope."""
        projects = [load_project(path) for path in self.project_files()]

        seen: dict[str, int] = {}
        for project in projects:
            seen[project.project] = seen.get(project.project, 0) + 1
        duplicated = sorted(name for name, count in seen.items() if count > 1)
        if duplicated:
            # parts colliding across files are reported by tracking id first
            validate_unique_tracking_ids(
                resource
                for project in projects
                if project.project in duplicated
                for resource in build_resources(project)
            )
            raise SpecLoadError(f"Projects defined in more than one file: {duplicated}")

        return [p for p in projects if self._scope.allows_project(p.project)]

    def resources(self) -> list[Resource]:
        """Build resources for every project in scope, one worker per project."""
        projects = self.projects()
        with ThreadPoolExecutor(max_workers=self._max_concurrency) as pool:
            built = list(pool.map(build_resources, projects))
        resources = [resource for group in built for resource in group]

        logger.info(
            "Built desired state",
            extra={"projects": len(projects), "resources": len(resources)},
        )
        return resources
