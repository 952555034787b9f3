"""Pytest configuration and fixtures."""

import sys
import textwrap
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for platform_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

import pytest  # noqa: E402

from platform_mock import BASE_URL, MockPlatform  # noqa: E402
from watchkeeper.config import Config  # noqa: E402

TEAM_A_PROJECT = """
project: team-a
team: platform
parts:
  - kind: monitor
    kennel_id: cpu_high
    attributes:
      name: CPU high
      type: metric alert
      query: avg(last_5m):avg:system.cpu.user{*} > 90
      message: CPU is high
  - kind: slo
    kennel_id: cpu
    attributes:
      name: CPU SLO
      type: monitor
      monitor_ids: [!ref monitor:team-a:cpu_high]
      thresholds:
        - timeframe: 7d
          target: 99.9
  - kind: dashboard
    kennel_id: overview
    attributes:
      title: Overview
      layout_type: ordered
      widgets:
        - definition:
            type: note
            content: hello
"""


@pytest.fixture
def platform() -> MockPlatform:
    """Fresh fake platform."""
    return MockPlatform()


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    path = tmp_path / "projects"
    path.mkdir()
    return path


@pytest.fixture
def write_project(projects_dir: Path):
    """Write a project file; content is dedented YAML text."""

    def write(name: str, content: str) -> Path:
        path = projects_dir / f"{name}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content), encoding="utf-8")
        return path

    return write


@pytest.fixture
def config(projects_dir: Path) -> Config:
    return Config(
        api_url=BASE_URL,
        api_key="test-api-key",
        app_key="test-app-key",
        projects_dir=projects_dir,
        max_concurrency=4,
    )
