"""Blast radius guardrails.

Hard safety limits checked before a plan mutates anything:
- Kill switch: refuse every apply while set
- Mass deletion: refuse plans that would delete a large share of the managed
  resources in scope, which usually means the filter or the project files are
  wrong rather than that everything should really go

Fail closed: an override has to be given explicitly for every run.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import ConfigurationError, WatchkeeperError

if TYPE_CHECKING:
    from .planner import Plan

logger = logging.getLogger(__name__)


class GuardrailViolation(WatchkeeperError):
    """Raised when a guardrail check fails."""

    pass


class MassDeletionError(GuardrailViolation):
    """Raised when a plan would delete too much of the actual state."""

    def __init__(self, delete_count: int, actual_count: int, max_fraction: float) -> None:
        self.delete_count = delete_count
        self.actual_count = actual_count
        self.max_fraction = max_fraction
        super().__init__(
            f"Plan deletes {delete_count} of {actual_count} managed resources in scope, "
            f"more than the allowed {max_fraction:.0%}. Check the filter and project files, "
            "or pass --allow-mass-delete (ALLOW_MASS_DELETE=true) to proceed"
        )


class KillSwitchActive(GuardrailViolation):
    """Raised when kill switch is enabled."""

    pass


DEFAULT_MAX_DELETE_FRACTION = 0.5
DEFAULT_MASS_DELETE_FLOOR = 5


@dataclass(frozen=True)
class GuardrailsConfig:
    """Configuration for apply guardrails.

    Attributes:
        max_delete_fraction: Largest share of the managed resources in scope a
            plan may delete without override.
        mass_delete_floor: Plans deleting this many resources or fewer never
            trip the mass deletion guard.
        allow_mass_delete: Override for the mass deletion guard.
        kill_switch_enabled: Block all apply operations.
    """

    max_delete_fraction: float = DEFAULT_MAX_DELETE_FRACTION
    mass_delete_floor: int = DEFAULT_MASS_DELETE_FLOOR
    allow_mass_delete: bool = False
    kill_switch_enabled: bool = False

    def __post_init__(self) -> None:
        if not (0.0 <= self.max_delete_fraction <= 1.0):
            raise ConfigurationError(
                "Configuration validation failed: MAX_DELETE_FRACTION must be between 0 and 1, "
                f"got {self.max_delete_fraction}"
            )
        if self.mass_delete_floor < 0:
            raise ConfigurationError(
                "Configuration validation failed: MASS_DELETE_FLOOR must not be negative, "
                f"got {self.mass_delete_floor}"
            )

    @classmethod
    def from_env(cls) -> GuardrailsConfig:
        """Load guardrails configuration from environment.

        Environment Variables:
            MAX_DELETE_FRACTION: Allowed share of deletions (default: 0.5)
            MASS_DELETE_FLOOR: Deletions always allowed (default: 5)
            ALLOW_MASS_DELETE: If "true", skip the mass deletion guard
            KILL_SWITCH: If "true", blocks all apply operations
        """

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            max_delete_fraction=get_float("MAX_DELETE_FRACTION", DEFAULT_MAX_DELETE_FRACTION),
            mass_delete_floor=get_int("MASS_DELETE_FLOOR", DEFAULT_MASS_DELETE_FLOOR),
            allow_mass_delete=get_bool("ALLOW_MASS_DELETE", False),
            kill_switch_enabled=get_bool("KILL_SWITCH", False),
        )


class GuardrailEnforcer:
    """Checks a plan against the guardrails before it is applied.

    Usage:
        enforcer = GuardrailEnforcer(config)
        enforcer.check_plan(plan)  # Raises GuardrailViolation
    """

    def __init__(self, config: GuardrailsConfig) -> None:
        self._config = config

    @property
    def config(self) -> GuardrailsConfig:
        return self._config

    def check_kill_switch(self) -> None:
        if self._config.kill_switch_enabled:
            logger.warning("Kill switch is active, refusing to apply")
            raise KillSwitchActive("Kill switch is active (KILL_SWITCH=true); apply is disabled")

    def exceeds_deletion_threshold(self, delete_count: int, actual_count: int) -> bool:
        if delete_count <= self._config.mass_delete_floor or actual_count == 0:
            return False
        return delete_count / actual_count > self._config.max_delete_fraction

    def check_deletions(
        self, delete_count: int, actual_count: int, *, allow_mass_delete: bool = False
    ) -> None:
        """Raise when deletions exceed the threshold and no override was given.

        Raises:
            MassDeletionError: If the guard trips.
        """
        if not self.exceeds_deletion_threshold(delete_count, actual_count):
            return
        if allow_mass_delete or self._config.allow_mass_delete:
            logger.warning(
                "Mass deletion guard overridden",
                extra={"delete_count": delete_count, "actual_count": actual_count},
            )
            return
        logger.error(
            "Mass deletion guard tripped",
            extra={
                "delete_count": delete_count,
                "actual_count": actual_count,
                "max_delete_fraction": self._config.max_delete_fraction,
            },
        )
        raise MassDeletionError(delete_count, actual_count, self._config.max_delete_fraction)

    def check_plan(self, plan: Plan, *, allow_mass_delete: bool = False) -> None:
        """Run every guardrail against a plan.

        Raises:
            GuardrailViolation: If any guardrail fails.
        """
        if plan.empty:
            return
        self.check_kill_switch()
        self.check_deletions(
            len(plan.deletes), plan.actual_count, allow_mass_delete=allow_mass_delete
        )
