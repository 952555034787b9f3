"""Exception hierarchy shared by the reconciliation engine.

Validation errors (duplicate tracking ids, disallowed updates, missing
imports) are raised before any mutating API call. Resolution errors are
raised during planning (fatal for the run) or during execution (fatal only
for the dependent plan item).
"""

from __future__ import annotations


class WatchkeeperError(Exception):
    """Base class for all errors raised by watchkeeper."""

    pass


class DuplicateTrackingIdError(WatchkeeperError):
    """Raised when two desired resources share a tracking id.

    Attributes:
        duplicates: Mapping of tracking id to the number of resources using it.
    """

    def __init__(self, duplicates: dict[str, int]) -> None:
        self.duplicates = dict(sorted(duplicates.items()))
        lines = [
            f"{tracking_id} is defined {count} times"
            for tracking_id, count in self.duplicates.items()
        ]
        lines.append("")
        lines.append(
            "use a different `kennel_id` when defining multiple "
            "projects/monitors/dashboards to avoid this conflict"
        )
        super().__init__("\n".join(lines))


class InvalidTrackingIdError(WatchkeeperError):
    """Raised when a project name or kennel_id cannot form a tracking id."""

    pass


class UnresolvableIdError(WatchkeeperError):
    """Raised when a reference points at a tracking id with no remote id.

    Attributes:
        source: Tracking id of the resource holding the reference.
        target: Tracking id that could not be resolved.
    """

    def __init__(self, source: str, target: str, reason: str = "") -> None:
        self.source = source
        self.target = target
        message = f"{source} references {target}, which has no remote id"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DisallowedUpdateError(WatchkeeperError):
    """Raised when an update would change a non-migratable attribute."""

    def __init__(self, tracking_id: str, attribute: str, before: object, after: object) -> None:
        self.tracking_id = tracking_id
        self.attribute = attribute
        self.before = before
        self.after = after
        super().__init__(
            f"{tracking_id} cannot change {attribute} from {before!r} to {after!r}; "
            "delete the remote resource or use a new kennel_id"
        )


class MissingImportError(WatchkeeperError):
    """Raised when a resource pins a remote id that does not exist remotely."""

    pass


class ConfigurationError(WatchkeeperError):
    """Raised when configuration validation fails."""

    pass
