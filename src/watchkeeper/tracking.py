"""Tracking identity for managed resources.

A tracking id correlates a locally defined resource with the remote resource
it manages across runs. It is written into a free-text field of every managed
resource (monitor message, dashboard description, ...) as a marker line:

    -- Managed by watchkeeper monitor:team-a:cpu_high, do not modify manually

Remote resources without the marker were created out of band and are never
touched.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .errors import DuplicateTrackingIdError, InvalidTrackingIdError

if TYPE_CHECKING:
    from .models import Resource

logger = logging.getLogger(__name__)

MARKER_PREFIX = "-- Managed by watchkeeper"
MARKER_SUFFIX = ", do not modify manually"

SEGMENT_CHARS = r"A-Za-z0-9_.\-"
VALID_SEGMENT_PATTERN = rf"^[{SEGMENT_CHARS}]+$"
TRACKING_ID_PATTERN = rf"[a-z]+:[{SEGMENT_CHARS}]+:[{SEGMENT_CHARS}]+"

MAX_SEGMENT_LENGTH = 100

# kennel_ids that are too generic to be unique in practice
RESERVED_KENNEL_IDS = frozenset({"id"})

_MARKER_RE = re.compile(
    rf"\n?{re.escape(MARKER_PREFIX)} ({TRACKING_ID_PATTERN}){re.escape(MARKER_SUFFIX)}"
)
_TRACKING_ID_RE = re.compile(rf"^{TRACKING_ID_PATTERN}$")


def build_tracking_id(kind: str, project: str, kennel_id: str) -> str:
    """Build the tracking id for a resource.

    Raises:
        InvalidTrackingIdError: If project or kennel_id contain illegal characters.
    """
    for label, value in (("project", project), ("kennel_id", kennel_id)):
        if not value or not re.match(VALID_SEGMENT_PATTERN, value):
            raise InvalidTrackingIdError(
                f"{label} {value!r} must only contain letters, digits, '_', '.' and '-'"
            )
        if len(value) > MAX_SEGMENT_LENGTH:
            raise InvalidTrackingIdError(
                f"{label} {value!r} exceeds maximum length of {MAX_SEGMENT_LENGTH}"
            )
    if kennel_id in RESERVED_KENNEL_IDS:
        raise InvalidTrackingIdError(
            f"kennel_id {kennel_id!r} is reserved, pick a descriptive name in project {project}"
        )
    return f"{kind}:{project}:{kennel_id}"


def is_tracking_id(value: str) -> bool:
    """Check whether a string is a well-formed tracking id."""
    return bool(_TRACKING_ID_RE.match(value))


def split_tracking_id(tracking_id: str) -> tuple[str, str, str]:
    """Split a tracking id into (kind, project, kennel_id)."""
    if not is_tracking_id(tracking_id):
        raise InvalidTrackingIdError(f"Malformed tracking id: {tracking_id!r}")
    kind, project, kennel_id = tracking_id.split(":", 2)
    return kind, project, kennel_id


def marker_text(tracking_id: str) -> str:
    return f"{MARKER_PREFIX} {tracking_id}{MARKER_SUFFIX}"


def parse_tracking_id(text: str | None) -> str | None:
    """Recover the tracking id from a marker embedded in text, if any."""
    if not text:
        return None
    match = _MARKER_RE.search(text)
    return match.group(1) if match else None


def strip_marker(text: str | None) -> str:
    """Remove any marker from text."""
    if not text:
        return ""
    return _MARKER_RE.sub("", text).rstrip("\n")


def add_marker(text: str | None, tracking_id: str) -> str:
    """Return text with exactly one marker for tracking_id appended.

    An existing marker (for example on an imported resource) is replaced.
    """
    body = strip_marker(text)
    if body:
        return f"{body}\n{marker_text(tracking_id)}"
    return marker_text(tracking_id)


def validate_unique_tracking_ids(resources: Iterable[Resource]) -> None:
    """Fail when two resources share a tracking id.

    Groups by tracking id in a single pass and reports every duplicated id
    with the number of resources using it.

    Raises:
        DuplicateTrackingIdError: If any tracking id is used more than once.
    """
    counts = Counter(resource.tracking_id for resource in resources)
    duplicates = {tracking_id: count for tracking_id, count in counts.items() if count > 1}
    if duplicates:
        logger.error(
            "Duplicate tracking ids in desired state",
            extra={"duplicates": duplicates},
        )
        raise DuplicateTrackingIdError(duplicates)
