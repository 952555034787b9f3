"""Run-scoped mapping from tracking id to remote id, and lazy references.

A payload may reference another resource before that resource exists on the
platform. The reference is stored as a Ref (or a RefTemplate for ids embedded
in strings, e.g. composite monitor queries) and only resolved when the payload
is serialized for a diff or an API call.

The IdMap is the only state written concurrently during plan execution, so
every access goes through a lock.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .errors import UnresolvableIdError
from .tracking import TRACKING_ID_PATTERN

logger = logging.getLogger(__name__)

RemoteId = str | int

TEMPLATE_REF_PATTERN = re.compile(rf"%\{{({TRACKING_ID_PATTERN})\}}")


@dataclass(frozen=True)
class Ref:
    """Deferred reference to the remote id of another resource."""

    tracking_id: str

    def __str__(self) -> str:
        return f"!ref {self.tracking_id}"


@dataclass(frozen=True)
class RefTemplate:
    """String with embedded "%{<tracking_id>}" references."""

    template: str

    @property
    def tracking_ids(self) -> list[str]:
        return TEMPLATE_REF_PATTERN.findall(self.template)


def placeholder(tracking_id: str) -> str:
    """Symbolic value shown for ids that will only exist after a create."""
    return f"(id of {tracking_id})"


class IdMap:
    """Thread-safe tracking id -> remote id map.

    Tracking ids can also be marked as pending: they will be created by the
    current run but have no remote id yet. References to pending ids render
    as placeholders during planning and must be re-resolved after the create
    succeeded.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: dict[str, RemoteId] = {}
        self._pending: set[str] = set()

    def set(self, tracking_id: str, remote_id: RemoteId) -> None:
        with self._lock:
            self._ids[tracking_id] = remote_id
            self._pending.discard(tracking_id)

    def mark_pending(self, tracking_id: str) -> None:
        with self._lock:
            self._ids.pop(tracking_id, None)
            self._pending.add(tracking_id)

    def discard(self, tracking_id: str) -> None:
        with self._lock:
            self._ids.pop(tracking_id, None)
            self._pending.discard(tracking_id)

    def get(self, tracking_id: str) -> RemoteId | None:
        with self._lock:
            return self._ids.get(tracking_id)

    def is_pending(self, tracking_id: str) -> bool:
        with self._lock:
            return tracking_id in self._pending

    def __contains__(self, tracking_id: object) -> bool:
        with self._lock:
            return tracking_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def snapshot(self) -> dict[str, RemoteId]:
        with self._lock:
            return dict(self._ids)

    def resolve(
        self, source: str, tracking_id: str, *, allow_pending: bool = False
    ) -> RemoteId | str:
        """Look up the remote id for a reference held by source.

        Args:
            source: Tracking id of the resource holding the reference.
            tracking_id: Referenced tracking id.
            allow_pending: Return a placeholder for ids that the current run
                is about to create instead of failing.

        Raises:
            UnresolvableIdError: If the id is unknown, or pending and
                allow_pending is False.
        """
        with self._lock:
            remote_id = self._ids.get(tracking_id)
            pending = tracking_id in self._pending

        if remote_id is not None:
            return remote_id
        if pending:
            if allow_pending:
                return placeholder(tracking_id)
            raise UnresolvableIdError(
                source,
                tracking_id,
                "it is created by the current run but was not created before this item",
            )
        raise UnresolvableIdError(
            source,
            tracking_id,
            "it does not exist, is not part of this run, or is being deleted",
        )


def iter_references(value: Any) -> Iterator[str]:
    """Yield every tracking id referenced anywhere in a payload."""
    if isinstance(value, Ref):
        yield value.tracking_id
    elif isinstance(value, RefTemplate):
        yield from value.tracking_ids
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, list | tuple):
        for item in value:
            yield from iter_references(item)


def resolve_payload(value: Any, id_map: IdMap, source: str, *, allow_pending: bool = False) -> Any:
    """Return a copy of value with every reference replaced by a remote id."""
    if isinstance(value, Ref):
        return id_map.resolve(source, value.tracking_id, allow_pending=allow_pending)
    if isinstance(value, RefTemplate):
        return TEMPLATE_REF_PATTERN.sub(
            lambda m: str(id_map.resolve(source, m.group(1), allow_pending=allow_pending)),
            value.template,
        )
    if isinstance(value, dict):
        return {
            key: resolve_payload(item, id_map, source, allow_pending=allow_pending)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [
            resolve_payload(item, id_map, source, allow_pending=allow_pending) for item in value
        ]
    return value
