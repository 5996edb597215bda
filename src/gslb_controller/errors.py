"""Error kinds raised by the controller core.

Nothing below the reconcile outcome policy retries on its own; these
exceptions carry enough context (kind, namespace/name, upstream error) to be
logged once and mapped to a requeue decision.
"""

from __future__ import annotations

from typing import List, Optional


class GslbError(Exception):
    """Base class for all controller errors."""


class NotFoundError(GslbError):
    """An expected object or record does not exist (yet)."""

    def __init__(self, kind: str, namespace: str, name: str, message: str = ""):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(message or f"{kind} {namespace}/{name} not found")


class QueryError(GslbError):
    """A DNS query failed or returned an unusable response."""


class PeerResolutionError(QueryError):
    """A peer edge server could not be queried.

    `targets` holds whatever was resolved from earlier peers. It is
    incomplete and must not be mistaken for the full target set.
    """

    def __init__(self, message: str, targets: Optional[List[str]] = None):
        super().__init__(message)
        self.targets = list(targets or [])


class StaleOrMissingRecordError(GslbError):
    """The split-brain marker is missing, unparsable or older than the threshold."""


class PersistenceError(GslbError):
    """Create, update or delete against the cluster API failed."""


class ConstructionError(GslbError):
    """A provider or factory could not be built."""


class OwnerReferenceError(GslbError):
    """A controller owner reference could not be attached."""
