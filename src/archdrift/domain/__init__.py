"""
Domain types shared across archdrift components: path nodes, statuses, job requests and
job status events.

The domain layer performs no I/O.
"""

from __future__ import annotations

from archdrift.domain.models import (
    DomainValidationError,
    ExcludedPath,
    GitHubSource,
    JobRequest,
    JobRequestError,
    JobState,
    JobStatusEvent,
    PathNode,
    PathStatus,
    StructurizrSource,
)

__all__ = [
    "DomainValidationError",
    "ExcludedPath",
    "GitHubSource",
    "JobRequest",
    "JobRequestError",
    "JobState",
    "JobStatusEvent",
    "PathNode",
    "PathStatus",
    "StructurizrSource",
]
