"""Job lifecycle: request handling, per-project serialization, retries and status events."""

from archdrift.jobs.rendering import RenderFn, make_renderer
from archdrift.jobs.runtime import backoff_from_config, build_runner, open_store
from archdrift.jobs.worker import JobOutcome, JobRunner, ModelSource, StaticLocators, new_job_id

__all__ = [
    "JobOutcome",
    "JobRunner",
    "ModelSource",
    "RenderFn",
    "StaticLocators",
    "backoff_from_config",
    "build_runner",
    "make_renderer",
    "new_job_id",
    "open_store",
]
