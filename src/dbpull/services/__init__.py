"""Pipeline pieces: endpoints, stages, orchestration and job entry points."""

from dbpull.services.connections import (
    ConnectionSet,
    DatabaseEndpoint,
    ShellEndpoint,
    resolve_connections,
)
from dbpull.services.importer import ImportMode, detect_import_mode
from dbpull.services.jobs import PullJobQueue, build_job_context, check_environment_gate, run_pull
from dbpull.services.pipeline import PipelineState, PullJobContext, PullPipeline, PullResult
from dbpull.services.progress import (
    CallbackSink,
    NullSink,
    ProgressEvent,
    ProgressReporter,
    ProgressSink,
    RecordingSink,
    StageWeights,
)

__all__ = [
    "CallbackSink",
    "ConnectionSet",
    "DatabaseEndpoint",
    "ImportMode",
    "NullSink",
    "PipelineState",
    "ProgressEvent",
    "ProgressReporter",
    "ProgressSink",
    "PullJobContext",
    "PullJobQueue",
    "PullPipeline",
    "PullResult",
    "RecordingSink",
    "ShellEndpoint",
    "StageWeights",
    "build_job_context",
    "check_environment_gate",
    "detect_import_mode",
    "resolve_connections",
    "run_pull",
]
