"""Scheduled job invocation and staged container image builds."""

from .build import BuildPipeline, PipelineContext, Stage
from .catalog import Catalog
from .invoker import ScheduledInvoker
from .service import SchedulerService

__all__ = [
    "BuildPipeline",
    "Catalog",
    "PipelineContext",
    "ScheduledInvoker",
    "SchedulerService",
    "Stage",
]
