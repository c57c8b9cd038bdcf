from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import AppConfig, Settings, get_config, get_settings
from circadian.core.clock import ReferenceClock, get_clock
from circadian.core.database import get_db
from circadian.pipeline.engine import PipelineEngine
from circadian.pipeline.registry import PipelineRegistry, get_registry
from circadian.services.executor import JobExecutor, get_executor

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]
Clock = Annotated[ReferenceClock, Depends(get_clock)]
Registry = Annotated[PipelineRegistry, Depends(get_registry)]


def get_job_executor() -> JobExecutor:
    return get_executor()


def get_pipeline_engine(executor: Annotated[JobExecutor, Depends(get_job_executor)]) -> PipelineEngine:
    """The engine manual runs share with the executor."""
    return executor.engine


Executor = Annotated[JobExecutor, Depends(get_job_executor)]
Engine = Annotated[PipelineEngine, Depends(get_pipeline_engine)]
