from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from omegaconf import DictConfig

from .converters import ConverterAdapter
from .database import RegistryDatabase
from .job_manager import JobManager
from .pipelines import PipelineContext
from .registry import FileRegistry, JobRegistry
from .storage import LocalStorage
from .sweeper import RetentionSweeper
from .utils import ensure_directory


@dataclass
class Services:
    settings: DictConfig
    storage: LocalStorage
    files: FileRegistry
    jobs: JobRegistry
    converter: ConverterAdapter
    context: PipelineContext
    job_manager: JobManager
    sweeper: RetentionSweeper


def configure_logging(settings: DictConfig) -> None:
    logging.basicConfig(
        level=str(settings.logging.level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_services(settings: DictConfig) -> Services:
    """Wire storage, registries, converters, the job engine and the sweeper."""
    root = ensure_directory(Path(settings.storage.root).resolve())
    db_path = Path(settings.storage.database) if settings.storage.database else root / "registry.db"

    storage = LocalStorage(root / "blobs")
    database = RegistryDatabase(db_path)
    retention = settings.retention
    files = FileRegistry(database, storage, ttl=timedelta(hours=float(retention.file_ttl_hours)))
    jobs = JobRegistry(database)
    converter = ConverterAdapter.from_settings(settings)
    context = PipelineContext(
        files=files,
        converter=converter,
        scratch_root=ensure_directory(root / "tmp"),
        convert_targets=list(settings.converters.office.targets),
    )
    return Services(
        settings=settings,
        storage=storage,
        files=files,
        jobs=jobs,
        converter=converter,
        context=context,
        job_manager=JobManager(jobs, context, max_workers=int(settings.jobs.max_workers)),
        sweeper=RetentionSweeper(files, jobs, job_ttl=timedelta(hours=float(retention.job_ttl_hours))),
    )
