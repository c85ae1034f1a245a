"""
Job orchestration and lifecycle management.

This module manages the end-to-end lifecycle of PDF jobs:
- Job creation and registration
- Pipeline execution on a worker pool
- The one-way state machine ``queued -> processing -> done | failed``
- Optional blocking until a job reaches a terminal state

Job creation and execution are decoupled: ``submit`` persists a ``queued``
record and hands it to the executor. ``execute`` is ``submit`` followed by a
wait, which is what the HTTP layer uses when configured for synchronous jobs.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import PipelineFailure, ToolkitError, ValidationError
from .models import JobStatus
from .pipelines import PIPELINES, Pipeline, PipelineContext, resolve_inputs
from .registry import JobRecord, JobRegistry

logger = logging.getLogger(__name__)


@dataclass
class JobExecution:
    """
    Outcome of a job as seen by the caller that created it.

    Attributes:
        record: Job record as last read from the registry
        error: The exception that failed the job, if any; its ``status_code``
            tells the HTTP layer how to answer
    """

    record: JobRecord
    error: Optional[ToolkitError] = None


class JobManager:
    """
    Central coordinator for job lifecycle management.

    Thread Safety:
        Job bodies run on executor threads. Every state change is a single
        guarded database update in ``JobRegistry``, and terminal states are
        never overwritten.
    """

    def __init__(
        self,
        jobs: JobRegistry,
        context: PipelineContext,
        max_workers: int = 2,
        pipelines: Optional[Dict[str, Pipeline]] = None,
    ) -> None:
        self.jobs = jobs
        self.context = context
        self.pipelines = dict(PIPELINES if pipelines is None else pipelines)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job")

    def list_jobs(self) -> List[JobRecord]:
        return self.jobs.list_jobs()

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.jobs.get(job_id)

    def submit(
        self,
        job_type: str,
        input_files: List[str],
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[JobRecord, "Future[Optional[ToolkitError]]"]:
        """
        Register a job and dispatch it to the worker pool.

        Unsupported job types are recorded and failed immediately rather than
        left queued.

        Returns:
            The freshly created record and a future resolving to the error
            that failed the job (``None`` on success)
        """
        record = self.jobs.create(job_type, input_files, params or {})
        logger.info(f"Job {record.id} registered: {job_type} on {len(input_files)} file(s)")

        if job_type not in self.pipelines:
            error = ValidationError(f"Unsupported job type: {job_type}")
            self.jobs.mark_failed(record.id, str(error))
            logger.warning(f"Job {record.id} failed: {error}")
            future: "Future[Optional[ToolkitError]]" = Future()
            future.set_result(error)
            return record, future

        return record, self._executor.submit(self._run_job, record.id)

    def execute(
        self,
        job_type: str,
        input_files: List[str],
        params: Optional[Dict[str, Any]] = None,
    ) -> JobExecution:
        """Submit a job and block until it is done or failed."""
        record, future = self.submit(job_type, input_files, params)
        error = future.result()
        return JobExecution(record=self.jobs.require(record.id), error=error)

    def _run_job(self, job_id: str) -> Optional[ToolkitError]:
        """
        Execute one job body (runs in a worker thread).

        Never raises: any failure is captured into the job record and returned.
        """
        record = self.jobs.get(job_id)
        if record is None or record.status != JobStatus.QUEUED:
            logger.warning(f"Job {job_id} vanished or left the queue before it could start")
            return None

        self.jobs.mark_processing(job_id)
        pipeline = self.pipelines[record.type]
        try:
            inputs = resolve_inputs(self.context, record.input_files)
            result = pipeline(self.context, inputs, record.params)
        except ToolkitError as exc:
            error: ToolkitError = exc
        except Exception as exc:  # noqa: BLE001
            logger.exception(f"Job {job_id} crashed")
            error = PipelineFailure(str(exc) or exc.__class__.__name__)
        else:
            tool = Path(result.tool).name if result.tool else None
            self.jobs.mark_done(job_id, result.output.id, tool)
            logger.info(f"Job {job_id} done: output {result.output.id}, tool {tool or 'none'}")
            return None

        self.jobs.mark_failed(job_id, str(error))
        logger.error(f"Job {job_id} failed: {error}")
        return error

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
