"""
Periodic retention sweeps: expire files past their TTL and prune old jobs.

A sweep only deletes rows whose expiry condition already holds at delete
time, so it can run alongside uploads and in-flight jobs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .registry import FileRegistry, JobRegistry
from .utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_JOB_TTL = timedelta(hours=48)
DEFAULT_INTERVAL_SECONDS = 3600
MIN_INTERVAL_SECONDS = 1


@dataclass
class SweepReport:
    expired_files: List[str] = field(default_factory=list)
    pruned_jobs: int = 0


class RetentionSweeper:
    def __init__(
        self,
        files: FileRegistry,
        jobs: JobRegistry,
        job_ttl: timedelta = DEFAULT_JOB_TTL,
    ) -> None:
        self.files = files
        self.jobs = jobs
        self.job_ttl = job_ttl

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport(
            expired_files=self.files.expire_older_than(now),
            pruned_jobs=self.jobs.prune_created_before(now - self.job_ttl),
        )
        logger.info(
            f"Retention sweep: {len(report.expired_files)} file(s) expired, "
            f"{report.pruned_jobs} job(s) pruned"
        )
        return report

    async def run_forever(self, interval_seconds: float = DEFAULT_INTERVAL_SECONDS) -> None:
        """Sweep, then sleep; a failed pass is logged and the loop carries on."""
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:  # noqa: BLE001
                logger.exception("Retention sweep failed")
            await asyncio.sleep(max(MIN_INTERVAL_SECONDS, interval_seconds))
