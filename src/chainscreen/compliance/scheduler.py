"""
Screening scheduler.

Runs the periodic scan for new transactions on monitored addresses. A run
never starts while the previous one is still in progress: an in-process
lock covers this worker, an optional LeaseLock covers other workers sharing
the same database. The lease is renewed while a run is in progress.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from chainscreen.compliance.pipeline import CompliancePipeline, ScreeningReport
from chainscreen.storage import LeaseLock

logger = logging.getLogger(__name__)

SCREENING_LOCK_KEY = "screening:all-organizations"
JOB_HISTORY_LIMIT = 100


@dataclass
class ScreeningJob:
    """One scheduled screening run."""

    id: UUID = field(default_factory=uuid4)
    status: str = "pending"  # pending, running, completed, failed, skipped
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    organizations_processed: int = 0
    cases_created: int = 0
    errors: list[str] = field(default_factory=list)
    reports: list[ScreeningReport] = field(default_factory=list)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get job duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "organizations_processed": self.organizations_processed,
            "cases_created": self.cases_created,
            "errors": list(self.errors),
        }


class ScreeningScheduler:
    """Periodic, non-overlapping screening of all organizations."""

    def __init__(
        self,
        pipeline: CompliancePipeline,
        interval_seconds: float = 600.0,
        lease_lock: Optional[LeaseLock] = None,
        lease_ttl_seconds: float = 300.0,
        job_history_limit: int = JOB_HISTORY_LIMIT,
    ):
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self.lease_lock = lease_lock
        self.lease_ttl_seconds = lease_ttl_seconds
        self._run_lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._jobs: deque[ScreeningJob] = deque(maxlen=job_history_limit)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def jobs(self) -> list[ScreeningJob]:
        """Most recent jobs, oldest first."""
        return list(self._jobs)

    async def run_once(self) -> ScreeningJob:
        """
        Run one screening pass unless another pass is in progress.

        Returns:
            The job record; status "skipped" if a run was already going
        """
        job = ScreeningJob()
        self._jobs.append(job)

        if self._run_lock.locked():
            job.status = "skipped"
            logger.info("Screening run still in progress, skipping this tick")
            return job

        async with self._run_lock:
            token = None
            if self.lease_lock is not None:
                token = await self.lease_lock.acquire(SCREENING_LOCK_KEY, self.lease_ttl_seconds)
                if token is None:
                    job.status = "skipped"
                    logger.info("Screening lease held by another worker, skipping this tick")
                    return job

            job.status = "running"
            job.started_at = datetime.utcnow()
            logger.info(f"Starting screening job {job.id}")
            heartbeat = asyncio.create_task(self._keep_lease(token)) if token is not None else None

            try:
                reports = await self.pipeline.process_all_organizations()
                job.reports = reports
                job.organizations_processed = len(reports)
                job.cases_created = sum(r.cases_created for r in reports)
                for report in reports:
                    job.errors.extend(f"{report.organization_id}: {e}" for e in report.errors)
                job.status = "completed"
                job.completed_at = datetime.utcnow()
                logger.info(
                    f"Screening job {job.id} completed in {job.duration_seconds:.1f}s, "
                    f"{job.cases_created} cases created"
                )
            except Exception as e:
                job.status = "failed"
                job.errors.append(str(e))
                job.completed_at = datetime.utcnow()
                logger.error(f"Screening job {job.id} failed: {e}")
                raise
            finally:
                if heartbeat is not None:
                    heartbeat.cancel()
                    try:
                        await heartbeat
                    except asyncio.CancelledError:
                        pass
                if token is not None:
                    await self.lease_lock.release(SCREENING_LOCK_KEY, token)

        return job

    async def _keep_lease(self, token: str) -> None:
        """Renew the lease every third of its lifetime while a run is going."""
        interval = self.lease_ttl_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.lease_lock.renew(SCREENING_LOCK_KEY, token, self.lease_ttl_seconds)
            except Exception:
                logger.exception("Failed to renew the screening lease")
                continue
            if not renewed:
                logger.warning("Screening lease lost while the run is still in progress")
                return

    async def run_forever(self) -> None:
        """Run screening every interval until stop() is called."""
        self._stop.clear()
        logger.info(f"Screening scheduler started, interval {self.interval_seconds}s")
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Screening run failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Screening scheduler stopped")

    def stop(self) -> None:
        self._stop.set()
