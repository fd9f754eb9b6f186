"""Interval scheduling of pipeline cycles on APScheduler."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from januscope.pipeline import Pipeline


logger = structlog.get_logger(__name__)


class CycleScheduler:
    """Runs each service's uptime cycle on its own interval and the certificate
    cycle every ``certificates.check_interval_hours``."""

    def __init__(self, pipeline: Pipeline, scheduler: Optional[AsyncIOScheduler] = None):
        self.pipeline = pipeline
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        kwargs: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> None:
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            kwargs=kwargs or {},
            name=description or job_id,
            # A slow cycle must not overlap the next run of the same job.
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.jobs[job_id] = {
            "job": job,
            "seconds": seconds,
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }
        logger.info("Added interval job", job_id=job_id, interval_seconds=seconds, description=description)

    def remove_job(self, job_id: str) -> bool:
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False
        self.scheduler.remove_job(job_id)
        del self.jobs[job_id]
        logger.info("Removed job", job_id=job_id)
        return True

    def schedule_cycles(self) -> None:
        for service in self.pipeline.store.list_active_services():
            self.add_interval_job(
                f"uptime-{service.service_id}",
                self.pipeline.run_uptime_cycle,
                seconds=service.check_interval_seconds,
                kwargs={"service_ids": [service.service_id]},
                description=f"Uptime check for {service.name}",
            )
        hours = self.pipeline.config.certificates.check_interval_hours
        self.add_interval_job(
            "certificates",
            self.pipeline.run_certificate_cycle,
            seconds=hours * 3600,
            description="Certificate expiry check",
        )

    def list_jobs(self) -> List[Dict[str, Any]]:
        out = []
        for job_id, info in self.jobs.items():
            job = self.scheduler.get_job(job_id)
            if job is None:
                continue
            next_run = getattr(job, "next_run_time", None)
            out.append(
                {
                    "job_id": job_id,
                    "name": job.name,
                    "interval_seconds": info["seconds"],
                    "next_run": next_run.isoformat() if next_run else None,
                }
            )
        return out

    async def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self.scheduler.start()
        self.running = True
        logger.info("Cycle scheduler started", jobs=len(self.jobs))

    async def stop(self) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Cycle scheduler stopped")
