"""Queue service for MySideline sync jobs using RQ."""

from __future__ import annotations

import os
from datetime import datetime, timedelta

import redis
from croniter import croniter
from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from oldmanfooty.services.jobs import (
    mysideline_startup_job,
    run_mysideline_sync_job,
    scheduled_mysideline_sync_job,
)

SYNC_QUEUE_NAME = 'mysideline'
SCHEDULED_JOB_ID = 'mysideline-scheduled-sync'
STARTUP_JOB_ID = 'mysideline-startup-sync'


def next_run_after(schedule: str, base: datetime | None = None) -> datetime:
    """Next cron occurrence in local time."""
    base = base or datetime.now().astimezone()
    return croniter(schedule, base).get_next(datetime)


def scheduled_job_id(run_at: datetime) -> str:
    """One job id per cron occurrence."""
    return f'{SCHEDULED_JOB_ID}-{run_at:%Y%m%d%H%M}'


class QueueService:
    """Service for managing the MySideline sync queue."""

    def __init__(self, redis_url: str | None = None):
        self.redis_conn = self._get_redis_connection(redis_url)
        self.sync_queue = Queue(SYNC_QUEUE_NAME, connection=self.redis_conn)

    def _get_redis_connection(self, redis_url: str | None = None):
        """Get Redis connection from environment."""
        redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379/0')
        return redis.from_url(redis_url)

    def enqueue_sync_run(self, log_id: int, budget_ms: int | None = None):
        """Queue execution of an already-opened sync log."""
        timeout = int((budget_ms or 300_000) / 1000) + 60
        job = self.sync_queue.enqueue(
            run_mysideline_sync_job,
            log_id=log_id,
            job_timeout=timeout,
            description=f'MySideline sync run {log_id}',
        )
        return job

    def schedule_next_sync(self, schedule: str, now: datetime | None = None):
        """Schedule the next cron occurrence; the job reschedules itself when it runs.

        Any other pending occurrence (from an earlier schedule or worker start)
        is cancelled so only one cron run is ever waiting.
        """
        run_at = next_run_after(schedule, now)
        job_id = scheduled_job_id(run_at)
        self.cancel_pending_occurrences(keep=job_id)
        job = self.sync_queue.enqueue_at(
            run_at,
            scheduled_mysideline_sync_job,
            job_id=job_id,
        )
        return job

    def cancel_pending_occurrences(self, keep: str | None = None) -> list[str]:
        registry = self.sync_queue.scheduled_job_registry
        cancelled = []
        for job_id in registry.get_job_ids():
            if job_id.startswith(SCHEDULED_JOB_ID) and job_id != keep:
                try:
                    registry.remove(job_id, delete_job=True)
                except NoSuchJobError:
                    registry.remove(job_id)
                cancelled.append(job_id)
        return cancelled

    def schedule_startup_sync(self, delay_ms: int):
        """Queue the opportunistic run shortly after worker start."""
        job = self.sync_queue.enqueue_in(
            timedelta(milliseconds=delay_ms),
            mysideline_startup_job,
            job_id=STARTUP_JOB_ID,
        )
        return job

    def get_job_status(self, job_id):
        """Get the status of a job by ID."""
        try:
            job = Job.fetch(job_id, connection=self.redis_conn)
        except (NoSuchJobError, RedisError):
            return None
        return {
            'id': job.id,
            'status': job.get_status(),
            'created_at': job.created_at,
            'started_at': job.started_at,
            'ended_at': job.ended_at,
        }

    def get_queue_stats(self):
        """Get queue statistics."""
        try:
            return {
                'name': SYNC_QUEUE_NAME,
                'length': len(self.sync_queue),
                'failed_count': self.sync_queue.failed_job_registry.count,
                'scheduled_count': self.sync_queue.scheduled_job_registry.count,
            }
        except RedisError as exc:
            return {'name': SYNC_QUEUE_NAME, 'error': str(exc)}


# Global queue service instance
queue_service = QueueService()


__all__ = ['QueueService', 'next_run_after', 'queue_service', 'scheduled_job_id']
