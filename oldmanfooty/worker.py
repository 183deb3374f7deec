"""RQ Worker for MySideline sync jobs.

Run with ``python -m oldmanfooty.worker``. On start it reaps sync logs left
running by a crashed process, queues the opportunistic startup run and the
next cron occurrence, then works the queue with the RQ scheduler enabled.
"""

import sys

from rq import Worker

from oldmanfooty import create_app
from oldmanfooty.config import ConfigError
from oldmanfooty.services.queue import queue_service
from oldmanfooty.services.sync_orchestrator import SyncOrchestrator


def prepare_schedule(app):
    """Reap orphans and queue the startup and cron-driven runs."""
    with app.app_context():
        orchestrator = SyncOrchestrator.from_app(app)
        reaped = orchestrator.reap_orphans()
        if reaped:
            app.logger.warning(f"Reaped {len(reaped)} orphaned MySideline sync log(s)")

        settings = orchestrator.settings
        if not settings.enabled:
            app.logger.info("MySideline sync disabled; no runs scheduled")
            return settings

        queue_service.schedule_startup_sync(settings.startup_delay_ms)
        job = queue_service.schedule_next_sync(settings.schedule)
        app.logger.info(f"MySideline sync scheduled ({settings.schedule}); job {job.id}")
        return settings


def main():
    """Start the RQ worker."""
    app = create_app()
    try:
        prepare_schedule(app)
    except ConfigError as e:
        app.logger.error(f"Invalid MySideline configuration: {e}")
        return 2

    worker = Worker([queue_service.sync_queue], connection=queue_service.redis_conn)
    app.logger.info(f"Starting RQ worker on queue '{queue_service.sync_queue.name}'")
    try:
        worker.work(with_scheduler=True)
    except KeyboardInterrupt:
        app.logger.info("Worker stopped by user")
    return 0


if __name__ == '__main__':
    sys.exit(main())
