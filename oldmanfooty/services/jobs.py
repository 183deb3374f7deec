"""Background job functions for RQ worker."""


def run_mysideline_sync_job(log_id):
    """Background job executing a sync run whose log was opened by the trigger."""
    from oldmanfooty import create_app
    from oldmanfooty.services.sync_orchestrator import SyncOrchestrator

    app = create_app()

    with app.app_context():
        try:
            log = SyncOrchestrator.from_app(app).execute_run(log_id)
            return log.to_dict()
        except Exception as e:
            app.logger.error(f"MySideline sync job {log_id} failed: {e}")
            raise


def scheduled_mysideline_sync_job():
    """Background job for the cron-driven run; schedules the next occurrence."""
    from oldmanfooty import create_app
    from oldmanfooty.services.queue import queue_service
    from oldmanfooty.services.sync_orchestrator import SyncOrchestrator

    app = create_app()

    with app.app_context():
        orchestrator = SyncOrchestrator.from_app(app)
        try:
            return orchestrator.run_scheduled().to_dict()
        except Exception as e:
            app.logger.error(f"Scheduled MySideline sync failed: {e}")
            raise
        finally:
            queue_service.schedule_next_sync(orchestrator.settings.schedule)


def mysideline_startup_job():
    """Background job reaping orphaned logs and running once if no recent success."""
    from oldmanfooty import create_app
    from oldmanfooty.services.sync_orchestrator import SyncOrchestrator

    app = create_app()

    with app.app_context():
        try:
            return SyncOrchestrator.from_app(app).startup().to_dict()
        except Exception as e:
            app.logger.error(f"MySideline startup job failed: {e}")
            raise
