"""Single entry point for MySideline sync runs.

Every run that gets past ``open_sync_log`` ends with exactly one terminal
SyncLog row, whatever happens in between. Single-flight comes from the
catalog's unique running-log index, not from any in-process state.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from flask import Flask, current_app
from sqlalchemy.exc import SQLAlchemyError

from oldmanfooty.config import MySidelineSettings
from oldmanfooty.extensions import db
from oldmanfooty.models import SyncLog, SyncStatus, utcnow
from oldmanfooty.services import catalog
from oldmanfooty.services.catalog import AlreadyRunning, InvalidSyncTransition, SyncOutcome
from oldmanfooty.services.mysideline_fetcher import FetchConfig, FetchError, RawPayload, fetch_source
from oldmanfooty.services.mysideline_parser import ParseError, ParseResult, parse_payload
from oldmanfooty.services.reconciler import ReconcileReport, ReconcileTimeout, reconcile

SAMPLE_ID_LIMIT = 10
WARNING_LIMIT = 50
STARTUP_INTERVAL_HOURS = 24


class TriggerOutcome(str, Enum):
    STARTED = "started"
    SKIPPED = "skipped"
    DISABLED = "disabled"


@dataclass(frozen=True)
class TriggerResult:
    outcome: TriggerOutcome
    log_id: int | None = None
    reason: str | None = None

    @classmethod
    def started(cls, log_id: int) -> "TriggerResult":
        return cls(TriggerOutcome.STARTED, log_id=log_id)

    @classmethod
    def skipped(cls, reason: str = "alreadyRunning") -> "TriggerResult":
        return cls(TriggerOutcome.SKIPPED, reason=reason)

    @classmethod
    def disabled(cls) -> "TriggerResult":
        return cls(TriggerOutcome.DISABLED, reason="disabled")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"outcome": self.outcome.value}
        if self.log_id is not None:
            data["logId"] = self.log_id
        if self.reason and self.outcome is not TriggerOutcome.STARTED:
            data["reason"] = self.reason
        return data


class SyncDispatchError(Exception):
    """A manual run was accepted but could not be handed to a worker."""


class RunBudgetExceeded(Exception):
    pass


class SyncOrchestrator:
    def __init__(
        self,
        settings: MySidelineSettings,
        *,
        fetcher: Callable[..., RawPayload] = fetch_source,
        parser: Callable[..., ParseResult] = parse_payload,
        reconciler: Callable[..., ReconcileReport] = reconcile,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher
        self.parser = parser
        self.reconciler = reconciler
        self.clock = clock

    @classmethod
    def from_app(cls, app: Flask | None = None, **kwargs: Any) -> "SyncOrchestrator":
        config = (app or current_app).config
        return cls(MySidelineSettings.from_config(config), **kwargs)

    @property
    def sync_type(self) -> str:
        return self.settings.sync_type

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_scheduled(self) -> TriggerResult:
        if not self.settings.enabled:
            current_app.logger.info("MySideline sync disabled; scheduled run skipped")
            return TriggerResult.disabled()
        return self.run_once(trigger="scheduled")

    def trigger_manual(
        self,
        dispatch: Callable[[int], Any] | None = None,
        triggered_by: str | None = None,
    ) -> TriggerResult:
        """Operator-initiated run; ``dispatch`` hands the opened log to a worker."""
        if not (self.settings.enabled or self.settings.allow_manual_when_disabled):
            return TriggerResult.disabled()

        try:
            log_id = self.begin_run("manual", triggered_by=triggered_by)
        except AlreadyRunning:
            current_app.logger.info("Manual MySideline sync skipped: a sync is already running")
            return TriggerResult.skipped()

        if dispatch is None:
            self.execute_run(log_id)
            return TriggerResult.started(log_id)

        try:
            dispatch(log_id)
        except Exception as exc:
            current_app.logger.error(f"Failed to dispatch MySideline sync {log_id}: {exc}")
            db.session.rollback()
            catalog.mark_failed(log_id, f"dispatchFailed: {exc}")
            raise SyncDispatchError(str(exc)) from exc
        return TriggerResult.started(log_id)

    def run_once(self, trigger: str = "manual") -> TriggerResult:
        try:
            log_id = self.begin_run(trigger)
        except AlreadyRunning:
            current_app.logger.info(f"MySideline {trigger} run skipped: a sync is already running")
            return TriggerResult.skipped()
        self.execute_run(log_id)
        return TriggerResult.started(log_id)

    def startup(self) -> TriggerResult:
        """Reap orphans, then run once unless a sync succeeded recently."""
        self.reap_orphans()
        if not self.settings.enabled:
            return TriggerResult.disabled()
        if not catalog.should_run_sync(self.sync_type, STARTUP_INTERVAL_HOURS):
            current_app.logger.info("MySideline startup run skipped: synced within the last 24 hours")
            return TriggerResult.skipped("recentSuccess")
        return self.run_once(trigger="startup")

    def reap_orphans(self, now: datetime | None = None) -> list[int]:
        cutoff = (now or utcnow()) - timedelta(milliseconds=self.settings.staleness_threshold_ms)
        reaped = []
        for log in catalog.find_orphan_running_logs(cutoff, self.sync_type):
            try:
                catalog.mark_failed(log.id, "orphaned")
            except InvalidSyncTransition:
                current_app.logger.info(f"Sync log {log.id} closed before it could be reaped")
                continue
            current_app.logger.warning(f"Reaped orphaned MySideline sync log {log.id}")
            reaped.append(log.id)
        return reaped

    # ------------------------------------------------------------------
    # Run procedure
    # ------------------------------------------------------------------

    def begin_run(self, trigger: str, triggered_by: str | None = None) -> int:
        metadata: dict[str, Any] = {"sourceUrl": self.settings.url, "trigger": trigger}
        if triggered_by:
            metadata["triggeredBy"] = triggered_by
        log = catalog.open_sync_log(self.sync_type, metadata=metadata)
        current_app.logger.info(f"MySideline sync {log.id} started ({trigger})")
        return log.id

    def execute_run(self, log_id: int) -> SyncLog:
        log = catalog.get_sync_log(log_id)
        if log is None or log.status is not SyncStatus.RUNNING:
            raise InvalidSyncTransition(f"sync log {log_id} is not running")

        metadata: dict[str, Any] = dict(log.meta or {})
        metadata.setdefault("sourceUrl", self.settings.url)
        deadline = self.clock() + self.settings.run_budget_ms / 1000.0

        try:
            outcome = self._run_pipeline(metadata, deadline)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(f"MySideline sync {log_id} crashed")
            outcome = SyncOutcome.failed(f"unexpected: {exc.__class__.__name__}: {exc}", metadata=metadata)

        closed = catalog.close_sync_log(log_id, outcome)
        if closed.status is SyncStatus.COMPLETED:
            current_app.logger.info(
                f"MySideline sync {log_id} completed: {closed.events_processed} processed, "
                f"{closed.events_created} created, {closed.events_updated} updated"
            )
        else:
            current_app.logger.error(f"MySideline sync {log_id} failed: {closed.error_message}")
        return closed

    def _run_pipeline(self, metadata: dict[str, Any], deadline: float) -> SyncOutcome:
        try:
            payload = self._fetch_within_budget(deadline)
        except RunBudgetExceeded:
            return SyncOutcome.failed("timeout", metadata=metadata)
        except FetchError as exc:
            metadata["attemptCount"] = exc.attempts
            return SyncOutcome.failed(exc.describe(), metadata=metadata)
        metadata["attemptCount"] = payload.attempts

        try:
            result = self.parser(payload, event_url=self.settings.event_url)
        except ParseError as exc:
            metadata["parseError"] = {"kind": exc.kind.value, "field": exc.field, "detail": exc.detail}
            return SyncOutcome.failed(exc.describe(), metadata=metadata)

        metadata["batchSize"] = len(result.records)
        metadata["parseWarnings"] = result.warnings[:WARNING_LIMIT]
        metadata["sampleIds"] = result.ids[:SAMPLE_ID_LIMIT]

        if self.clock() >= deadline:
            return SyncOutcome.failed("timeout", metadata=metadata)

        try:
            with catalog.begin_sync_transaction() as tx:
                proxy = catalog.ensure_system_user(tx)
                report = self.reconciler(tx, result.records, proxy.id, deadline=deadline, clock=self.clock)
        except ReconcileTimeout as exc:
            current_app.logger.error(f"MySideline reconciliation rolled back: {exc}")
            return SyncOutcome.failed("timeout", metadata=metadata)
        except SQLAlchemyError as exc:
            return SyncOutcome.failed(f"reconcileFailed: {exc.__class__.__name__}", metadata=metadata)

        metadata["errors"] = report.errors
        metadata["skipped"] = report.skipped
        return SyncOutcome(
            status=SyncStatus.COMPLETED,
            events_processed=report.processed,
            events_created=report.created,
            events_updated=report.updated,
            metadata=metadata,
        )

    def _fetch_within_budget(self, deadline: float) -> RawPayload:
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise RunBudgetExceeded()

        fetch_config = FetchConfig.from_settings(self.settings)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mysideline-fetch")
        try:
            future = executor.submit(self.fetcher, fetch_config, deadline=deadline)
            try:
                return future.result(timeout=remaining)
            except FutureTimeout:
                # The attempt is abandoned; its own deadline stops further retries
                future.cancel()
                raise RunBudgetExceeded()
        finally:
            executor.shutdown(wait=False)


__all__ = [
    "RunBudgetExceeded",
    "SyncDispatchError",
    "SyncOrchestrator",
    "TriggerOutcome",
    "TriggerResult",
]
