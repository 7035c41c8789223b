"""
Retention sweep job.

Periodically applies the configured retention policy to every active
notification engine. Runs inside the API process because engines are
in-memory per session.
"""

import asyncio
from datetime import UTC, datetime

from notification_service.config import settings
from notification_service.infrastructure.observability.logging import get_logger

from ..services.registry import EngineRegistry
from ..services.retention import RetentionPolicy, policy_from_config

logger = get_logger(__name__)

RETRY_AFTER_ERROR_SECONDS = 60


class SweepMetrics:
    """Metrics tracking for one sweep run."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.engines_checked = 0
        self.notifications_evicted = 0
        self.unread_evicted = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_sweep(self, evicted: int, unread: int):
        self.engines_checked += 1
        self.notifications_evicted += evicted
        self.unread_evicted += unread

    def record_processing_error(self, user_id: str | None, error: str):
        self.processing_errors += 1
        self.errors.append(
            {
                "user_id": user_id,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.error("Retention sweep error", user_id=user_id, error=error, job_run="retention_sweep")

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "retention_sweep",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "engines_checked": self.engines_checked,
            "notifications_evicted": self.notifications_evicted,
            "unread_evicted": self.unread_evicted,
            "processing_errors": self.processing_errors,
            "errors_count": len(self.errors),
        }


class RetentionSweepJob:
    """Evicts old or excess notifications from every active engine."""

    def __init__(self, registry: EngineRegistry, policy: RetentionPolicy | None = None):
        self.registry = registry
        if policy is None:
            config = settings.get_retention_config()
            policy = policy_from_config(config["max_age_days"], config["max_entries"])
        self.policy = policy
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = SweepMetrics()

    async def run_once(self, now: datetime | None = None) -> dict:
        """
        Run a single sweep over all registered engines.

        Returns:
            Dict: Job execution metrics
        """
        if self.policy is None:
            return {"skipped": True, "reason": "retention_disabled"}
        if self.is_running:
            logger.warning("Retention sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()
            now = now or datetime.now(UTC)

            for engine in self.registry.engines():
                if engine.closed:
                    continue
                try:
                    removed = engine.sweep(self.policy, now=now)
                    self.job_metrics.record_sweep(
                        evicted=len(removed), unread=sum(1 for n in removed if not n.read)
                    )
                except Exception as e:
                    self.job_metrics.record_processing_error(engine.user_id, str(e))

            self.job_metrics.finalize()
            self.last_run_time = now
            metrics = self.job_metrics.to_dict()
            logger.info("Retention sweep completed", **metrics)
            return metrics

        finally:
            self.is_running = False


async def start_retention_sweep_scheduler(job: RetentionSweepJob, interval_seconds: float | None = None):
    """Run the sweep forever at the configured interval; cancel the task to stop it."""
    interval = interval_seconds or settings.get_retention_config()["interval_seconds"]
    logger.info("Starting retention sweep scheduler", interval_seconds=interval)

    while True:
        try:
            await job.run_once()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Retention sweep scheduler stopped")
            raise
        except Exception as e:
            logger.error("Error in retention sweep scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(RETRY_AFTER_ERROR_SECONDS)
