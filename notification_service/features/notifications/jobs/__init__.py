"""
Background jobs for the notification feature.
"""

from .retention_sweep_job import RetentionSweepJob, start_retention_sweep_scheduler

__all__ = ["RetentionSweepJob", "start_retention_sweep_scheduler"]
