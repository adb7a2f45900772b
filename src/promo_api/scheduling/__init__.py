"""Scheduling utilities for recurring promotion housekeeping."""

from .config import JobDefinition, ScheduleConfig, load_job_definitions
from .runner import PromotionJobScheduler

__all__ = ["JobDefinition", "PromotionJobScheduler", "ScheduleConfig", "load_job_definitions"]
