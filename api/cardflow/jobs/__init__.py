from .automations import process_event_job, scan_due_dates_job
from .maintenance import prune_automation_logs_job

__all__ = [
    "process_event_job",
    "prune_automation_logs_job",
    "scan_due_dates_job",
]
"""Background job modules for RQ workers and schedulers."""
