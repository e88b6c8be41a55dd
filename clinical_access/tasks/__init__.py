"""Scheduled tasks for the access control service.

- Access request expiration sweep (PENDING requests past their deadline)
"""

from clinical_access.tasks.expiration_sweep import run_expiration_sweep_task, sweep_loop

__all__ = [
    "run_expiration_sweep_task",
    "sweep_loop",
]
