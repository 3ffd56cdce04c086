"""MicroFlash scheduling core: FSRS scheduling, review sprints and reminders."""

__version__ = "0.1.0"
