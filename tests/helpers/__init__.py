from .events import FailingPublisher, RecordingPublisher
from .jobs import CallLog, GatedJob, failing_job, flaky_job, ok_job, sleepy_job
from .queue import drive, drive_until, status_of
from .store import BrokenListStore, RecordingStore

__all__ = [
    "BrokenListStore",
    "CallLog",
    "FailingPublisher",
    "GatedJob",
    "RecordingPublisher",
    "RecordingStore",
    "drive",
    "drive_until",
    "failing_job",
    "flaky_job",
    "ok_job",
    "sleepy_job",
    "status_of",
]
