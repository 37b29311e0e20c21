"""
Job lifecycle transitions.

    pending -> processing -> completed
                          -> failed

Every write is a single conditional UPDATE on the current status, so the
check and the set happen atomically in the database. ``start_processing``
is the only guard against two actors transcoding the same job.
"""
import logging

from django.utils import timezone

from .errors import JobNotPending, LedgerConflict
from .models import Job, JobStatus, parse_status
from .signals import job_changed

logger = logging.getLogger(__name__)

TRANSITIONS = {
    JobStatus.PENDING.value: frozenset({JobStatus.PROCESSING.value}),
    JobStatus.PROCESSING.value: frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value}),
    JobStatus.COMPLETED.value: frozenset(),
    JobStatus.FAILED.value: frozenset(),
}

START_PROGRESS = 10
MAX_RUNNING_PROGRESS = 99
ERROR_MESSAGE_MAX_CHARS = 500


def can_transition(src, dst) -> bool:
    src, dst = parse_status(src), parse_status(dst)
    return dst.value in TRANSITIONS[src.value]


def _notify(job_id, status, progress):
    job_changed.send(sender=Job, job_id=job_id, status=str(status), progress=progress)


def start_processing(job_id, node: str = "") -> None:
    """pending -> processing, or JobNotPending if the job is not pending."""
    updated = Job.objects.filter(pk=job_id, status=JobStatus.PENDING).update(
        status=JobStatus.PROCESSING,
        progress=START_PROGRESS,
        processing_node=node,
        updated_at=timezone.now(),
    )
    if updated != 1:
        current = Job.objects.filter(pk=job_id).values_list("status", flat=True).first()
        logger.warning("Job %s cannot start: status is %s", job_id, current or "missing")
        raise JobNotPending(f"job {job_id} is not pending (current: {current or 'missing'})")
    logger.info("Job %s -> processing on %s", job_id, node or "?")
    _notify(job_id, JobStatus.PROCESSING, START_PROGRESS)


def record_progress(job_id, percent: int) -> bool:
    """
    Store a progress value while the job is processing.

    Values are clamped below 100 (100 is reserved for completion) and never
    lower the stored progress. Returns False when the write was rejected,
    which includes every write to a completed or failed job.
    """
    percent = max(0, min(MAX_RUNNING_PROGRESS, int(percent)))
    updated = Job.objects.filter(
        pk=job_id,
        status=JobStatus.PROCESSING,
        progress__lte=percent,
    ).update(progress=percent, updated_at=timezone.now())
    if updated:
        _notify(job_id, JobStatus.PROCESSING, percent)
    return bool(updated)


def mark_completed(job_id, output_url: str, variants: list, total_size_bytes: int) -> None:
    """processing -> completed. ``variants`` are RenditionDescriptors."""
    now = timezone.now()
    created_at = Job.objects.filter(pk=job_id).values_list("created_at", flat=True).first()
    duration = int((now - created_at).total_seconds()) if created_at else None

    updated = Job.objects.filter(pk=job_id, status=JobStatus.PROCESSING).update(
        status=JobStatus.COMPLETED,
        progress=100,
        output_url=output_url,
        resolution_variants=[v.as_dict() for v in variants],
        total_size_bytes=total_size_bytes,
        estimated_duration=duration,
        updated_at=now,
    )
    if updated != 1:
        raise LedgerConflict(f"job {job_id} is no longer processing")
    logger.info("Job %s -> completed (%s bytes)", job_id, total_size_bytes)
    _notify(job_id, JobStatus.COMPLETED, 100)


def mark_failed(job_id, message: str) -> bool:
    """processing -> failed with a caller-safe message. False if not processing."""
    message = (message or "Processing failed")[:ERROR_MESSAGE_MAX_CHARS]
    updated = Job.objects.filter(pk=job_id, status=JobStatus.PROCESSING).update(
        status=JobStatus.FAILED,
        error_message=message,
        updated_at=timezone.now(),
    )
    if not updated:
        logger.warning("Job %s could not be marked failed: not processing", job_id)
        return False
    logger.info("Job %s -> failed: %s", job_id, message)
    current = Job.objects.filter(pk=job_id).values_list("progress", flat=True).first()
    _notify(job_id, JobStatus.FAILED, current)
    return True
