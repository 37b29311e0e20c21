import logging

from celery import shared_task

from .errors import InvalidJobId, JobNotPending, LedgerConflict
from .pipeline import parse_job_id, run_job

logger = logging.getLogger(__name__)


@shared_task(bind=True, ignore_result=True)
def transcode_job(self, job_id: str):
    """
    Worker entry point. The payload is the single job id; it is validated
    before any ledger read. No automatic retry: a failed job stays failed.
    """
    try:
        job_id = parse_job_id(job_id)
    except InvalidJobId as e:
        logger.error("Rejected transcode payload %r: %s", job_id, e)
        raise

    logger.info("Starting transcoding job %s (task %s)", job_id, self.request.id)
    try:
        job = run_job(job_id)
    except JobNotPending:
        # someone else already owns this job
        logger.warning("Job %s was not pending; skipping", job_id)
        return None
    except LedgerConflict:
        logger.error("Job %s changed state while it was being processed; outputs were not recorded", job_id)
        raise
    logger.info("Transcoding completed for job %s", job_id)
    return str(job.id)


def enqueue_transcode(job_id) -> str:
    """Submit a job fire-and-forget; the caller does not wait on the result."""
    result = transcode_job.delay(str(job_id))
    return result.id
