import logging
import uuid

from django.conf import settings

from . import engine, ledger, storage
from .errors import InvalidJobId, TranscodeError
from .models import Job, RenditionDescriptor

logger = logging.getLogger(__name__)

# Percent ranges of the job's progress bar owned by each phase.
ENCODE_RANGE = (ledger.START_PROGRESS, 90)
UPLOAD_RANGE = (90, ledger.MAX_RUNNING_PROGRESS)

GENERIC_FAILURE = "Processing failed"


def parse_job_id(value) -> uuid.UUID:
    """Accept only a canonical RFC 4122 version-4 UUID string or UUID."""
    if isinstance(value, uuid.UUID):
        parsed = value
    else:
        if not isinstance(value, str) or not value:
            raise InvalidJobId("Job ID is required")
        try:
            parsed = uuid.UUID(value)
        except ValueError:
            raise InvalidJobId("Invalid job ID format") from None
        if str(parsed) != value.lower():
            raise InvalidJobId("Invalid job ID format")
    if parsed.version != 4 or parsed.variant != uuid.RFC_4122:
        raise InvalidJobId("Invalid job ID format")
    return parsed


class _ProgressMirror:
    """Map a phase ratio onto a percent range and write integer changes only."""

    def __init__(self, job_id):
        self.job_id = job_id
        self.last = None

    def report(self, ratio: float, span: tuple[int, int]) -> None:
        lo, hi = span
        percent = int(lo + (hi - lo) * max(0.0, min(1.0, ratio)))
        if percent == self.last:
            return
        self.last = percent
        ledger.record_progress(self.job_id, percent)


def artifact_key(job: Job, name: str) -> str:
    return f"{job.owner_id}/{job.id}/{name}"


def persist_bundle(job: Job, bundle, on_progress=None) -> dict:
    """
    Upload every artifact in the bundle. Returns name -> public URL.
    Raises on the first failed upload; nothing after it is attempted.
    """
    urls = {}
    names = sorted(bundle.files)
    for idx, name in enumerate(names, start=1):
        urls[name] = storage.put_artifact(
            artifact_key(job, name),
            bundle.files[name],
            content_type=storage.content_type_for(name),
        )
        if on_progress:
            on_progress(idx / len(names))
    return urls


def run_job(job_id) -> Job:
    """
    Drive one job from pending to completed or failed.

    JobNotPending from the start transition is raised without touching the
    job. Any error after the job entered processing marks it failed with a
    caller-safe message and is re-raised.
    """
    job_id = parse_job_id(job_id)
    ledger.start_processing(job_id, node=settings.PROCESSING_NODE)

    try:
        job = Job.objects.get(pk=job_id)
        mirror = _ProgressMirror(job_id)

        data, content_type = storage.fetch_source(job.input_file_url)
        bundle = engine.transcode(
            data,
            content_type=content_type,
            on_progress=lambda r: mirror.report(r, ENCODE_RANGE),
        )
        del data

        urls = persist_bundle(job, bundle, on_progress=lambda r: mirror.report(r, UPLOAD_RANGE))

        rendition = bundle.rendition
        descriptor = RenditionDescriptor(
            resolution=rendition.label,
            width=rendition.width,
            height=rendition.height,
            bitrate=rendition.bitrate,
            url=urls[bundle.variant_name],
            size_bytes=bundle.variant_size(),
        )
        ledger.mark_completed(
            job_id,
            output_url=urls[bundle.master_name],
            variants=[descriptor],
            total_size_bytes=bundle.total_size(),
        )
    except Exception as e:
        message = e.public_message if isinstance(e, TranscodeError) else GENERIC_FAILURE
        logger.exception("Job %s failed: %s", job_id, message)
        ledger.mark_failed(job_id, message)
        raise

    job.refresh_from_db()
    return job
