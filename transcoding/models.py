import uuid
from dataclasses import asdict, dataclass, field

from django.conf import settings
from django.db import models


class JobStatus(models.TextChoices):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


def parse_status(value) -> JobStatus:
    """Coerce a raw status string to JobStatus; unknown values are rejected."""
    try:
        return JobStatus(value)
    except ValueError:
        raise ValueError(f"Unknown job status: {value!r}") from None


class Job(models.Model):
    Status = JobStatus

    class OutputFormat(models.TextChoices):
        HLS = "hls"
        DASH = "dash"  # reserved, no code path yet

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="transcoding_jobs",
    )
    original_filename = models.CharField(max_length=255)
    input_file_url = models.CharField(max_length=1024)   # object key in S3_SOURCE_BUCKET
    output_format = models.CharField(max_length=8, choices=OutputFormat.choices, default=OutputFormat.HLS)
    status = models.CharField(max_length=16, choices=JobStatus.choices, default=JobStatus.PENDING)
    progress = models.PositiveSmallIntegerField(default=0)  # 0..100
    output_url = models.CharField(max_length=2048, blank=True, default="")  # master manifest
    resolution_variants = models.JSONField(default=list, blank=True)   # [RenditionDescriptor.as_dict()]
    total_size_bytes = models.BigIntegerField(default=0)
    error_message = models.TextField(blank=True, default="")

    processing_node = models.CharField(max_length=255, blank=True, default="")
    priority = models.IntegerField(default=5)
    retry_count = models.IntegerField(default=0)
    estimated_duration = models.IntegerField(null=True, blank=True)  # seconds

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "transcoding_jobs"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "-priority", "created_at"], name="idx_jobs_status_priority"),
            models.Index(fields=["owner", "status"], name="idx_jobs_owner_status"),
        ]

    def __str__(self):
        return f"{self.original_filename} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return str(self.status) in TERMINAL_STATUSES


@dataclass(frozen=True)
class Rendition:
    """One rung of the ladder as configured (no storage location yet)."""
    label: str
    width: int
    height: int
    bitrate: int  # bits/second, configured target


@dataclass(frozen=True)
class RenditionDescriptor:
    """
    A rung that was actually produced and persisted.
    ``bitrate`` is the configured target, not a measured value.
    """
    resolution: str
    width: int
    height: int
    bitrate: int
    url: str
    size_bytes: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ArtifactBundle:
    files: dict = field(default_factory=dict)   # name -> bytes
    master_name: str = ""
    variant_name: str = ""
    rendition: Rendition | None = None

    def total_size(self) -> int:
        return sum(len(b) for b in self.files.values())

    def variant_size(self) -> int:
        """Bytes belonging to the rung itself (everything but the master manifest)."""
        return sum(len(b) for name, b in self.files.items() if name != self.master_name)
