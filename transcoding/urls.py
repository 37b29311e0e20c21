from django.urls import path

from .views import (
    BulkTranscodeView,
    JobDetailView,
    JobListCreateView,
    JobStatsView,
    PresignUploadView,
    TranscodeStartView,
)

urlpatterns = [
    path("uploads/presign/", PresignUploadView.as_view(), name="uploads_presign"),
    path("jobs/", JobListCreateView.as_view(), name="jobs"),
    path("jobs/stats/", JobStatsView.as_view(), name="job_stats"),
    path("jobs/<uuid:job_id>/", JobDetailView.as_view(), name="job_detail"),
    path("transcode/start/", TranscodeStartView.as_view(), name="transcode_start"),
    path("transcode/bulk/", BulkTranscodeView.as_view(), name="transcode_bulk"),
]
