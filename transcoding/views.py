import logging
import os
from uuid import uuid4

from django.db.models import Avg, Count, Max, Min, Sum
from django.shortcuts import get_object_or_404
from rest_framework import status, views
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle

from .models import Job, JobStatus
from .serializers import (
    BulkTranscodeSerializer,
    JobCreateSerializer,
    JobSerializer,
    PresignRequestSerializer,
    PresignResponseSerializer,
    StartTranscodeSerializer,
)
from .storage import create_presigned_put
from .tasks import enqueue_transcode

logger = logging.getLogger(__name__)

ENQUEUE_FAILED_MESSAGE = "Could not queue job for transcoding"
DELETABLE_STATUSES = (JobStatus.PENDING, JobStatus.COMPLETED, JobStatus.FAILED)


class TranscodeStartThrottle(UserRateThrottle):
    scope = "transcode_start"


class PresignUploadView(views.APIView):
    """
    Returns a presigned PUT URL + recommended key so the client can upload
    its source directly to the source bucket without streaming through Django.
    """

    def post(self, request):
        ser = PresignRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        filename = ser.validated_data["filename"]
        content_type = ser.validated_data.get("content_type") or None

        # Namespaced per user: <user>/<uuid>_<filename>
        safe_name = f"{uuid4().hex}_{os.path.basename(filename)}"
        key = f"{request.user.pk}/{safe_name}"

        signed = create_presigned_put(key, content_type=content_type)
        resp = {"key": key, "url": signed["url"], "headers": signed.get("headers", {})}
        return Response(PresignResponseSerializer(resp).data, status=status.HTTP_201_CREATED)


class JobListCreateView(views.APIView):
    """
    GET lists the caller's jobs, newest first.
    POST registers an uploaded source as a new pending job; transcoding is
    started separately through TranscodeStartView.
    """

    def get(self, request):
        jobs = Job.objects.filter(owner=request.user)
        wanted = request.query_params.get("status")
        if wanted:
            if wanted not in JobStatus.values:
                return Response({"detail": f"Unknown status: {wanted}"}, status=status.HTTP_400_BAD_REQUEST)
            jobs = jobs.filter(status=wanted)
        return Response(JobSerializer(jobs, many=True).data)

    def post(self, request):
        ser = JobCreateSerializer(data=request.data, context={"request": request})
        ser.is_valid(raise_exception=True)
        job = Job.objects.create(
            owner=request.user,
            original_filename=ser.validated_data["original_filename"],
            input_file_url=ser.validated_data["key"],
            output_format=ser.validated_data["output_format"],
            priority=ser.validated_data["priority"],
        )
        return Response(JobSerializer(job).data, status=status.HTTP_201_CREATED)


class JobDetailView(views.APIView):
    def get(self, request, job_id):
        job = get_object_or_404(Job, pk=job_id, owner=request.user)
        return Response(JobSerializer(job).data)

    def delete(self, request, job_id):
        # conditional on status in the same statement: processing jobs are never removed
        deleted, _ = Job.objects.filter(pk=job_id, owner=request.user, status__in=DELETABLE_STATUSES).delete()
        if deleted:
            return Response(status=status.HTTP_204_NO_CONTENT)
        if Job.objects.filter(pk=job_id, owner=request.user).exists():
            return Response({"detail": "Job is processing and cannot be deleted."}, status=status.HTTP_409_CONFLICT)
        return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)


class TranscodeStartView(views.APIView):
    """
    Kick off transcoding for one pending job. The worker is triggered
    fire-and-forget; the response does not wait for the encode.
    """
    throttle_classes = [TranscodeStartThrottle]

    def post(self, request):
        ser = StartTranscodeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        job_id = ser.validated_data["jobId"]

        job = Job.objects.filter(pk=job_id, owner=request.user).only("id", "status").first()
        if job is None:
            return Response({"detail": "Job not found or access denied"}, status=status.HTTP_404_NOT_FOUND)
        if job.status != JobStatus.PENDING:
            return Response(
                {"detail": f"Job is not pending (current: {job.status})"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        logger.info("start-transcode: user=%s job=%s triggering transcode", request.user.pk, job_id)
        enqueue_transcode(job_id)
        return Response(
            {"success": True, "message": "Transcoding started", "jobId": str(job_id)},
            status=status.HTTP_202_ACCEPTED,
        )


class BulkTranscodeView(views.APIView):
    throttle_classes = [TranscodeStartThrottle]

    def post(self, request):
        ser = BulkTranscodeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        job_ids = ser.validated_data["jobIds"]

        jobs = list(Job.objects.filter(pk__in=job_ids, owner=request.user).only("id", "status"))
        if len(jobs) != len(job_ids):
            return Response(
                {"detail": "One or more jobs not found or access denied"},
                status=status.HTTP_404_NOT_FOUND,
            )
        non_pending = [str(j.id) for j in jobs if j.status != JobStatus.PENDING]
        if non_pending:
            return Response(
                {"detail": "All jobs must be pending", "nonPendingJobs": non_pending},
                status=status.HTTP_400_BAD_REQUEST,
            )

        logger.info("bulk-transcode: user=%s submitting %s jobs", request.user.pk, len(job_ids))
        failed = []
        for job_id in job_ids:
            try:
                enqueue_transcode(job_id)
            except Exception:
                # report per job; earlier submissions stay queued
                logger.exception("Could not enqueue job %s", job_id)
                failed.append({"jobId": str(job_id), "error": ENQUEUE_FAILED_MESSAGE})

        successful = len(job_ids) - len(failed)
        return Response(
            {
                "success": True,
                "message": f"Bulk transcoding started: {successful} succeeded, {len(failed)} failed",
                "total": len(job_ids),
                "successful": successful,
                "failed": len(failed),
                "failedJobs": failed,
            },
            status=status.HTTP_202_ACCEPTED,
        )


class JobStatsView(views.APIView):
    """Per-status queue statistics for the caller's jobs."""

    def get(self, request):
        rows = (
            Job.objects.filter(owner=request.user)
            .values("status")
            .annotate(
                job_count=Count("id"),
                total_size=Sum("total_size_bytes"),
                avg_progress=Avg("progress"),
                oldest_job=Min("created_at"),
                newest_job=Max("created_at"),
            )
            .order_by("status")
        )
        return Response({"stats": list(rows)})
