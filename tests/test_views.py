import uuid

import pytest
from rest_framework.test import APIClient

from transcoding import views
from transcoding.models import Job

pytestmark = pytest.mark.django_db


@pytest.fixture
def client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def enqueued(monkeypatch):
    submitted = []
    monkeypatch.setattr(views, "enqueue_transcode", lambda job_id: submitted.append(str(job_id)) or "task-id")
    return submitted


def test_requires_authentication(db):
    resp = APIClient().get("/api/jobs/")
    assert resp.status_code in (401, 403)


def test_presign_namespaces_key_per_user(client, user, monkeypatch):
    captured = {}

    def fake_presign(key, content_type=None):
        captured["key"] = key
        return {"url": f"https://s3.example.test/source-files/{key}?sig=1", "headers": {"Content-Type": content_type}}

    monkeypatch.setattr(views, "create_presigned_put", fake_presign)
    resp = client.post("/api/uploads/presign/", {"filename": "../../clip.mp4", "content_type": "video/mp4"}, format="json")

    assert resp.status_code == 201
    key = resp.json()["key"]
    assert key == captured["key"]
    assert key.startswith(f"{user.pk}/")
    assert key.endswith("_clip.mp4")
    assert ".." not in key


def test_create_job_is_pending(client, user):
    resp = client.post(
        "/api/jobs/",
        {"original_filename": "holiday.mov", "key": f"{user.pk}/abc_holiday.mov"},
        format="json",
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["progress"] == 0
    assert body["output_format"] == "hls"
    assert body["resolution_variants"] == []
    job = Job.objects.get(pk=body["id"])
    assert job.owner == user


def test_create_job_rejects_foreign_key(client, other_user):
    resp = client.post(
        "/api/jobs/",
        {"original_filename": "x.mp4", "key": f"{other_user.pk}/abc_x.mp4"},
        format="json",
    )
    assert resp.status_code == 400


def test_list_only_own_jobs_with_status_filter(client, make_job, other_user):
    mine = make_job()
    make_job(status=Job.Status.COMPLETED, progress=100)
    make_job(owner=other_user)

    resp = client.get("/api/jobs/")
    assert resp.status_code == 200
    assert len(resp.json()) == 2

    resp = client.get("/api/jobs/", {"status": "pending"})
    assert [j["id"] for j in resp.json()] == [str(mine.id)]

    assert client.get("/api/jobs/", {"status": "done"}).status_code == 400


def test_detail_hides_other_users_jobs(client, make_job, other_user):
    theirs = make_job(owner=other_user)
    assert client.get(f"/api/jobs/{theirs.id}/").status_code == 404


def test_detail_shows_variants(client, make_job):
    variant = {
        "resolution": "720p", "width": 1280, "height": 720, "bitrate": 2_128_000,
        "url": "https://cdn.example.test/v720p.m3u8", "size_bytes": 10,
    }
    job = make_job(status=Job.Status.COMPLETED, progress=100, resolution_variants=[variant],
                   output_url="https://cdn.example.test/master.m3u8", total_size_bytes=12)
    body = client.get(f"/api/jobs/{job.id}/").json()
    assert body["resolution_variants"] == [variant]
    assert body["output_url"].endswith("master.m3u8")


def test_delete_rules(client, make_job):
    pending = make_job()
    running = make_job(status=Job.Status.PROCESSING)

    assert client.delete(f"/api/jobs/{running.id}/").status_code == 409
    assert client.delete(f"/api/jobs/{pending.id}/").status_code == 204
    assert not Job.objects.filter(pk=pending.id).exists()
    assert Job.objects.filter(pk=running.id, status=Job.Status.PROCESSING).exists()


@pytest.mark.parametrize("status", [Job.Status.PENDING, Job.Status.COMPLETED, Job.Status.FAILED])
def test_delete_is_a_single_conditional_statement(client, make_job, django_assert_max_num_queries, status):
    job = make_job(status=status)
    with django_assert_max_num_queries(1):
        resp = client.delete(f"/api/jobs/{job.id}/")
    assert resp.status_code == 204
    assert not Job.objects.filter(pk=job.id).exists()


def test_delete_unknown_or_foreign_job_is_404(client, make_job, other_user):
    theirs = make_job(owner=other_user)
    assert client.delete(f"/api/jobs/{theirs.id}/").status_code == 404
    assert client.delete(f"/api/jobs/{uuid.uuid4()}/").status_code == 404
    assert Job.objects.filter(pk=theirs.id).exists()


def test_start_enqueues_pending_job(client, make_job, enqueued):
    job = make_job()
    resp = client.post("/api/transcode/start/", {"jobId": str(job.id)}, format="json")

    assert resp.status_code == 202
    assert resp.json() == {"success": True, "message": "Transcoding started", "jobId": str(job.id)}
    assert enqueued == [str(job.id)]
    job.refresh_from_db()
    assert job.status == Job.Status.PENDING  # the worker owns the transition


@pytest.mark.parametrize("payload", [{}, {"jobId": ""}, {"jobId": "123"}, {"jobId": "0b0c8d4a-41d5-1a3c-9a52-1d0b7a9e0c11"}])
def test_start_rejects_malformed_ids(client, enqueued, payload):
    resp = client.post("/api/transcode/start/", payload, format="json")
    assert resp.status_code == 400
    assert enqueued == []


def test_start_unknown_or_foreign_job_is_404(client, make_job, other_user, enqueued):
    theirs = make_job(owner=other_user)
    for job_id in (str(uuid.uuid4()), str(theirs.id)):
        resp = client.post("/api/transcode/start/", {"jobId": job_id}, format="json")
        assert resp.status_code == 404
    assert enqueued == []


@pytest.mark.parametrize("status", [Job.Status.PROCESSING, Job.Status.COMPLETED, Job.Status.FAILED])
def test_start_non_pending_job_is_400(client, make_job, enqueued, status):
    job = make_job(status=status)
    resp = client.post("/api/transcode/start/", {"jobId": str(job.id)}, format="json")
    assert resp.status_code == 400
    assert status in resp.json()["detail"]
    assert enqueued == []


def test_start_is_rate_limited_per_user(client, make_job, enqueued, monkeypatch):
    monkeypatch.setattr(views.TranscodeStartThrottle, "rate", "2/min", raising=False)
    jobs = [make_job() for _ in range(3)]
    codes = [
        client.post("/api/transcode/start/", {"jobId": str(j.id)}, format="json").status_code
        for j in jobs
    ]
    assert codes == [202, 202, 429]
    assert len(enqueued) == 2


def test_bulk_start_enqueues_all(client, make_job, enqueued):
    jobs = [make_job() for _ in range(3)]
    ids = [str(j.id) for j in jobs]
    resp = client.post("/api/transcode/bulk/", {"jobIds": ids + [ids[0]]}, format="json")

    assert resp.status_code == 202
    body = resp.json()
    assert (body["total"], body["successful"], body["failed"]) == (3, 3, 0)
    assert enqueued == ids


def test_bulk_reports_enqueue_failures(client, make_job, monkeypatch):
    jobs = [make_job() for _ in range(2)]

    def flaky(job_id):
        if str(job_id) == str(jobs[1].id):
            raise ConnectionError("broker unreachable")
        return "task"

    monkeypatch.setattr(views, "enqueue_transcode", flaky)
    body = client.post("/api/transcode/bulk/", {"jobIds": [str(j.id) for j in jobs]}, format="json").json()
    assert (body["successful"], body["failed"]) == (1, 1)
    assert body["failedJobs"][0]["jobId"] == str(jobs[1].id)
    assert body["failedJobs"][0]["error"] == views.ENQUEUE_FAILED_MESSAGE
    assert "broker" not in str(body)


def test_bulk_requires_all_pending(client, make_job, enqueued):
    ok = make_job()
    done = make_job(status=Job.Status.COMPLETED)
    resp = client.post("/api/transcode/bulk/", {"jobIds": [str(ok.id), str(done.id)]}, format="json")
    assert resp.status_code == 400
    assert resp.json()["nonPendingJobs"] == [str(done.id)]
    assert enqueued == []


def test_bulk_requires_ownership(client, make_job, other_user, enqueued):
    mine = make_job()
    theirs = make_job(owner=other_user)
    resp = client.post("/api/transcode/bulk/", {"jobIds": [str(mine.id), str(theirs.id)]}, format="json")
    assert resp.status_code == 404
    assert enqueued == []


def test_bulk_limits(client, enqueued, settings):
    settings.TRANSCODE_BULK_MAX_JOBS = 2
    ids = [str(uuid.uuid4()) for _ in range(3)]
    assert client.post("/api/transcode/bulk/", {"jobIds": ids}, format="json").status_code == 400
    assert client.post("/api/transcode/bulk/", {"jobIds": []}, format="json").status_code == 400
    assert client.post("/api/transcode/bulk/", {"jobIds": ["nope"]}, format="json").status_code == 400
    assert enqueued == []


def test_stats_grouped_by_status(client, make_job, other_user):
    make_job()
    make_job()
    make_job(status=Job.Status.COMPLETED, progress=100, total_size_bytes=500)
    make_job(owner=other_user)

    stats = {row["status"]: row for row in client.get("/api/jobs/stats/").json()["stats"]}
    assert stats["pending"]["job_count"] == 2
    assert stats["completed"]["job_count"] == 1
    assert stats["completed"]["total_size"] == 500
    assert stats["completed"]["avg_progress"] == 100
