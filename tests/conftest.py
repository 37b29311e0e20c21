import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path

import pytest
from django.contrib.auth import get_user_model
from django.core.cache import cache

from transcoding.models import Job
from transcoding.runtime import MediaInfo

VARIANT_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:7
#EXT-X-TARGETDURATION:4
#EXT-X-MEDIA-SEQUENCE:0
#EXT-X-PLAYLIST-TYPE:VOD
#EXT-X-INDEPENDENT-SEGMENTS
#EXT-X-MAP:URI="v720p_init.mp4"
#EXTINF:4.000000,
v720p_000.m4s
#EXTINF:2.000000,
v720p_001.m4s
#EXT-X-ENDLIST
"""

SEGMENTS = {
    "v720p_init.mp4": b"\x00\x00\x00\x18ftypiso6" + b"\x00" * 16,
    "v720p_000.m4s": b"\x00\x00\x00\x10moof" + b"\x01" * 4000,
    "v720p_001.m4s": b"\x00\x00\x00\x10moof" + b"\x02" * 2000,
}


class FakeRuntime:
    """
    Stands in for the ffmpeg runtime: ``execute`` writes a canned fMP4 HLS
    rendition into the work directory and replays a list of progress ratios.
    """

    def __init__(self, info=None, ratios=(0.0, 0.25, 0.5, 1.3, 0.4, 0.9), playlist=VARIANT_PLAYLIST,
                 files=None, error=None):
        self.info = info or MediaInfo(duration=2.0, width=640, height=480, has_audio=True)
        self.ratios = ratios
        self.playlist = playlist
        self.files = SEGMENTS if files is None else files
        self.error = error
        self.calls = []
        self.workdirs = []
        self.lock = threading.Lock()

    @contextmanager
    def session(self):
        with self.lock:
            workdir = Path(tempfile.mkdtemp(prefix="fake-job-"))
            self.workdirs.append(workdir)
            try:
                yield workdir
            finally:
                shutil.rmtree(workdir, ignore_errors=True)

    def probe(self, path):
        assert path.exists()
        return self.info

    def execute(self, args, cwd, duration=None, on_progress=None):
        self.calls.append({"args": list(args), "cwd": cwd, "inputs": sorted(p.name for p in cwd.iterdir())})
        if self.error is not None:
            raise self.error
        for ratio in self.ratios:
            if on_progress:
                on_progress(ratio)
        (cwd / "v720p.m3u8").write_text(self.playlist)
        for name, data in self.files.items():
            (cwd / name).write_bytes(data)


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture(autouse=True)
def _clear_throttle_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(username="alice", password="pw-alice-123")


@pytest.fixture
def other_user(db):
    return get_user_model().objects.create_user(username="bob", password="pw-bob-123")


@pytest.fixture
def make_job(db, user):
    def _make(owner=None, status=Job.Status.PENDING, **kwargs):
        owner = owner or user
        defaults = {
            "original_filename": "clip.mp4",
            "input_file_url": f"{owner.pk}/abc_clip.mp4",
        }
        defaults.update(kwargs)
        return Job.objects.create(owner=owner, status=status, **defaults)
    return _make
