"""
Process-wide ffmpeg runtime.

The runtime is loaded once per process and shared by every transcode in it.
It runs at most one encode at a time: ``session()`` holds the encode lock for
the whole invocation, so concurrent callers queue behind it.
"""
import json
import logging
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from django.conf import settings

from .errors import EncodeFailure, IOFailure, RuntimeUnavailable

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 4000


@dataclass(frozen=True)
class MediaInfo:
    """Input stream facts; width and height are the displayed (autorotated) size."""
    duration: float | None
    width: int | None
    height: int | None
    has_audio: bool
    frame_rate: float | None = None
    rotation: int = 0


def _frame_rate(value) -> float | None:
    """Parse an ffprobe rate such as ``30000/1001``; ``0/0`` means unknown."""
    if not value:
        return None
    num, _, den = str(value).partition("/")
    try:
        rate = float(num) / float(den or 1)
    except (ValueError, ZeroDivisionError):
        return None
    return rate if rate > 0 else None


def _stream_rotation(stream: dict) -> int:
    """Rotation in degrees, normalised to 0..359, from the display matrix or the legacy rotate tag."""
    raw = None
    for side_data in stream.get("side_data_list") or []:
        if "rotation" in side_data:
            raw = side_data["rotation"]
            break
    if raw is None:
        raw = (stream.get("tags") or {}).get("rotate")
    try:
        return int(round(float(raw))) % 360
    except (TypeError, ValueError):
        return 0


class CodecRuntime:
    def __init__(self, ffmpeg_binary: str = "ffmpeg", ffprobe_binary: str = "ffprobe", scratch_root: str | None = None):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.scratch_root = scratch_root
        self._ffmpeg = None
        self._ffprobe = None
        self._scratch = None
        self._loaded = False
        self._encode_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def load(self) -> None:
        """Resolve and verify the binaries and create the scratch area. Idempotent."""
        if self.is_loaded():
            return
        ffmpeg = shutil.which(self.ffmpeg_binary)
        ffprobe = shutil.which(self.ffprobe_binary)
        if not ffmpeg or not ffprobe:
            raise RuntimeUnavailable(
                f"codec binaries not found (ffmpeg={self.ffmpeg_binary!r}, ffprobe={self.ffprobe_binary!r})"
            )
        for binary in (ffmpeg, ffprobe):
            try:
                subprocess.run([binary, "-version"], check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            except (OSError, subprocess.CalledProcessError) as e:
                raise RuntimeUnavailable(f"{binary} -version failed: {e}") from e
        try:
            if self.scratch_root:
                Path(self.scratch_root).mkdir(parents=True, exist_ok=True)
            scratch = tempfile.mkdtemp(prefix="codec-runtime-", dir=self.scratch_root)
        except OSError as e:
            raise RuntimeUnavailable(f"cannot create scratch directory: {e}") from e

        self._ffmpeg, self._ffprobe, self._scratch = ffmpeg, ffprobe, Path(scratch)
        self._loaded = True
        logger.info("Codec runtime loaded (ffmpeg=%s, scratch=%s)", ffmpeg, scratch)

    def is_loaded(self) -> bool:
        if not self._loaded:
            return False
        # the scratch dir or binaries can vanish underneath a long-lived worker
        return self._scratch.is_dir() and Path(self._ffmpeg).exists() and Path(self._ffprobe).exists()

    @contextmanager
    def session(self):
        """Hold the encode slot and yield a private, empty work directory."""
        if not self.is_loaded():
            raise RuntimeUnavailable("codec runtime is not loaded")
        with self._encode_lock:
            try:
                workdir = Path(tempfile.mkdtemp(prefix="job-", dir=self._scratch))
            except OSError as e:
                raise IOFailure(f"cannot create work directory: {e}") from e
            try:
                yield workdir
            finally:
                shutil.rmtree(workdir, ignore_errors=True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def probe(self, path: Path) -> MediaInfo:
        """
        Describe the input as ffmpeg will see it after autorotation: a stream
        carrying a 90 or 270 degree display matrix reports swapped dimensions.
        """
        cmd = [
            self._ffprobe,
            "-v", "error",
            "-show_entries",
            "format=duration:stream=codec_type,width,height,avg_frame_rate,r_frame_rate"
            ":stream_side_data=rotation:stream_tags=rotate",
            "-of", "json",
            str(path),
        ]
        try:
            res = subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            data = json.loads(res.stdout or b"{}")
        except subprocess.CalledProcessError as e:
            err = e.stderr.decode("utf-8", errors="ignore") if e.stderr else str(e)
            logger.warning("ffprobe failed on %s: %s", path.name, err[-STDERR_TAIL_CHARS:])
            raise EncodeFailure(f"ffprobe exited with {e.returncode}") from e
        except (OSError, ValueError) as e:
            raise EncodeFailure(f"ffprobe failed: {e}") from e

        streams = data.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        has_audio = any(s.get("codec_type") == "audio" for s in streams)
        if video is None:
            raise EncodeFailure("input contains no video stream")
        if not video.get("width") or not video.get("height"):
            raise EncodeFailure("video stream has no dimensions")

        width, height = int(video["width"]), int(video["height"])
        rotation = _stream_rotation(video)
        if rotation in (90, 270):
            width, height = height, width

        duration = None
        try:
            duration = float((data.get("format") or {}).get("duration"))
        except (TypeError, ValueError):
            pass

        return MediaInfo(
            duration=duration if duration and duration > 0 else None,
            width=width,
            height=height,
            has_audio=has_audio,
            frame_rate=_frame_rate(video.get("avg_frame_rate")) or _frame_rate(video.get("r_frame_rate")),
            rotation=rotation,
        )

    def execute(self, args: list[str], cwd: Path, duration: float | None = None, on_progress=None) -> None:
        """
        Run ffmpeg with ``args`` inside ``cwd``.

        Progress is read from ``-progress pipe:1`` and reported as
        out_time / duration; nothing is reported when the duration is unknown.
        """
        cmd = [self._ffmpeg, "-hide_banner", "-nostdin", "-y", "-progress", "pipe:1", "-nostats", *args]
        logger.debug("Running %s", " ".join(cmd))

        with tempfile.TemporaryFile() as stderr:
            try:
                proc = subprocess.Popen(cmd, cwd=str(cwd), stdout=subprocess.PIPE, stderr=stderr)
            except OSError as e:
                raise EncodeFailure(f"cannot start ffmpeg: {e}") from e

            try:
                for raw in proc.stdout:
                    key, _, value = raw.decode("utf-8", errors="ignore").strip().partition("=")
                    if key != "out_time_us" or not on_progress or not duration:
                        continue
                    try:
                        out_time_us = int(value)
                    except ValueError:
                        continue  # "N/A" before the first frame
                    on_progress(out_time_us / (duration * 1_000_000))
            except BaseException:
                proc.kill()
                proc.wait()
                raise
            finally:
                proc.stdout.close()
            returncode = proc.wait()

            if returncode != 0:
                stderr.seek(0)
                err = stderr.read().decode("utf-8", errors="ignore")
                logger.warning("ffmpeg exited with %s: %s", returncode, err[-STDERR_TAIL_CHARS:])
                raise EncodeFailure(f"ffmpeg exited with {returncode}")


_runtime = None
_runtime_lock = threading.Lock()


def get_runtime() -> CodecRuntime:
    """
    Acquire the process-wide runtime, loading it on first use.

    Concurrent first callers block on the same lock and share one load; a
    runtime that reports itself unloaded is loaded again.
    """
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = CodecRuntime(
                ffmpeg_binary=settings.FFMPEG_BINARY,
                ffprobe_binary=settings.FFPROBE_BINARY,
                scratch_root=settings.TRANSCODE_SCRATCH_DIR,
            )
        if not _runtime.is_loaded():
            _runtime.load()
        return _runtime


def runtime_loaded() -> bool:
    with _runtime_lock:
        return _runtime is not None and _runtime.is_loaded()


def reset_runtime() -> None:
    global _runtime
    with _runtime_lock:
        _runtime = None
