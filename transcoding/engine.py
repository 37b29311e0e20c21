import logging
import math
from pathlib import Path

from .errors import EncodeFailure, IOFailure
from .manifest import AUDIO_CODEC, avc1_codec, build_master_manifest, collect_referenced_files
from .models import ArtifactBundle, Rendition
from .runtime import get_runtime

logger = logging.getLogger(__name__)

TARGET_WIDTH = 1280
RENDITION_LABEL = "720p"

VIDEO_BITRATE_KBPS = 2000  # approximate; encode is CRF-driven
AUDIO_BITRATE_KBPS = 128
APPROX_BITRATE = (VIDEO_BITRATE_KBPS + AUDIO_BITRATE_KBPS) * 1000

CRF = 23
PRESET = "veryfast"
GOP_FRAMES = 48
SEGMENT_SECONDS = 4
AUDIO_CHANNELS = 2
AUDIO_SAMPLE_RATE = 48000

INPUT_STEM = "input"
VARIANT_NAME = "v720p.m3u8"
INIT_NAME = "v720p_init.mp4"
SEGMENT_PATTERN = "v720p_%03d.m4s"
MASTER_NAME = "master.m3u8"

MAX_PROGRESS_BEFORE_DONE = 0.99

# H.264 Annex A: (level_idc, max frame size in macroblocks, max macroblocks per second)
H264_LEVELS = (
    (31, 3600, 108_000),
    (32, 5120, 216_000),
    (40, 8192, 245_760),
    (42, 8704, 522_240),
    (50, 22_080, 589_824),
    (51, 36_864, 983_040),
    (52, 36_864, 2_073_600),
    (60, 139_264, 4_177_920),
    (61, 139_264, 8_355_840),
    (62, 139_264, 16_711_680),
)
DEFAULT_FRAME_RATE = 30.0
MAX_FRAME_RATE = 120.0  # r_frame_rate of VFR phone clips can read 90000/1

_EXTENSIONS = (
    ("mp4", "mp4"),
    ("webm", "webm"),
    ("quicktime", "mov"),
    ("matroska", "mkv"),
    ("mpeg", "mpg"),
)


def infer_extension(content_type: str | None) -> str | None:
    """Map a MIME type hint to the container extension ffmpeg should see."""
    if not content_type:
        return None
    mime = content_type.lower()
    for needle, ext in _EXTENSIONS:
        if needle in mime:
            return ext
    return None


def scaled_height(src_width: int, src_height: int, width: int = TARGET_WIDTH) -> int:
    """
    Height produced by ``scale=<width>:-2``: aspect-preserving, rounded to
    the nearest even number the same way ffmpeg does it. The source size is
    the displayed one, after autorotation.
    """
    half = (width * src_height + src_width) // (2 * src_width)
    return max(2, half * 2)


def h264_level(width: int, height: int, frame_rate: float | None = None) -> int:
    """Lowest level_idc whose frame size and macroblock rate limits admit the output."""
    mb_width = math.ceil(width / 16)
    mb_height = math.ceil(height / 16)
    frame_mbs = mb_width * mb_height
    fps = min(frame_rate or DEFAULT_FRAME_RATE, MAX_FRAME_RATE)
    for level_idc, max_fs, max_mbps in H264_LEVELS:
        max_side = math.sqrt(8 * max_fs)
        if frame_mbs <= max_fs and frame_mbs * fps <= max_mbps and max(mb_width, mb_height) <= max_side:
            return level_idc
    raise EncodeFailure(f"{width}x{height} at {fps:g} fps exceeds every H.264 level")


def level_name(level_idc: int) -> str:
    """x264 spelling of a level_idc: 31 -> "3.1"."""
    return f"{level_idc // 10}.{level_idc % 10}"


def build_hls_args(input_name: str, width: int = TARGET_WIDTH, level_idc: int = 31) -> list[str]:
    return [
        "-i", input_name,
        "-vf", f"scale={width}:-2",
        "-c:v", "libx264",
        "-profile:v", "high",
        "-level:v", level_name(level_idc),
        "-pix_fmt", "yuv420p",
        "-preset", PRESET,
        "-crf", str(CRF),
        "-c:a", "aac",
        "-b:a", f"{AUDIO_BITRATE_KBPS}k",
        "-ac", str(AUDIO_CHANNELS),
        "-ar", str(AUDIO_SAMPLE_RATE),
        "-keyint_min", str(GOP_FRAMES),
        "-g", str(GOP_FRAMES),
        "-sc_threshold", "0",
        "-f", "hls",
        "-hls_time", str(SEGMENT_SECONDS),
        "-hls_playlist_type", "vod",
        "-hls_segment_type", "fmp4",
        "-hls_fmp4_init_filename", INIT_NAME,
        "-hls_flags", "independent_segments",
        "-hls_segment_filename", SEGMENT_PATTERN,
        VARIANT_NAME,
    ]


class _ProgressRelay:
    """Forward encoder ratios clamped to [0, 0.99] and never decreasing."""

    def __init__(self, callback):
        self.callback = callback
        self.last = 0.0

    def __call__(self, ratio: float) -> None:
        if self.callback is None:
            return
        ratio = min(MAX_PROGRESS_BEFORE_DONE, max(0.0, float(ratio)))
        if ratio < self.last:
            return
        self.last = ratio
        self.callback(ratio)

    def done(self) -> None:
        if self.callback is not None:
            self.callback(1.0)


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise IOFailure(f"cannot read {path.name} from scratch: {e}") from e


def transcode(data: bytes, content_type: str | None = None, on_progress=None, runtime=None) -> ArtifactBundle:
    """
    Encode ``data`` into a single 1280-wide HLS fMP4 rendition.

    Returns every file referenced by the rendition playlist, the playlist
    itself and a freshly composed master manifest. ``on_progress`` receives
    ratios below 1.0 while encoding and exactly one 1.0 once all artifacts
    have been collected.
    """
    runtime = runtime or get_runtime()
    relay = _ProgressRelay(on_progress)
    input_name = f"{INPUT_STEM}.{infer_extension(content_type) or 'mp4'}"

    with runtime.session() as workdir:
        input_path = workdir / input_name
        try:
            input_path.write_bytes(data)
        except OSError as e:
            raise IOFailure(f"cannot write input to scratch: {e}") from e

        info = runtime.probe(input_path)
        if not info.width or not info.height:
            raise EncodeFailure("input has no video dimensions")
        height = scaled_height(info.width, info.height)
        level_idc = h264_level(TARGET_WIDTH, height, info.frame_rate)
        codecs = avc1_codec(level_idc)
        if info.has_audio:
            codecs = f"{codecs},{AUDIO_CODEC}"
        logger.info(
            "Encoding %s (%s bytes, %sx%s rot %s, %.1fs) -> %sx%s level %s",
            input_name, len(data), info.width, info.height, info.rotation, info.duration or 0.0,
            TARGET_WIDTH, height, level_name(level_idc),
        )
        runtime.execute(
            build_hls_args(input_name, level_idc=level_idc),
            cwd=workdir,
            duration=info.duration,
            on_progress=relay,
        )

        variant_text = _read(workdir / VARIANT_NAME).decode("utf-8", errors="replace")
        referenced = collect_referenced_files(variant_text)
        referenced.add(VARIANT_NAME)
        referenced.add(INIT_NAME)
        referenced.discard(input_name)

        master = build_master_manifest(VARIANT_NAME, TARGET_WIDTH, height, APPROX_BITRATE, codecs=codecs)

        files = {name: _read(workdir / name) for name in sorted(referenced)}
        files[MASTER_NAME] = master.encode("utf-8")

    relay.done()

    return ArtifactBundle(
        files=files,
        master_name=MASTER_NAME,
        variant_name=VARIANT_NAME,
        rendition=Rendition(label=RENDITION_LABEL, width=TARGET_WIDTH, height=height, bitrate=APPROX_BITRATE),
    )
