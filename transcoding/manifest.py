"""
HLS manifest helpers.

``build_master_manifest`` writes the top-level playlist for a single
rendition; ``collect_referenced_files`` walks a rendition playlist and
returns every file a player will fetch from it, so the caller knows
exactly which artifacts need to be persisted.
"""
import math
import re
from urllib.parse import urlparse

from .errors import ManifestParseFailure

# Fixed heuristic; not derived from a measured average bitrate.
AVERAGE_BANDWIDTH_RATIO = 0.85

AUDIO_CODEC = "mp4a.40.2"  # AAC-LC

HLS_VERSION = 7

_MAP_URI_RE = re.compile(r'URI="([^"]+)"')


def avc1_codec(level_idc: int) -> str:
    """RFC 6381 identifier for H.264 High profile (no constraint flags) at ``level_idc``."""
    return f"avc1.6400{level_idc:02x}"


# High@3.1 + AAC-LC: what engine.py declares for 1280x720 at up to 30 fps
CODECS = f"{avc1_codec(31)},{AUDIO_CODEC}"


def average_bandwidth(bandwidth: int) -> int:
    return math.floor(bandwidth * AVERAGE_BANDWIDTH_RATIO)


def build_master_manifest(variant_name: str, width: int, height: int, bandwidth: int,
                          codecs: str = CODECS) -> str:
    stream_inf = (
        f"#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},"
        f"AVERAGE-BANDWIDTH={average_bandwidth(bandwidth)},"
        f"RESOLUTION={width}x{height},"
        f'CODECS="{codecs}"'
    )
    lines = [
        "#EXTM3U",
        f"#EXT-X-VERSION:{HLS_VERSION}",
        stream_inf,
        variant_name,
    ]
    return "\n".join(lines) + "\n"


def _check_reference(name: str) -> str:
    """Referenced files must be plain names relative to the playlist."""
    parsed = urlparse(name)
    if parsed.scheme or parsed.netloc:
        raise ManifestParseFailure(f"playlist references a remote location: {name!r}")
    if name.startswith("/") or "\\" in name:
        raise ManifestParseFailure(f"playlist references an absolute path: {name!r}")
    if ".." in name.split("/"):
        raise ManifestParseFailure(f"playlist reference escapes its directory: {name!r}")
    return name


def collect_referenced_files(playlist: str) -> set[str]:
    """
    Return the set of files referenced by a media or master playlist.

    Non-comment lines are references (segments or nested playlists). The one
    comment that also references a file is ``#EXT-X-MAP``, whose quoted URI
    names the fMP4 initialization segment. Empty text yields an empty set.
    """
    files: set[str] = set()
    lines = [line.strip() for line in playlist.splitlines()]
    content = [line for line in lines if line]
    if not content:
        return files

    if content[0] != "#EXTM3U":
        raise ManifestParseFailure("playlist does not start with #EXTM3U")

    for line in content[1:]:
        if line.startswith("#"):
            if line.startswith("#EXT-X-MAP"):
                m = _MAP_URI_RE.search(line)
                if not m:
                    raise ManifestParseFailure(f"#EXT-X-MAP without URI: {line!r}")
                files.add(_check_reference(m.group(1)))
            continue
        files.add(_check_reference(line))
    return files
