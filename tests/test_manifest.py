import pytest

from transcoding.errors import ManifestParseFailure
from transcoding.manifest import avc1_codec, build_master_manifest, collect_referenced_files

from conftest import VARIANT_PLAYLIST


def test_master_manifest_exact_text():
    text = build_master_manifest("v720p.m3u8", 1280, 720, 2_128_000)
    assert text == (
        "#EXTM3U\n"
        "#EXT-X-VERSION:7\n"
        '#EXT-X-STREAM-INF:BANDWIDTH=2128000,AVERAGE-BANDWIDTH=1808800,RESOLUTION=1280x720,CODECS="avc1.64001f,mp4a.40.2"\n'
        "v720p.m3u8\n"
    )


@pytest.mark.parametrize("bandwidth", [1, 7, 999_999, 2_128_000, 5_000_001])
def test_master_manifest_average_bandwidth_is_floored(bandwidth):
    text = build_master_manifest("v.m3u8", 1280, 720, bandwidth)
    assert text.count("#EXT-X-STREAM-INF") == 1
    assert f"AVERAGE-BANDWIDTH={int(bandwidth * 0.85)}," in text
    assert f"BANDWIDTH={bandwidth}," in text


def test_master_manifest_references_only_the_variant():
    text = build_master_manifest("v720p.m3u8", 1280, 960, 2_128_000)
    assert text.endswith("\n")
    assert "RESOLUTION=1280x960" in text
    assert collect_referenced_files(text) == {"v720p.m3u8"}


def test_collect_init_map_and_segments():
    text = '#EXTM3U\n#EXT-X-MAP:URI="init.mp4"\nseg0.m4s\nseg1.m4s\n'
    assert collect_referenced_files(text) == {"init.mp4", "seg0.m4s", "seg1.m4s"}


def test_collect_generated_playlist_is_idempotent():
    first = collect_referenced_files(VARIANT_PLAYLIST)
    second = collect_referenced_files(VARIANT_PLAYLIST)
    assert first == second == {"v720p_init.mp4", "v720p_000.m4s", "v720p_001.m4s"}


def test_collect_ignores_comments_blank_lines_and_crlf():
    text = "#EXTM3U\r\n\r\n#EXTINF:4.0,\r\n  seg0.m4s  \r\n#EXT-X-ENDLIST\r\nseg0.m4s\r\n"
    assert collect_referenced_files(text) == {"seg0.m4s"}


@pytest.mark.parametrize("text", ["", "\n\n", "#EXTM3U\n#EXT-X-ENDLIST\n"])
def test_collect_without_segments_is_empty(text):
    assert collect_referenced_files(text) == set()


@pytest.mark.parametrize(
    "text",
    [
        "seg0.m4s\n",
        "#EXTM3U\n#EXT-X-MAP:BYTERANGE=100\nseg0.m4s\n",
        "#EXTM3U\n../secret.m4s\n",
        "#EXTM3U\n/etc/passwd\n",
        "#EXTM3U\nhttps://elsewhere.example/seg0.m4s\n",
    ],
)
def test_collect_rejects_malformed_playlists(text):
    with pytest.raises(ManifestParseFailure):
        collect_referenced_files(text)


@pytest.mark.parametrize("level_idc, expected", [(31, "avc1.64001f"), (32, "avc1.640020"), (50, "avc1.640032")])
def test_avc1_codec_encodes_level_byte(level_idc, expected):
    assert avc1_codec(level_idc) == expected


def test_master_manifest_declares_given_codecs():
    text = build_master_manifest("v720p.m3u8", 1280, 2276, 2_128_000, codecs="avc1.640032,mp4a.40.2")
    assert 'RESOLUTION=1280x2276,CODECS="avc1.640032,mp4a.40.2"\n' in text
