import pytest

from app.transcoding.errors import InvalidParameters
from app.transcoding.models import (
    AudioStreamInfo,
    TranscodeRequest,
    UploadedVideo,
    VideoMetadata,
    VideoStreamInfo,
)


def test_request_defaults():
    req = TranscodeRequest()
    assert req.fps is None
    assert req.format == "mp4"
    assert req.bitrate is None
    assert not req.has_resolution
    assert req.content_type == "video/mp4"


def test_width_without_height_is_rejected():
    with pytest.raises(InvalidParameters):
        TranscodeRequest(width=1280)
    with pytest.raises(InvalidParameters):
        TranscodeRequest(height=720)


def test_resolution_pair_is_accepted():
    req = TranscodeRequest(width=1280, height=720)
    assert req.has_resolution


@pytest.mark.parametrize("fps", [0, -5, 1000])
def test_fps_out_of_range(fps):
    with pytest.raises(InvalidParameters):
        TranscodeRequest(fps=fps)


@pytest.mark.parametrize("bitrate", ["fast", "1000kb", "-1k", "10 k"])
def test_bad_bitrate_token(bitrate):
    with pytest.raises(InvalidParameters):
        TranscodeRequest(bitrate=bitrate)


@pytest.mark.parametrize("bitrate", ["1000k", "2M", "1.5m", "800000"])
def test_good_bitrate_token(bitrate):
    assert TranscodeRequest(bitrate=bitrate).bitrate == bitrate


def test_unknown_format_rejected():
    with pytest.raises(InvalidParameters):
        TranscodeRequest(format="gif")


def test_mkv_maps_to_matroska_muxer():
    assert TranscodeRequest(format="mkv").muxer == "matroska"


def test_from_form_blank_fields_use_defaults():
    req = TranscodeRequest.from_form(fps="", bitrate="  ", width=None, height="", format="")
    assert req == TranscodeRequest()


def test_from_form_parses_values():
    req = TranscodeRequest.from_form(fps="24", bitrate="1000k", width="640", height="360", format=".MOV")
    assert (req.fps, req.bitrate, req.width, req.height, req.format) == (24, "1000k", 640, 360, "mov")


def test_from_form_non_numeric_fps():
    with pytest.raises(InvalidParameters, match="fps"):
        TranscodeRequest.from_form(fps="thirty")


def test_from_form_half_resolution():
    with pytest.raises(InvalidParameters, match="together"):
        TranscodeRequest.from_form(width="640")


def test_uploaded_video_suffix():
    assert UploadedVideo(b"x", "Clip.MOV").suffix == ".mov"
    assert UploadedVideo(b"x", "noext").suffix == ".mp4"


@pytest.mark.parametrize("filename", ["clip." + "a" * 300, "clip.m p4", "clip.mp4\x00", "clip.\u00e9t\u00e9"])
def test_uploaded_video_odd_suffix_falls_back(filename):
    assert UploadedVideo(b"x", filename).suffix == ".mp4"


def test_metadata_to_dict_without_streams():
    meta = VideoMetadata(format="mp4", duration=1.5, size=10, bitrate=100)
    assert meta.to_dict() == {
        "format": "mp4",
        "duration": 1.5,
        "size": 10,
        "bitrate": 100,
        "video": None,
        "audio": None,
    }
    assert meta.fps == 0.0


def test_metadata_to_dict_with_streams():
    meta = VideoMetadata(
        format="mp4", duration=2.0, size=20, bitrate=200,
        video=VideoStreamInfo("h264", 640, 360, 29.97, 150),
        audio=AudioStreamInfo("aac", 2, 44100, 64),
    )
    doc = meta.to_dict()
    assert doc["video"] == {"codec": "h264", "width": 640, "height": 360, "fps": 29.97, "bitrate": 150}
    assert doc["audio"] == {"codec": "aac", "channels": 2, "sample_rate": 44100, "bitrate": 64}
