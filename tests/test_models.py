from __future__ import annotations

import orjson
import pytest

from aiobookcast.models.cast import CastDevice, MediaLoadOptions, MediaStatus, SleepTimerState
from aiobookcast.models.library import Progress
from aiobookcast.models.proxy import HealthStatus, SessionStatus, VolumeRequest
from aiobookcast.models.types import (
    IdleReason,
    MetadataType,
    PlayerState,
    SleepTimerPhase,
    StreamType,
)


def test_media_status_from_cast_json() -> None:
    status = MediaStatus.from_json(
        orjson.dumps(
            {
                "currentTime": 321.5,
                "playerState": "IDLE",
                "idleReason": "FINISHED",
                "volume": {"level": 0.4, "muted": False},
                "media": {"contentId": "http://proxy/stream/b1", "duration": 3600},
            }
        )
    )
    assert status.current_time == 321.5
    assert status.player_state is PlayerState.IDLE
    assert status.idle_reason is IdleReason.FINISHED
    assert status.volume is not None and status.volume.level == 0.4
    assert status.media is not None and status.media.content_id == "http://proxy/stream/b1"


def test_media_status_defaults() -> None:
    status = MediaStatus.from_dict({"playerState": "PLAYING"})
    assert status.current_time == 0.0
    assert status.idle_reason is None


def test_media_payload_uses_audiobook_metadata() -> None:
    options = MediaLoadOptions(
        url="http://192.168.1.5:8765/stream/b1?start=60",
        content_type="audio/mpeg",
        title="The Hobbit",
        author="J.R.R. Tolkien",
        chapter_title="An Unexpected Party",
        chapter_number=1,
        cover_url="http://abs/cover.jpg",
        resume_position=60.0,
        duration=36000.0,
    )
    media = options.to_media_payload()

    assert media["contentId"] == options.url
    assert media["streamType"] == StreamType.BUFFERED.value
    assert media["duration"] == 36000.0
    metadata = media["metadata"]
    assert metadata["metadataType"] == MetadataType.AUDIOBOOK_CHAPTER == 4
    assert metadata["title"] == "The Hobbit"
    assert metadata["chapterTitle"] == "An Unexpected Party"
    assert metadata["images"] == [{"url": "http://abs/cover.jpg"}]
    assert options.to_load_options() == {"autoplay": True, "currentTime": 60.0}


def test_load_options_without_resume() -> None:
    options = MediaLoadOptions(url="u", content_type="audio/mpeg", title="t")
    assert options.to_load_options() == {"autoplay": True}
    assert options.to_media_payload()["metadata"]["images"] == []


def test_sleep_timer_state_wire_names() -> None:
    state = SleepTimerState(
        active=True,
        phase=SleepTimerPhase.COUNTDOWN,
        remaining_ms=5000,
        position=12.0,
        total_duration_ms=60000,
        fade_duration_ms=30000,
    )
    assert orjson.loads(state.to_json()) == {
        "active": True,
        "phase": "countdown",
        "remainingMs": 5000,
        "position": 12.0,
        "totalDurationMs": 60000,
        "fadeDurationMs": 30000,
    }


def test_session_status_wire_names() -> None:
    status = SessionStatus(
        session_id="b1-1700000000000",
        book_id="b1",
        volume=0.5,
        position=42.0,
        running=True,
        start_time=1700000000000,
    )
    data = orjson.loads(status.to_json())
    assert data["sessionId"] == "b1-1700000000000"
    assert data["startTime"] == 1700000000000
    assert orjson.loads(HealthStatus(sessions=2).to_json()) == {"sessions": 2, "status": "ok"}


@pytest.mark.parametrize("volume", [-0.1, 1.51, "0.5", None, True])
def test_volume_request_rejects_invalid(volume) -> None:
    with pytest.raises(ValueError):
        VolumeRequest(volume=volume)


def test_volume_request_accepts_bounds() -> None:
    assert VolumeRequest(volume=0).volume == 0
    assert VolumeRequest(volume=1.5).volume == 1.5


def test_progress_from_server_json() -> None:
    progress = Progress.from_dict(
        {
            "id": "p1",
            "libraryItemId": "li_1",
            "currentTime": 99.5,
            "duration": 1000.0,
            "progress": 0.0995,
            "isFinished": False,
            "lastUpdate": 1700000000000,
        }
    )
    assert progress.book_id == "li_1"
    assert progress.current_time == 99.5
    assert progress.last_update == 1700000000000


def test_cast_device_omits_missing_id() -> None:
    assert CastDevice(name="Kitchen", host="10.0.0.2").to_dict() == {
        "name": "Kitchen",
        "host": "10.0.0.2",
        "port": 8009,
    }
